"""
Finance Tracker - Source Package

A household finance ledger: accounts, credit cards, categorized
transactions, savings goals and the dashboard views derived from them.

DESIGN PRINCIPLES:
1. Derived views are recomputed, never cached
2. Fail early, fail visibly
3. No silent corrections (partial writes are reported, not hidden)
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
