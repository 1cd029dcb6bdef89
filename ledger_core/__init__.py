"""
Ledger Core - Source Package

The consistency engine behind a personal-finance tracker: wallets,
transactions and budgets kept in step with each other, plus a cached
front for the budget forecasting service.

DESIGN PRINCIPLES:
1. Wallet balances change only through the ledger orchestrator
2. Every reversal is the exact inverse of its application
3. A failed wallet write fails the whole operation
4. Derived figures (budget spent, predictions) are caches, never sources of truth
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Core Team"
