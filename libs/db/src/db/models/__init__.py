"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the finance domain models used by ``tally``.
"""

from .finance import AuthToken, Base, Category, Merchant, MerchantKeyword, Transaction

__all__ = [
    "Base",
    "AuthToken",
    "Category",
    "Merchant",
    "MerchantKeyword",
    "Transaction",
]
