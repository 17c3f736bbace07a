"""
Persistence Layer for Burn Rail

Supports SQLite (dev) and PostgreSQL (production).
"""

from .database import Database
from .models import (
    WalletBalance,
    Transaction,
    TransactionType,
    UsageRecord,
    SettlementRecord,
)
from .repository import WalletRepository, UsageRepository

__all__ = [
    "Database",
    "WalletBalance",
    "Transaction",
    "TransactionType",
    "UsageRecord",
    "SettlementRecord",
    "WalletRepository",
    "UsageRepository",
]
