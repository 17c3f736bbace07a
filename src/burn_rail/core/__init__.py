"""
Shared primitives: errors, retry policy, token amount arithmetic.
"""

from .errors import (
    BurnRailError,
    ConfigurationError,
    InvalidAmount,
    PriceUnavailable,
    InvalidPrice,
    InsufficientBalance,
    DuplicateTransaction,
    VerificationFailed,
    PersistenceUnavailable,
    SettlementExecutionFailed,
    ConnectionExhausted,
)
from .retry import RetryPolicy
from .amounts import to_decimal, to_base_units, from_base_units, split_settlement

__all__ = [
    "BurnRailError",
    "ConfigurationError",
    "InvalidAmount",
    "PriceUnavailable",
    "InvalidPrice",
    "InsufficientBalance",
    "DuplicateTransaction",
    "VerificationFailed",
    "PersistenceUnavailable",
    "SettlementExecutionFailed",
    "ConnectionExhausted",
    "RetryPolicy",
    "to_decimal",
    "to_base_units",
    "from_base_units",
    "split_settlement",
]
