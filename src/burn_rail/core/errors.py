"""
Burn Rail Exception Hierarchy

All exceptions inherit from BurnRailError for easy catching.

`retryable` marks conditions the calling layer may retry. InsufficientBalance,
DuplicateTransaction and VerificationFailed are terminal for that request.
"""

from typing import Any, Dict, Optional


class BurnRailError(Exception):
    """Base exception for all Burn Rail errors"""

    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(BurnRailError):
    """Raised when a required setting is missing or invalid"""
    retryable = False


class InvalidAmount(BurnRailError):
    """Raised when a deposit or deduction amount is not positive"""
    retryable = False


class PriceUnavailable(BurnRailError):
    """Raised when no fresh or cached price sample exists"""
    pass


class InvalidPrice(BurnRailError):
    """Raised when the windowed price is non-positive"""
    pass


class InsufficientBalance(BurnRailError):
    """Raised when a deduction exceeds the wallet's current balance"""
    retryable = False


class DuplicateTransaction(BurnRailError):
    """Raised when a deposit references an already recorded transaction"""
    retryable = False


class VerificationFailed(BurnRailError):
    """Raised when on-chain verification of a deposit fails"""
    retryable = False


class PersistenceUnavailable(BurnRailError):
    """Raised when the database cannot be reached"""
    pass


class SettlementExecutionFailed(BurnRailError):
    """Raised when the settlement transaction fails or times out"""
    pass


class ConnectionExhausted(BurnRailError):
    """Raised when every RPC endpoint is unreachable"""
    pass
