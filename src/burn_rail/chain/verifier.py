"""
Deposit Verification

Confirms that a finalized on-chain transaction moved tokens of the expected
mint into token accounts owned by the expected wallet.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol
import structlog

from ..core.amounts import Number, from_base_units, to_decimal

logger = structlog.get_logger()


class TransactionReader(Protocol):
    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]: ...


@dataclass
class VerificationResult:
    """Result of verifying a deposit transaction."""
    valid: bool
    actual_amount: Optional[Decimal] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "actual_amount": str(self.actual_amount) if self.actual_amount is not None else None,
            "error": self.error,
        }


def _owned_units(balances: List[Dict[str, Any]], owner: str, mint: str) -> Dict[int, int]:
    """accountIndex -> raw amount for token balances matching owner and mint."""
    result: Dict[int, int] = {}
    for entry in balances or []:
        if entry.get("owner") != owner or entry.get("mint") != mint:
            continue
        amount = (entry.get("uiTokenAmount") or {}).get("amount", "0")
        result[int(entry["accountIndex"])] = int(amount)
    return result


def _token_decimals(balances: List[Dict[str, Any]], mint: str) -> Optional[int]:
    for entry in balances or []:
        if entry.get("mint") == mint:
            decimals = (entry.get("uiTokenAmount") or {}).get("decimals")
            if decimals is not None:
                return int(decimals)
    return None


class TransactionVerifier:
    """
    Verifies deposits from pre/post token balances.

    The credited amount is the net increase over all token accounts that the
    wallet owns for the mint. An expected amount is checked within
    `tolerance` tokens (one base unit by default).
    """

    def __init__(
        self,
        chain: TransactionReader,
        token_decimals: int = 6,
        tolerance: Optional[Number] = None,
    ):
        self.chain = chain
        self.decimals = token_decimals
        self.tolerance = (
            to_decimal(tolerance) if tolerance is not None
            else from_base_units(1, token_decimals)
        )

    def verify_deposit(
        self,
        tx_ref: str,
        expected_wallet: str,
        expected_asset: str,
        expected_amount: Optional[Number] = None,
    ) -> VerificationResult:
        try:
            tx = self.chain.get_transaction(tx_ref)
        except ValueError:
            return VerificationResult(valid=False, error="Invalid transaction signature")

        if tx is None:
            return self._invalid(tx_ref, "Transaction not found or not finalized")

        meta = tx.get("meta") or {}
        if meta.get("err") is not None:
            return self._invalid(tx_ref, "Transaction failed on-chain")

        pre_balances = meta.get("preTokenBalances") or []
        post_balances = meta.get("postTokenBalances") or []
        pre = _owned_units(pre_balances, expected_wallet, expected_asset)
        post = _owned_units(post_balances, expected_wallet, expected_asset)

        delta_units = sum(post.values()) - sum(pre.values())
        if delta_units <= 0:
            return self._invalid(tx_ref, "No token transfer to wallet found")

        decimals = _token_decimals(post_balances, expected_asset)
        actual = from_base_units(delta_units, decimals if decimals is not None else self.decimals)

        if expected_amount is not None:
            expected = to_decimal(expected_amount)
            if abs(actual - expected) > self.tolerance:
                return VerificationResult(
                    valid=False,
                    actual_amount=actual,
                    error=f"Amount mismatch: expected {expected}, got {actual}",
                )

        logger.info("deposit_verified", tx_hash=tx_ref, wallet=expected_wallet, amount=str(actual))
        return VerificationResult(valid=True, actual_amount=actual)

    def _invalid(self, tx_ref: str, error: str) -> VerificationResult:
        logger.info("deposit_verification_failed", tx_hash=tx_ref, error=error)
        return VerificationResult(valid=False, error=error)
