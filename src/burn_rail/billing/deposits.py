"""
Deposit Service

Verify-then-credit for token deposits. A deposit is credited with the amount
the chain actually moved, and each transaction signature is credited once.
"""

from typing import Any, Dict, List, Optional, Protocol
import structlog

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from ..core.amounts import Number
from ..core.errors import DuplicateTransaction, VerificationFailed
from ..chain.verifier import TransactionVerifier
from ..persistence.models import WalletBalance
from .ledger import BalanceLedger

logger = structlog.get_logger()


class SignatureSource(Protocol):
    def get_signatures_for_address(self, address: str, limit: int = 20) -> List[Dict[str, Any]]: ...


class DepositService:
    """Credits verified on-chain deposits to the ledger."""

    def __init__(
        self,
        ledger: BalanceLedger,
        verifier: TransactionVerifier,
        chain: SignatureSource,
        token_mint_address: str,
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.chain = chain
        self.token_mint_address = token_mint_address

    def deposit(
        self,
        wallet_address: str,
        tx_ref: str,
        amount: Optional[Number] = None,
    ) -> WalletBalance:
        """
        Verify a deposit transaction and credit the wallet.

        Known signatures are rejected before any RPC call.
        """
        if self.ledger.is_recorded(tx_ref):
            raise DuplicateTransaction("Transaction has already been processed", {"tx_hash": tx_ref})

        result = self.verifier.verify_deposit(
            tx_ref,
            wallet_address,
            self.token_mint_address,
            expected_amount=amount,
        )
        if not result.valid:
            raise VerificationFailed(
                result.error or "Transaction verification failed",
                {"tx_hash": tx_ref, "wallet": wallet_address},
            )

        return self.ledger.record_deposit(
            wallet_address,
            result.actual_amount,
            tx_ref,
            metadata={"source": "deposit", "claimed_amount": str(amount) if amount is not None else None},
        )

    def token_account(self, wallet_address: str) -> str:
        """Associated token account of the wallet for the configured mint."""
        try:
            owner = Pubkey.from_string(wallet_address)
            mint = Pubkey.from_string(self.token_mint_address)
        except ValueError:
            raise VerificationFailed("Invalid wallet or mint address", {"wallet": wallet_address})
        return str(get_associated_token_address(owner, mint))

    def scan(self, wallet_address: str, limit: int = 20) -> Dict[str, Any]:
        """
        Credit every verified, not yet recorded transfer into the wallet's
        token account among its `limit` most recent signatures.
        """
        account = self.token_account(wallet_address)
        signatures = self.chain.get_signatures_for_address(account, limit=limit)

        credited: List[Dict[str, str]] = []
        already_processed = 0

        for entry in signatures:
            if entry.get("err") is not None:
                continue
            signature = entry["signature"]
            if self.ledger.is_recorded(signature):
                already_processed += 1
                continue

            result = self.verifier.verify_deposit(signature, wallet_address, self.token_mint_address)
            if not result.valid:
                continue

            try:
                self.ledger.record_deposit(
                    wallet_address,
                    result.actual_amount,
                    signature,
                    metadata={"source": "scan"},
                )
            except DuplicateTransaction:
                already_processed += 1
                continue
            credited.append({"signature": signature, "amount": str(result.actual_amount)})

        logger.info(
            "deposit_scan_completed",
            wallet=wallet_address,
            scanned=len(signatures),
            credited=len(credited),
            already_processed=already_processed,
        )
        return {"credited": credited, "already_processed": already_processed}
