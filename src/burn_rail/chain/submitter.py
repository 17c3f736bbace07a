"""
Settlement Transaction Submitter

Builds one transaction holding an SPL burn of the burn amount and a transfer
of the treasury amount, both from the backend wallet's associated token
account, then sends it and waits for `confirmed` status.
"""

import time
from typing import Callable, List
import structlog

from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    BurnCheckedParams,
    TransferCheckedParams,
    burn_checked,
    get_associated_token_address,
    transfer_checked,
)

from ..core.errors import BurnRailError, SettlementExecutionFailed
from .connection import ChainConnection
from .keys import SettlementKeyStore

logger = structlog.get_logger()

CONFIRMED_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


class SolanaSettlementSubmitter:
    """Signs and submits settlement transactions with the backend keypair."""

    def __init__(
        self,
        chain: ChainConnection,
        keys: SettlementKeyStore,
        token_mint_address: str,
        treasury_wallet_address: str,
        token_decimals: int = 6,
        confirm_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.chain = chain
        self.keys = keys
        self.token_mint_address = token_mint_address
        self.treasury_wallet_address = treasury_wallet_address
        self.decimals = token_decimals
        self.confirm_timeout_seconds = confirm_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep

    def build_instructions(self, owner: Pubkey, burn_units: int, treasury_units: int) -> List[Instruction]:
        """Burn and treasury transfer instructions; zero amounts are omitted."""
        mint = Pubkey.from_string(self.token_mint_address)
        treasury = Pubkey.from_string(self.treasury_wallet_address)
        source = get_associated_token_address(owner, mint)

        instructions = []
        if burn_units > 0:
            instructions.append(burn_checked(BurnCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                account=source,
                owner=owner,
                amount=burn_units,
                decimals=self.decimals,
            )))
        if treasury_units > 0:
            instructions.append(transfer_checked(TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                mint=mint,
                dest=get_associated_token_address(treasury, mint),
                owner=owner,
                amount=treasury_units,
                decimals=self.decimals,
            )))
        return instructions

    def submit_settlement(self, burn_units: int, treasury_units: int) -> str:
        """Send the settlement transaction and wait for confirmation."""
        try:
            return self._submit(burn_units, treasury_units)
        except SettlementExecutionFailed:
            raise
        except BurnRailError as e:
            raise SettlementExecutionFailed(e.message, e.details) from e
        except Exception as e:
            raise SettlementExecutionFailed("Settlement submission failed", {"error": str(e)}) from e

    def _submit(self, burn_units: int, treasury_units: int) -> str:
        if not self.token_mint_address or not self.treasury_wallet_address:
            raise SettlementExecutionFailed("Token mint and treasury wallet must be configured")

        keypair = self.keys.load_keypair()
        owner = keypair.pubkey()
        instructions = self.build_instructions(owner, burn_units, treasury_units)
        if not instructions:
            raise SettlementExecutionFailed("Nothing to settle", {"burn_units": burn_units})

        blockhash = self.chain.execute(
            "get_latest_blockhash",
            lambda c: c.get_latest_blockhash(commitment=Confirmed),
        ).value.blockhash
        message = Message.new_with_blockhash(instructions, owner, blockhash)
        transaction = Transaction([keypair], message, blockhash)

        signature = self.chain.execute(
            "send_transaction",
            lambda c: c.send_transaction(transaction, opts=TxOpts(preflight_commitment=Confirmed)),
        ).value
        logger.info(
            "settlement_submitted",
            signature=str(signature),
            burn_units=burn_units,
            treasury_units=treasury_units,
        )

        self._await_confirmation(signature)
        return str(signature)

    def _await_confirmation(self, signature) -> None:
        deadline = time.monotonic() + self.confirm_timeout_seconds
        while True:
            statuses = self.chain.execute(
                "get_signature_statuses",
                lambda c: c.get_signature_statuses([signature]),
            ).value
            status = statuses[0] if statuses else None

            if status is not None:
                if status.err is not None:
                    raise SettlementExecutionFailed(
                        "Settlement transaction failed on-chain",
                        {"signature": str(signature), "error": str(status.err)},
                    )
                if status.confirmation_status in CONFIRMED_STATUSES:
                    logger.info("settlement_confirmed", signature=str(signature))
                    return

            if time.monotonic() >= deadline:
                raise SettlementExecutionFailed(
                    "Settlement confirmation timed out",
                    {"signature": str(signature), "timeout_seconds": self.confirm_timeout_seconds},
                )
            self._sleep(self.poll_interval_seconds)
