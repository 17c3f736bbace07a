"""
Balance Ledger

The authoritative per-wallet token balance. Deposits credit a wallet once per
on-chain transfer; deductions debit it for AI usage and emit the usage
records that the settlement engine later commits on-chain.

Invariant: current_balance == deposited_amount - consumed_amount >= 0.
"""

from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple
from weakref import WeakValueDictionary
import uuid
import structlog

from ..core.amounts import Number, from_base_units, to_base_units, to_decimal
from ..core.errors import InvalidAmount, PersistenceUnavailable, PriceUnavailable
from ..persistence.models import SettlementRecord, UsageRecord, WalletBalance, utc_now
from ..persistence.repository import UsageRepository, WalletRepository

logger = structlog.get_logger()


@dataclass
class Deduction:
    """Result of a successful deduction."""
    balance: WalletBalance
    record: UsageRecord


class BalanceLedger:
    """
    Deposit, deduct and query wallet balances.

    Mutations on one wallet are serialized by a per-wallet lock, and the
    debit itself is a conditional update in the database, so concurrent
    deductions can never drive a balance negative. Different wallets do not
    share locks.
    """

    def __init__(
        self,
        wallets: WalletRepository,
        usage: UsageRepository,
        token_decimals: int = 6,
        price_source: Optional[Callable[[], Decimal]] = None,
        quote_source: Optional[Callable[[Number], Tuple[Decimal, Decimal]]] = None,
    ):
        self.wallets = wallets
        self.usage = usage
        self.decimals = token_decimals
        self.price_source = price_source
        self.quote_source = quote_source
        # Entries disappear once no caller holds the wallet's lock.
        self._locks: "WeakValueDictionary[str, Lock]" = WeakValueDictionary()
        self._locks_guard = Lock()

    def _wallet_lock(self, wallet_address: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(wallet_address)
            if lock is None:
                lock = Lock()
                self._locks[wallet_address] = lock
            return lock

    def _units(self, amount: Number) -> int:
        units = to_base_units(amount, self.decimals)
        if units <= 0:
            raise InvalidAmount("Amount must be positive", {"amount": str(amount)})
        return units

    def get_balance(self, wallet_address: str) -> WalletBalance:
        """Get-or-create a wallet balance; zero balance if the database is down."""
        try:
            return self.wallets.get_or_create(wallet_address)
        except PersistenceUnavailable as e:
            logger.warning("balance_read_degraded", wallet=wallet_address, error=str(e))
            return WalletBalance.empty(wallet_address)

    def record_deposit(
        self,
        wallet_address: str,
        amount: Number,
        tx_ref: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WalletBalance:
        """
        Credit a verified deposit.

        Raises DuplicateTransaction if tx_ref was already recorded on any
        wallet; no credit is applied in that case.
        """
        units = self._units(amount)
        if not tx_ref:
            raise InvalidAmount("Deposit requires a transaction reference")

        with self._wallet_lock(wallet_address):
            balance = self.wallets.credit(wallet_address, units, tx_ref, metadata)

        logger.info(
            "deposit_recorded",
            wallet=wallet_address,
            amount=str(from_base_units(units, self.decimals)),
            tx_hash=tx_ref,
            balance=str(balance.current_balance(self.decimals)),
        )
        return balance

    def deduct_tokens(
        self,
        wallet_address: str,
        amount: Number,
        request_type: str,
        usd_cost: Number,
        token_price: Optional[Number] = None,
    ) -> Deduction:
        """
        Debit tokens for usage and create the matching usage record.

        Raises InsufficientBalance, leaving all state unchanged, if the
        current balance does not cover the amount.
        """
        units = self._units(amount)
        price = self._usage_price(token_price)

        record = UsageRecord(
            record_id=f"USG-{uuid.uuid4().hex}",
            wallet_address=wallet_address,
            request_type=request_type,
            usd_cost=to_decimal(usd_cost),
            token_price=price,
            tokens_burned_units=units,
            timestamp=utc_now(),
        )
        metadata = {"request_type": request_type, "usd_cost": str(record.usd_cost)}

        with self._wallet_lock(wallet_address):
            balance = self.wallets.debit(wallet_address, units, record, metadata)

        logger.info(
            "tokens_deducted",
            wallet=wallet_address,
            amount=str(record.tokens_burned(self.decimals)),
            request_type=request_type,
            record_id=record.record_id,
            balance=str(balance.current_balance(self.decimals)),
        )
        return Deduction(balance=balance, record=record)

    def charge_usage(self, wallet_address: str, usd_cost: Number, request_type: str) -> Deduction:
        """
        Convert a USD cost to tokens and deduct them.

        The usage record stores the same price the conversion used. Raises
        PriceUnavailable, before any state change, when no price is known.
        """
        if self.quote_source is None:
            raise PriceUnavailable("No price quote source configured")
        tokens, price = self.quote_source(usd_cost)
        return self.deduct_tokens(wallet_address, tokens, request_type, usd_cost, token_price=price)

    def _usage_price(self, token_price: Optional[Number]) -> Optional[Decimal]:
        if token_price is not None:
            return to_decimal(token_price)
        if self.price_source is None:
            return None
        try:
            return self.price_source()
        except PriceUnavailable:
            logger.warning("usage_price_unavailable")
            return None

    def has_sufficient_balance(self, wallet_address: str, required: Number) -> bool:
        balance = self.get_balance(wallet_address)
        return balance.current_units >= to_base_units(required, self.decimals)

    def is_recorded(self, tx_ref: str) -> bool:
        """True if tx_ref was already credited to any wallet."""
        return self.wallets.find_wallet_by_tx_hash(tx_ref) is not None

    def unsettled_records(self, limit: int = 100) -> List[UsageRecord]:
        """Up to `limit` unsettled records, oldest first."""
        try:
            return self.usage.get_unsettled(limit)
        except PersistenceUnavailable as e:
            logger.warning("unsettled_read_degraded", error=str(e))
            return []

    def mark_settled(
        self,
        record_ids: List[str],
        settlement_tx_hash: str,
        settlement: Optional[SettlementRecord] = None,
    ) -> int:
        """Settle records once; already-settled ids are a no-op."""
        return self.usage.mark_settled(record_ids, settlement_tx_hash, settlement)

    def pending_tokens(self) -> Decimal:
        try:
            units = self.usage.pending_units()
        except PersistenceUnavailable as e:
            logger.warning("pending_tokens_degraded", error=str(e))
            units = 0
        return from_base_units(units, self.decimals)

    def settlement_totals(self) -> Dict[str, Any]:
        """Burned and treasury totals over confirmed settlements."""
        try:
            totals = self.usage.get_settlement_totals()
        except PersistenceUnavailable as e:
            logger.warning("settlement_totals_degraded", error=str(e))
            totals = {"settlements": 0, "burned_units": 0, "treasury_units": 0}
        return {
            "settlements": totals["settlements"],
            "total_burned": from_base_units(totals["burned_units"], self.decimals),
            "total_to_treasury": from_base_units(totals["treasury_units"], self.decimals),
        }

    def usage_history(self, wallet_address: str, limit: int = 50) -> List[UsageRecord]:
        try:
            return self.usage.get_by_wallet(wallet_address, limit)
        except PersistenceUnavailable as e:
            logger.warning("usage_history_degraded", wallet=wallet_address, error=str(e))
            return []

    def total_stats(self) -> Dict[str, Any]:
        """Totals across all wallets."""
        try:
            totals = self.wallets.get_totals()
        except PersistenceUnavailable as e:
            logger.warning("total_stats_degraded", error=str(e))
            totals = {"total_users": 0, "total_deposited_units": 0, "total_consumed_units": 0}

        return {
            "total_users": totals["total_users"],
            "total_deposited": from_base_units(totals["total_deposited_units"], self.decimals),
            "total_consumed": from_base_units(totals["total_consumed_units"], self.decimals),
        }
