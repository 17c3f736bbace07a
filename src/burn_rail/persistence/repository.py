"""
Repository Layer for Burn Rail

Find/create/update operations for wallets, usage records and settlements.
Every balance mutation is a single database transaction.
"""

from typing import Any, Dict, List, Optional
import json
import structlog

from ..core.errors import DuplicateTransaction, InsufficientBalance
from .database import Database, Transaction as DbTransaction
from .models import (
    SettlementRecord,
    Transaction,
    TransactionType,
    UsageRecord,
    WalletBalance,
    utc_now,
)

logger = structlog.get_logger()


class WalletRepository:
    """Repository for wallet balances and their transactions."""

    def __init__(self, db: Database):
        self.db = db

    def _ensure(self, tx: DbTransaction, wallet_address: str) -> None:
        now = utc_now()
        tx.execute(
            """INSERT INTO wallet_balances
               (wallet_address, deposited_units, consumed_units, current_units, created_at, last_updated)
               VALUES (?, 0, 0, 0, ?, ?)
               ON CONFLICT (wallet_address) DO NOTHING""",
            (wallet_address, now, now),
        )

    def _load(self, tx: DbTransaction, wallet_address: str) -> Optional[WalletBalance]:
        row = tx.execute(
            "SELECT * FROM wallet_balances WHERE wallet_address = ?",
            (wallet_address,),
        ).first()
        if row is None:
            return None
        tx_rows = tx.execute(
            "SELECT * FROM wallet_transactions WHERE wallet_address = ? ORDER BY id ASC",
            (wallet_address,),
        ).rows
        return WalletBalance.from_row(row, [Transaction.from_row(r) for r in tx_rows])

    def _append(
        self,
        tx: DbTransaction,
        wallet_address: str,
        tx_type: TransactionType,
        amount_units: int,
        tx_hash: Optional[str],
        metadata: Optional[Dict[str, Any]],
        timestamp: str,
    ) -> None:
        tx.execute(
            """INSERT INTO wallet_transactions
               (wallet_address, tx_type, amount_units, tx_hash, timestamp, metadata)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                wallet_address,
                tx_type.value,
                amount_units,
                tx_hash,
                timestamp,
                json.dumps(metadata) if metadata else None,
            ),
        )

    def get(self, wallet_address: str) -> Optional[WalletBalance]:
        """Get a wallet balance, or None if it was never created."""
        with self.db.transaction(immediate=False) as tx:
            return self._load(tx, wallet_address)

    def get_or_create(self, wallet_address: str) -> WalletBalance:
        """Get a wallet balance, creating a zeroed one on first access."""
        existing = self.get(wallet_address)
        if existing is not None:
            return existing

        with self.db.transaction() as tx:
            self._ensure(tx, wallet_address)
            balance = self._load(tx, wallet_address)

        logger.info("wallet_created", wallet=wallet_address)
        return balance

    def credit(
        self,
        wallet_address: str,
        amount_units: int,
        tx_hash: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WalletBalance:
        """
        Append a deposit transaction and increase the balance.

        The unique tx_hash column rejects a hash already recorded on any wallet.
        """
        now = utc_now()
        try:
            with self.db.transaction() as tx:
                self._ensure(tx, wallet_address)
                self._append(tx, wallet_address, TransactionType.DEPOSIT,
                             amount_units, tx_hash, metadata, now)
                tx.execute(
                    """UPDATE wallet_balances
                       SET deposited_units = deposited_units + ?,
                           current_units = current_units + ?,
                           last_updated = ?
                       WHERE wallet_address = ?""",
                    (amount_units, amount_units, now, wallet_address),
                )
                return self._load(tx, wallet_address)
        except self.db.integrity_errors:
            raise DuplicateTransaction(
                "Transaction has already been processed",
                {"tx_hash": tx_hash},
            )

    def debit(
        self,
        wallet_address: str,
        amount_units: int,
        usage: UsageRecord,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WalletBalance:
        """
        Decrease the balance if it covers amount_units, then append the usage
        transaction and create the usage record, all in one transaction.

        The balance check and decrement are a single conditional UPDATE; when
        it matches no row the transaction is rolled back untouched.
        """
        now = usage.timestamp
        with self.db.transaction() as tx:
            self._ensure(tx, wallet_address)
            result = tx.execute(
                """UPDATE wallet_balances
                   SET consumed_units = consumed_units + ?,
                       current_units = current_units - ?,
                       last_updated = ?
                   WHERE wallet_address = ? AND current_units >= ?""",
                (amount_units, amount_units, now, wallet_address, amount_units),
            )
            if result.rowcount != 1:
                row = tx.execute(
                    "SELECT current_units FROM wallet_balances WHERE wallet_address = ?",
                    (wallet_address,),
                ).first()
                raise InsufficientBalance(
                    "Insufficient token balance",
                    {
                        "wallet": wallet_address,
                        "required_units": amount_units,
                        "available_units": row["current_units"] if row else 0,
                    },
                )

            self._append(tx, wallet_address, TransactionType.USAGE,
                         -amount_units, None, metadata, now)
            tx.execute(
                """INSERT INTO usage_records
                   (record_id, wallet_address, request_type, usd_cost, token_price,
                    tokens_burned_units, settled, settlement_tx_hash, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                usage.to_db_tuple(),
            )
            return self._load(tx, wallet_address)

    def find_wallet_by_tx_hash(self, tx_hash: str) -> Optional[str]:
        """Return the wallet that recorded tx_hash, if any."""
        rows = self.db.execute(
            "SELECT wallet_address FROM wallet_transactions WHERE tx_hash = ?",
            (tx_hash,),
        )
        return rows[0]["wallet_address"] if rows else None

    def get_totals(self) -> Dict[str, int]:
        """Aggregate deposited/consumed units and wallet count."""
        rows = self.db.execute(
            """SELECT
                COUNT(*) as total_users,
                SUM(deposited_units) as total_deposited,
                SUM(consumed_units) as total_consumed
               FROM wallet_balances"""
        )
        row = rows[0] if rows else {}
        return {
            "total_users": int(row.get("total_users") or 0),
            "total_deposited_units": int(row.get("total_deposited") or 0),
            "total_consumed_units": int(row.get("total_consumed") or 0),
        }


class UsageRepository:
    """Repository for usage records and settlements."""

    def __init__(self, db: Database):
        self.db = db

    def get_unsettled(self, limit: int = 100) -> List[UsageRecord]:
        """Oldest unsettled records first."""
        results = self.db.execute(
            "SELECT * FROM usage_records WHERE settled = 0 ORDER BY seq ASC LIMIT ?",
            (limit,),
        )
        return [UsageRecord.from_row(r) for r in results]

    def get_by_wallet(self, wallet_address: str, limit: int = 50) -> List[UsageRecord]:
        """Most recent usage records for a wallet."""
        results = self.db.execute(
            "SELECT * FROM usage_records WHERE wallet_address = ? ORDER BY seq DESC LIMIT ?",
            (wallet_address, limit),
        )
        return [UsageRecord.from_row(r) for r in results]

    def pending_units(self) -> int:
        """Sum of tokens burned over all unsettled records."""
        rows = self.db.execute(
            "SELECT SUM(tokens_burned_units) as pending FROM usage_records WHERE settled = 0"
        )
        return int(rows[0].get("pending") or 0) if rows else 0

    def mark_settled(
        self,
        record_ids: List[str],
        settlement_tx_hash: str,
        settlement: Optional[SettlementRecord] = None,
    ) -> int:
        """
        Mark unsettled records as settled and record the settlement.

        Already-settled ids are left untouched. Returns the number of records
        that changed state.
        """
        if not record_ids:
            return 0

        placeholders = ",".join(["?" for _ in record_ids])
        with self.db.transaction() as tx:
            result = tx.execute(
                f"""UPDATE usage_records SET settled = 1, settlement_tx_hash = ?
                    WHERE settled = 0 AND record_id IN ({placeholders})""",
                (settlement_tx_hash, *record_ids),
            )
            changed = max(result.rowcount, 0)
            if changed and settlement is not None:
                tx.execute(
                    """INSERT INTO settlements
                       (tx_hash, record_count, total_units, burn_units, treasury_units, settled_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT (tx_hash) DO NOTHING""",
                    settlement.to_db_tuple(),
                )

        logger.info(
            "usage_records_settled",
            requested=len(record_ids),
            changed=changed,
            tx_hash=settlement_tx_hash,
        )
        return changed

    def get_settlement_totals(self) -> Dict[str, int]:
        rows = self.db.execute(
            """SELECT
                COUNT(*) as settlements,
                SUM(burn_units) as burned,
                SUM(treasury_units) as treasury
               FROM settlements"""
        )
        row = rows[0] if rows else {}
        return {
            "settlements": int(row.get("settlements") or 0),
            "burned_units": int(row.get("burned") or 0),
            "treasury_units": int(row.get("treasury") or 0),
        }
