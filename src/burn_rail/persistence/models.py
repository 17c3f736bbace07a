"""
Data Models for Persistence Layer

Token amounts are held as integer base units; the `*_amount` helpers convert
them to Decimal token quantities for callers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import json

from ..core.amounts import from_base_units


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(value: Any) -> str:
    """Normalize a DB timestamp (TEXT in SQLite, datetime in Postgres)."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class TransactionType(Enum):
    """Wallet transaction kinds."""
    DEPOSIT = "deposit"
    USAGE = "usage"
    SETTLEMENT = "settlement"


@dataclass(frozen=True)
class Transaction:
    """Append-only wallet transaction. Usage amounts are negative."""
    tx_type: TransactionType
    amount_units: int
    timestamp: str
    tx_hash: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def amount(self, decimals: int) -> Decimal:
        return from_base_units(self.amount_units, decimals)

    def to_dict(self, decimals: int) -> Dict[str, Any]:
        return {
            "type": self.tx_type.value,
            "amount": str(self.amount(decimals)),
            "tx_hash": self.tx_hash,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Transaction":
        metadata = row.get("metadata")
        if isinstance(metadata, str) and metadata:
            metadata = json.loads(metadata)

        return cls(
            tx_type=TransactionType(row["tx_type"]),
            amount_units=int(row["amount_units"]),
            timestamp=_ts(row["timestamp"]),
            tx_hash=row.get("tx_hash"),
            metadata=metadata or {},
        )


@dataclass
class WalletBalance:
    """Persisted per-wallet balance."""
    wallet_address: str
    deposited_units: int = 0
    consumed_units: int = 0
    current_units: int = 0
    last_updated: str = field(default_factory=utc_now)
    transactions: List[Transaction] = field(default_factory=list)

    @classmethod
    def empty(cls, wallet_address: str) -> "WalletBalance":
        """Zeroed balance, also used when the database is unreachable."""
        return cls(wallet_address=wallet_address)

    def deposited_amount(self, decimals: int) -> Decimal:
        return from_base_units(self.deposited_units, decimals)

    def consumed_amount(self, decimals: int) -> Decimal:
        return from_base_units(self.consumed_units, decimals)

    def current_balance(self, decimals: int) -> Decimal:
        return from_base_units(self.current_units, decimals)

    def to_dict(self, decimals: int, include_transactions: bool = False) -> Dict[str, Any]:
        result = {
            "wallet_address": self.wallet_address,
            "deposited_amount": str(self.deposited_amount(decimals)),
            "consumed_amount": str(self.consumed_amount(decimals)),
            "current_balance": str(self.current_balance(decimals)),
            "last_updated": self.last_updated,
        }
        if include_transactions:
            result["transactions"] = [t.to_dict(decimals) for t in self.transactions]
        return result

    @classmethod
    def from_row(
        cls,
        row: Dict[str, Any],
        transactions: Optional[List[Transaction]] = None,
    ) -> "WalletBalance":
        return cls(
            wallet_address=row["wallet_address"],
            deposited_units=int(row["deposited_units"]),
            consumed_units=int(row["consumed_units"]),
            current_units=int(row["current_units"]),
            last_updated=_ts(row["last_updated"]),
            transactions=transactions or [],
        )


@dataclass(frozen=True)
class UsageRecord:
    """Persisted usage record; only `settled` and `settlement_tx_hash` ever change."""
    record_id: str
    wallet_address: str
    request_type: str
    usd_cost: Decimal
    token_price: Optional[Decimal]
    tokens_burned_units: int
    timestamp: str = field(default_factory=utc_now)
    settled: bool = False
    settlement_tx_hash: Optional[str] = None

    def tokens_burned(self, decimals: int) -> Decimal:
        return from_base_units(self.tokens_burned_units, decimals)

    def to_dict(self, decimals: int) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "wallet_address": self.wallet_address,
            "request_type": self.request_type,
            "usd_cost": str(self.usd_cost),
            "token_price": str(self.token_price) if self.token_price is not None else None,
            "tokens_burned": str(self.tokens_burned(decimals)),
            "settled": self.settled,
            "settlement_tx_hash": self.settlement_tx_hash,
            "timestamp": self.timestamp,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.record_id,
            self.wallet_address,
            self.request_type,
            str(self.usd_cost),
            str(self.token_price) if self.token_price is not None else None,
            self.tokens_burned_units,
            1 if self.settled else 0,
            self.settlement_tx_hash,
            self.timestamp,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UsageRecord":
        token_price = row.get("token_price")
        return cls(
            record_id=row["record_id"],
            wallet_address=row["wallet_address"],
            request_type=row["request_type"],
            usd_cost=Decimal(str(row["usd_cost"])),
            token_price=Decimal(str(token_price)) if token_price is not None else None,
            tokens_burned_units=int(row["tokens_burned_units"]),
            timestamp=_ts(row["timestamp"]),
            settled=bool(row.get("settled", 0)),
            settlement_tx_hash=row.get("settlement_tx_hash"),
        )


@dataclass(frozen=True)
class SettlementRecord:
    """A confirmed on-chain settlement of a batch of usage records."""
    tx_hash: str
    record_count: int
    total_units: int
    burn_units: int
    treasury_units: int
    settled_at: str = field(default_factory=utc_now)

    def to_db_tuple(self) -> tuple:
        return (
            self.tx_hash,
            self.record_count,
            self.total_units,
            self.burn_units,
            self.treasury_units,
            self.settled_at,
        )
