"""
Settlement Engine

Periodically commits accumulated usage debt on-chain. Each batch sums the
oldest unsettled usage records and submits one transaction that burns half
of the total and sends the remainder to the treasury. Records are marked
settled only after the transaction is confirmed.
"""

from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Tuple
import structlog

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.amounts import Number, from_base_units, split_settlement, to_decimal
from ..core.errors import BurnRailError, PersistenceUnavailable, SettlementExecutionFailed
from ..persistence.models import SettlementRecord, utc_now
from .ledger import BalanceLedger

logger = structlog.get_logger()


class SettlementSubmitter(Protocol):
    def submit_settlement(self, burn_units: int, treasury_units: int) -> str:
        """Submit and confirm one burn + treasury transaction; returns its signature."""
        ...


@dataclass
class SettlementResult:
    """Outcome of one settlement run."""
    settled: bool
    record_count: int = 0
    total_tokens: Decimal = Decimal(0)
    burn_amount: Decimal = Decimal(0)
    treasury_amount: Decimal = Decimal(0)
    tx_hash: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settled": self.settled,
            "record_count": self.record_count,
            "total_tokens": str(self.total_tokens),
            "burn_amount": str(self.burn_amount),
            "treasury_amount": str(self.treasury_amount),
            "tx_hash": self.tx_hash,
            "reason": self.reason,
        }


class SettlementEngine:
    """
    Batches unsettled usage into on-chain settlements.

    All runs share one non-reentrant lock. A caller arriving while a run is in
    flight waits for it and then reads the unsettled set again, so the same
    records are never submitted twice.
    """

    def __init__(
        self,
        ledger: BalanceLedger,
        submitter: SettlementSubmitter,
        batch_size: int = 100,
        threshold: Number = Decimal("1000"),
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.batch_size = batch_size
        self.threshold = to_decimal(threshold)
        self._lock = Lock()
        # Confirmed on-chain but not yet marked settled: (record ids, settlement).
        self._unrecorded: Optional[Tuple[List[str], SettlementRecord]] = None

    def run_batch(self) -> SettlementResult:
        """Settle up to batch_size of the oldest unsettled records."""
        with self._lock:
            return self._settle()

    def trigger_now(self) -> SettlementResult:
        """Run a settlement immediately (admin trigger or threshold hit)."""
        logger.info("settlement_triggered")
        with self._lock:
            return self._settle()

    def check_threshold(self) -> Optional[SettlementResult]:
        """Trigger a settlement when pending tokens reach the threshold."""
        pending = self.ledger.pending_tokens()
        if pending < self.threshold:
            logger.debug("settlement_threshold_not_reached", pending=str(pending))
            return None

        logger.info(
            "settlement_threshold_reached",
            pending=str(pending),
            threshold=str(self.threshold),
        )
        return self.trigger_now()

    def _settle(self) -> SettlementResult:
        if self._unrecorded is not None:
            return self._record_confirmed()

        records = self.ledger.unsettled_records(self.batch_size)
        if not records:
            logger.info("settlement_skipped", reason="no_unsettled_records")
            return SettlementResult(settled=False, reason="no_unsettled_records")

        decimals = self.ledger.decimals
        total_units = sum(r.tokens_burned_units for r in records)
        burn_units, treasury_units = split_settlement(total_units)

        logger.info(
            "settlement_started",
            records=len(records),
            total=str(from_base_units(total_units, decimals)),
            burn=str(from_base_units(burn_units, decimals)),
            treasury=str(from_base_units(treasury_units, decimals)),
        )

        try:
            tx_hash = self.submitter.submit_settlement(burn_units, treasury_units)
        except SettlementExecutionFailed as e:
            logger.error("settlement_failed", error=str(e), records=len(records))
            raise
        except Exception as e:
            logger.error("settlement_failed", error=str(e), records=len(records))
            raise SettlementExecutionFailed("Settlement transaction failed", {"error": str(e)}) from e

        settlement = SettlementRecord(
            tx_hash=tx_hash,
            record_count=len(records),
            total_units=total_units,
            burn_units=burn_units,
            treasury_units=treasury_units,
            settled_at=utc_now(),
        )
        self._unrecorded = ([r.record_id for r in records], settlement)
        return self._record_confirmed()

    def _record_confirmed(self) -> SettlementResult:
        """
        Mark the records of the confirmed settlement as settled.

        If the database is unavailable the batch is kept and retried at the
        start of the next run; no new transaction is submitted until it is
        recorded.
        """
        record_ids, settlement = self._unrecorded
        try:
            changed = self.ledger.mark_settled(record_ids, settlement.tx_hash, settlement)
        except PersistenceUnavailable:
            logger.critical(
                "settlement_not_recorded",
                tx_hash=settlement.tx_hash,
                records=len(record_ids),
            )
            raise
        self._unrecorded = None

        decimals = self.ledger.decimals
        logger.info("settlement_completed", tx_hash=settlement.tx_hash, records=changed)
        return SettlementResult(
            settled=True,
            record_count=settlement.record_count,
            total_tokens=from_base_units(settlement.total_units, decimals),
            burn_amount=from_base_units(settlement.burn_units, decimals),
            treasury_amount=from_base_units(settlement.treasury_units, decimals),
            tx_hash=settlement.tx_hash,
        )

    def stats(self) -> Dict[str, Any]:
        totals = self.ledger.settlement_totals()
        return {
            "total_burned": totals["total_burned"],
            "total_to_treasury": totals["total_to_treasury"],
            "settlements": totals["settlements"],
            "pending_settlement": self.ledger.pending_tokens(),
        }


class SettlementScheduler:
    """Registers the threshold monitor and the scheduled settlement run."""

    THRESHOLD_JOB_ID = "settlement_threshold_monitor"
    SCHEDULED_JOB_ID = "settlement_scheduled_run"

    def __init__(
        self,
        engine: SettlementEngine,
        poll_minutes: float = 5.0,
        interval_minutes: float = 60.0,
    ):
        self.engine = engine
        self.poll_minutes = poll_minutes
        self.interval_minutes = interval_minutes

    def register(self, scheduler: BaseScheduler) -> None:
        scheduler.add_job(
            self.threshold_job,
            IntervalTrigger(minutes=self.poll_minutes),
            id=self.THRESHOLD_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.scheduled_job,
            IntervalTrigger(minutes=self.interval_minutes),
            id=self.SCHEDULED_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "settlement_jobs_registered",
            poll_minutes=self.poll_minutes,
            interval_minutes=self.interval_minutes,
        )

    def threshold_job(self) -> None:
        try:
            self.engine.check_threshold()
        except BurnRailError as e:
            logger.error("settlement_threshold_job_failed", error=str(e))

    def scheduled_job(self) -> None:
        try:
            self.engine.run_batch()
        except BurnRailError as e:
            logger.error("settlement_scheduled_job_failed", error=str(e))
