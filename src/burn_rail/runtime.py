"""
Service Runtime

Builds every service once from Settings and owns their lifecycle, including
the background jobs (price refresh, RPC health check, settlement).
"""

from typing import Optional
import structlog

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .billing.deposits import DepositService
from .billing.ledger import BalanceLedger
from .billing.metering import CostCalculator
from .billing.settlement import SettlementEngine, SettlementScheduler, SettlementSubmitter
from .chain.connection import ChainConnection
from .chain.keys import SettlementKeyStore
from .chain.submitter import SolanaSettlementSubmitter
from .chain.verifier import TransactionVerifier
from .config import Settings
from .core.errors import PriceUnavailable
from .core.retry import RetryPolicy
from .persistence.database import Database
from .persistence.repository import UsageRepository, WalletRepository
from .pricing.feed import JupiterPriceFeed
from .pricing.oracle import PriceFeed, PriceOracle

logger = structlog.get_logger()


class BurnRailRuntime:
    """
    Explicitly constructed service graph.

    Collaborators that talk to the network (price feed, chain, submitter) can
    be passed in; otherwise they are built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        feed: Optional[PriceFeed] = None,
        chain: Optional[ChainConnection] = None,
        submitter: Optional[SettlementSubmitter] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.settings = settings
        rpc_retry = RetryPolicy(
            max_attempts=settings.rpc_max_retries,
            base_delay=settings.rpc_backoff_seconds,
        )

        self.db = Database(settings.database_url, timeout=settings.database_timeout_seconds)
        self.wallets = WalletRepository(self.db)
        self.usage = UsageRepository(self.db)

        self.feed = feed or JupiterPriceFeed(
            api_url=settings.jupiter_api_url,
            token_mint_address=settings.token_mint_address,
            api_key=settings.jupiter_api_key,
            timeout=settings.price_fetch_timeout_seconds,
        )
        self.oracle = PriceOracle(
            self.feed,
            window_seconds=settings.twap_window_seconds,
            burn_floor=settings.burn_floor,
            burn_ceiling=settings.burn_ceiling,
            cache_ttl_seconds=settings.price_cache_ttl_seconds,
            retry_policy=RetryPolicy(max_attempts=2, base_delay=settings.rpc_backoff_seconds),
        )
        self.calculator = CostCalculator()

        self.ledger = BalanceLedger(
            self.wallets,
            self.usage,
            token_decimals=settings.token_decimals,
            price_source=self.oracle.windowed_price,
            quote_source=self.oracle.quote,
        )

        self.chain = chain or ChainConnection(
            settings.rpc_endpoints,
            timeout=settings.rpc_timeout_seconds,
            retry_policy=rpc_retry,
        )
        self.verifier = TransactionVerifier(self.chain, token_decimals=settings.token_decimals)
        self.deposits = DepositService(
            self.ledger,
            self.verifier,
            self.chain,
            settings.token_mint_address,
        )

        self.keys = SettlementKeyStore(
            private_key=settings.backend_wallet_private_key,
            storage_path=settings.key_storage_path,
            master_secret=settings.key_master_secret,
        )
        self.submitter = submitter or SolanaSettlementSubmitter(
            self.chain,
            self.keys,
            token_mint_address=settings.token_mint_address,
            treasury_wallet_address=settings.treasury_wallet_address,
            token_decimals=settings.token_decimals,
            confirm_timeout_seconds=settings.settlement_confirm_timeout_seconds,
        )
        self.settlement = SettlementEngine(
            self.ledger,
            self.submitter,
            batch_size=settings.settlement_batch_size,
            threshold=settings.settlement_threshold_tokens,
        )
        self.settlement_scheduler = SettlementScheduler(
            self.settlement,
            poll_minutes=settings.settlement_poll_minutes,
            interval_minutes=settings.settlement_interval_minutes,
        )

        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._started = False

    def start(self, background_jobs: bool = True) -> None:
        """Initialize storage, price, chain and (optionally) background jobs."""
        if self._started:
            return

        errors, warnings = self.settings.validate()
        for message in errors:
            logger.error("config_error", message=message)
        for message in warnings:
            logger.warning("config_warning", message=message)

        self.db.initialize()
        self.oracle.initialize()
        self.chain.start()

        if background_jobs:
            self._register_jobs()
            self.scheduler.start()

        self._started = True
        logger.info("runtime_started", background_jobs=background_jobs)

    def _register_jobs(self) -> None:
        self.scheduler.add_job(
            self._refresh_price_job,
            IntervalTrigger(seconds=self.settings.price_refresh_seconds),
            id="price_refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._health_check_job,
            IntervalTrigger(seconds=self.settings.rpc_health_interval_seconds),
            id="rpc_health_check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.settlement_scheduler.register(self.scheduler)

    def _refresh_price_job(self) -> None:
        try:
            self.oracle.refresh_price()
        except PriceUnavailable as e:
            logger.error("price_refresh_job_failed", error=str(e))

    def _health_check_job(self) -> None:
        healthy = self.chain.health_check()
        logger.debug("rpc_health_checked", healthy=healthy, endpoint=self.chain.endpoint)

    def shutdown(self) -> None:
        """Stop background jobs and close clients."""
        if not self._started:
            return

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self.oracle.shutdown()
        self.chain.shutdown()
        self.db.close()

        self._started = False
        logger.info("runtime_stopped")
