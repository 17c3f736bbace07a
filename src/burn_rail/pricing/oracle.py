"""
Price Oracle

Samples the market price on a timer, keeps a bounded in-memory window and
converts USD costs into token amounts clamped to [burn_floor, burn_ceiling].

The windowed price is an unweighted mean of in-window samples, not a
duration-weighted average.
"""

import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol, Tuple
import structlog

from ..core.amounts import Number, to_decimal
from ..core.errors import InvalidPrice, PriceUnavailable
from ..core.retry import RetryPolicy

logger = structlog.get_logger()


class PriceFeed(Protocol):
    def fetch_price(self) -> Decimal: ...


@dataclass(frozen=True)
class PriceSample:
    """A single observed market price."""
    price: Decimal
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def to_dict(self) -> dict:
        return {"price": str(self.price), "timestamp": self.timestamp}


class PriceOracle:
    """
    Windowed token price.

    One writer (the refresh job) and many readers. The sample tuple is
    replaced wholesale under a short lock, so readers take a snapshot
    without waiting on a fetch in progress.
    """

    def __init__(
        self,
        feed: PriceFeed,
        window_seconds: float = 600.0,
        burn_floor: Number = Decimal("0.05"),
        burn_ceiling: Number = Decimal("50"),
        cache_ttl_seconds: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.feed = feed
        self.window_seconds = window_seconds
        self.burn_floor = to_decimal(burn_floor)
        self.burn_ceiling = to_decimal(burn_ceiling)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self._clock = clock
        self._samples: Tuple[PriceSample, ...] = ()
        self._write_lock = threading.Lock()

    @property
    def samples(self) -> Tuple[PriceSample, ...]:
        return self._samples

    def _latest(self) -> Optional[PriceSample]:
        samples = self._samples
        return samples[-1] if samples else None

    def record_sample(self, price: Number) -> PriceSample:
        """Append a validated sample and prune anything older than 2x window."""
        value = to_decimal(price)
        if not value.is_finite() or value <= 0:
            raise InvalidPrice("Invalid price value", {"price": str(price)})

        now = self._clock()
        sample = PriceSample(price=value, timestamp=now)
        horizon = self.window_seconds * 2

        with self._write_lock:
            kept = tuple(s for s in self._samples if s.age(now) <= horizon)
            self._samples = kept + (sample,)

        return sample

    def refresh_price(self) -> PriceSample:
        """
        Fetch the current price and record it.

        On fetch failure returns the most recent cached sample, or raises
        PriceUnavailable when none exists.
        """
        try:
            price = self.retry_policy.call(self.feed.fetch_price, operation="price_fetch")
            sample = self.record_sample(price)
        except Exception as e:
            latest = self._latest()
            logger.warning(
                "price_fetch_failed",
                error=str(e),
                using_cached=latest is not None,
            )
            if latest is None:
                raise PriceUnavailable("No price data available", {"error": str(e)})
            return latest

        logger.info("price_refreshed", price=str(sample.price))
        return sample

    def windowed_price(self) -> Decimal:
        """Mean of in-window samples, else the most recent sample."""
        samples = self._samples
        if not samples:
            raise PriceUnavailable("No price data available for windowed price")

        now = self._clock()
        in_window = [s.price for s in samples if s.age(now) <= self.window_seconds]
        if not in_window:
            return samples[-1].price

        return sum(in_window, Decimal(0)) / len(in_window)

    def quote(self, usd_cost: Number) -> Tuple[Decimal, Decimal]:
        """
        Convert a USD cost to tokens within the burn bounds.

        Returns (tokens, price) where price is the windowed price the
        conversion used, so it can be stored with the usage record.
        """
        price = self.windowed_price()
        if price <= 0:
            raise InvalidPrice("Invalid token price", {"price": str(price)})

        raw = to_decimal(usd_cost) / price
        tokens = max(self.burn_floor, min(raw, self.burn_ceiling))

        logger.debug(
            "burn_calculated",
            usd_cost=str(usd_cost),
            price=str(price),
            tokens=str(tokens),
        )
        return tokens, price

    def tokens_for_cost(self, usd_cost: Number) -> Decimal:
        """Convert a USD cost to a token amount within the burn bounds."""
        tokens, _ = self.quote(usd_cost)
        return tokens

    def cached_price(self) -> Optional[Decimal]:
        """Most recent price if fresher than the cache TTL; never fetches."""
        latest = self._latest()
        if latest is None or latest.age(self._clock()) >= self.cache_ttl_seconds:
            return None
        return latest.price

    def freshness(self) -> str:
        """fresh, stale or empty."""
        latest = self._latest()
        if latest is None:
            return "empty"
        return "fresh" if latest.age(self._clock()) < self.cache_ttl_seconds else "stale"

    def initialize(self) -> None:
        """Take a first sample; failure is logged, not raised."""
        try:
            self.refresh_price()
            logger.info("price_oracle_initialized")
        except PriceUnavailable as e:
            logger.error("price_oracle_init_failed", error=str(e))

    def shutdown(self) -> None:
        close = getattr(self.feed, "close", None)
        if close is not None:
            close()
