"""
Tests for the Price Oracle and Jupiter price feed
"""

from decimal import Decimal

import httpx
import pytest

from burn_rail.core.errors import ConfigurationError, InvalidPrice, PriceUnavailable
from burn_rail.core.retry import RetryPolicy
from burn_rail.pricing.feed import JupiterPriceFeed
from burn_rail.pricing.oracle import PriceOracle

from conftest import TOKEN_MINT, FakeClock, FakePriceFeed


def make_oracle(feed, clock=None, **kwargs):
    return PriceOracle(feed, clock=clock or FakeClock(), **kwargs)


class TestWindowedPrice:
    """Windowed mean and sample retention."""

    def test_mean_of_samples_in_window(self):
        clock = FakeClock()
        oracle = make_oracle(FakePriceFeed(10, 12, 11), clock)

        for _ in range(3):
            oracle.refresh_price()
            clock.advance(60)

        assert oracle.windowed_price() == Decimal("11")
        assert oracle.tokens_for_cost(Decimal("11")) == Decimal("1")

    def test_no_samples_raises(self):
        oracle = make_oracle(FakePriceFeed())

        with pytest.raises(PriceUnavailable):
            oracle.windowed_price()
        with pytest.raises(PriceUnavailable):
            oracle.tokens_for_cost(1)

    def test_stale_samples_fall_back_to_latest(self):
        clock = FakeClock()
        oracle = make_oracle(FakePriceFeed(10, 20), clock, window_seconds=600)

        oracle.refresh_price()
        clock.advance(100)
        oracle.refresh_price()
        clock.advance(700)

        assert oracle.windowed_price() == Decimal("20")

    def test_samples_pruned_beyond_twice_window(self):
        clock = FakeClock()
        oracle = make_oracle(FakePriceFeed(1, 2, 3), clock, window_seconds=100)

        oracle.refresh_price()
        clock.advance(150)
        oracle.refresh_price()
        clock.advance(100)
        oracle.refresh_price()

        assert [s.price for s in oracle.samples] == [Decimal("2"), Decimal("3")]

    def test_invalid_sample_rejected(self):
        oracle = make_oracle(FakePriceFeed())

        with pytest.raises(InvalidPrice):
            oracle.record_sample(0)
        with pytest.raises(InvalidPrice):
            oracle.record_sample("-1")
        assert oracle.samples == ()


class TestTokensForCost:
    """USD to token conversion with burn bounds."""

    def test_clamped_to_floor(self):
        oracle = make_oracle(FakePriceFeed(100))
        oracle.refresh_price()

        assert oracle.tokens_for_cost(Decimal("0.001")) == Decimal("0.05")

    def test_clamped_to_ceiling(self):
        oracle = make_oracle(FakePriceFeed("0.0001"))
        oracle.refresh_price()

        assert oracle.tokens_for_cost(Decimal("1")) == Decimal("50")

    def test_custom_bounds(self):
        oracle = make_oracle(FakePriceFeed(1), burn_floor="1", burn_ceiling="2")
        oracle.refresh_price()

        assert oracle.tokens_for_cost("1.5") == Decimal("1.5")
        assert oracle.tokens_for_cost("0.1") == Decimal("1")

    def test_quote_returns_price_used(self):
        clock = FakeClock()
        oracle = make_oracle(FakePriceFeed("0.5", "1.5"), clock)
        oracle.refresh_price()
        clock.advance(60)
        oracle.refresh_price()

        tokens, price = oracle.quote(Decimal("2"))

        assert price == Decimal("1")
        assert tokens == Decimal("2")


class TestRefresh:
    """Fetch failures and caching."""

    def test_failure_returns_cached_sample(self):
        oracle = make_oracle(FakePriceFeed(5, PriceUnavailable("down")))
        first = oracle.refresh_price()

        second = oracle.refresh_price()

        assert second == first
        assert len(oracle.samples) == 1

    def test_failure_without_cache_raises(self):
        oracle = make_oracle(FakePriceFeed(PriceUnavailable("down")))

        with pytest.raises(PriceUnavailable):
            oracle.refresh_price()

    def test_invalid_fetched_price_treated_as_failure(self):
        oracle = make_oracle(FakePriceFeed(0))

        with pytest.raises(PriceUnavailable):
            oracle.refresh_price()
        assert oracle.samples == ()

    def test_retry_policy_applied(self):
        feed = FakePriceFeed(PriceUnavailable("blip"), 7)
        policy = RetryPolicy(max_attempts=2, base_delay=0, sleep=lambda _: None)
        oracle = make_oracle(feed, retry_policy=policy)

        sample = oracle.refresh_price()

        assert sample.price == Decimal("7")
        assert feed.calls == 2

    def test_cached_price_respects_ttl(self):
        clock = FakeClock()
        oracle = make_oracle(FakePriceFeed(3), clock, cache_ttl_seconds=60)

        assert oracle.cached_price() is None
        assert oracle.freshness() == "empty"

        oracle.refresh_price()
        assert oracle.cached_price() == Decimal("3")
        assert oracle.freshness() == "fresh"

        clock.advance(61)
        assert oracle.cached_price() is None
        assert oracle.freshness() == "stale"

    def test_initialize_does_not_raise(self):
        oracle = make_oracle(FakePriceFeed())
        oracle.initialize()

        assert oracle.samples == ()

    def test_shutdown_closes_feed(self):
        feed = FakePriceFeed()
        make_oracle(feed).shutdown()

        assert feed.closed is True


def feed_with(handler, api_url="https://price.jup.ag/v4/price", api_key=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return JupiterPriceFeed(api_url, TOKEN_MINT, api_key=api_key, client=client)


class TestJupiterPriceFeed:
    """Price API parsing."""

    def test_v4_shape(self):
        def handler(request):
            assert request.url.params["ids"] == TOKEN_MINT
            return httpx.Response(200, json={"data": {TOKEN_MINT: {"price": 0.0123}}})

        assert feed_with(handler).fetch_price() == Decimal("0.0123")

    def test_flat_shape_with_usd_price(self):
        def handler(request):
            return httpx.Response(200, json={TOKEN_MINT: {"usdPrice": "1.5"}})

        assert feed_with(handler).fetch_price() == Decimal("1.5")

    def test_api_key_sent_to_jup_ag(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("X-API-Key")
            return httpx.Response(200, json={TOKEN_MINT: {"usdPrice": 2}})

        feed_with(handler, api_url="https://api.jup.ag/price/v3", api_key="k1").fetch_price()
        assert seen["key"] == "k1"

    def test_missing_token_raises(self):
        def handler(request):
            return httpx.Response(200, json={"data": {}})

        with pytest.raises(PriceUnavailable):
            feed_with(handler).fetch_price()

    def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(500, json={"error": "boom"})

        with pytest.raises(PriceUnavailable):
            feed_with(handler).fetch_price()

    def test_non_positive_price_raises(self):
        def handler(request):
            return httpx.Response(200, json={TOKEN_MINT: {"usdPrice": 0}})

        with pytest.raises(PriceUnavailable):
            feed_with(handler).fetch_price()

    def test_missing_mint_configuration(self):
        feed = JupiterPriceFeed("https://price.jup.ag/v4/price", "")

        with pytest.raises(ConfigurationError):
            feed.fetch_price()
