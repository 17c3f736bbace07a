"""
Tests for shared primitives and configuration
"""

from decimal import Decimal

import pytest

from burn_rail.config import DEFAULT_API_KEY, DEFAULT_RPC_URLS, Settings
from burn_rail.core.amounts import from_base_units, split_settlement, to_base_units, to_decimal
from burn_rail.core.errors import (
    DuplicateTransaction,
    InsufficientBalance,
    InvalidAmount,
    PriceUnavailable,
)
from burn_rail.core.retry import RetryPolicy


class TestAmounts:
    """Base unit conversion and the settlement split."""

    def test_to_base_units(self):
        assert to_base_units(Decimal("1.5"), 6) == 1_500_000
        assert to_base_units("0.0000005", 6) == 1
        assert to_base_units(0.1, 6) == 100_000

    def test_from_base_units(self):
        assert from_base_units(1_500_000, 6) == Decimal("1.5")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(InvalidAmount):
            to_decimal("abc")

    @pytest.mark.parametrize("total", [0, 1, 2, 3, 999_999_999])
    def test_split_sums_to_total(self, total):
        burn, treasury = split_settlement(total)

        assert burn + treasury == total
        assert burn == total // 2
        assert 0 <= treasury - burn <= 1


class TestRetryPolicy:
    """Backoff and retryable classification."""

    def test_delays_grow_exponentially(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_retries_then_succeeds(self):
        delays = []
        attempts = []
        policy = RetryPolicy(max_attempts=3, base_delay=0.5, sleep=delays.append)

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise PriceUnavailable("blip")
            return "ok"

        assert policy.call(flaky) == "ok"
        assert delays == [0.5, 1.0]

    def test_gives_up_after_max_attempts(self):
        policy = RetryPolicy(max_attempts=2, base_delay=0, sleep=lambda _: None)
        calls = []

        def down():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            policy.call(down)
        assert len(calls) == 2

    @pytest.mark.parametrize("error", [
        InsufficientBalance("no funds"),
        DuplicateTransaction("seen"),
    ])
    def test_terminal_errors_not_retried(self, error):
        policy = RetryPolicy(max_attempts=5, sleep=lambda _: None)
        calls = []

        def fail():
            calls.append(1)
            raise error

        with pytest.raises(type(error)):
            policy.call(fail)
        assert len(calls) == 1


class TestErrors:
    """Error formatting."""

    def test_details_in_message(self):
        error = InsufficientBalance("Insufficient token balance", {"required_units": 5})

        assert str(error) == "Insufficient token balance (required_units=5)"
        assert error.retryable is False
        assert PriceUnavailable("x").retryable is True


class TestSettings:
    """Environment configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("SOLANA_RPC_URL", "SOLANA_FALLBACK_RPC_URLS", "TOKEN_DECIMALS", "BURN_FLOOR"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.token_decimals == 6
        assert settings.burn_floor == Decimal("0.05")
        assert settings.twap_window_seconds == 600
        assert settings.rpc_endpoints == DEFAULT_RPC_URLS

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SOLANA_RPC_URL", "https://primary")
        monkeypatch.setenv("SOLANA_FALLBACK_RPC_URLS", "https://b, https://primary ,https://c")
        monkeypatch.setenv("SETTLEMENT_THRESHOLD_TOKENS", "250.5")
        monkeypatch.setenv("LOG_JSON", "true")

        settings = Settings.from_env()

        assert settings.rpc_endpoints == ["https://primary", "https://b", "https://c"]
        assert settings.settlement_threshold_tokens == Decimal("250.5")
        assert settings.log_json is True

    def test_validate_reports_missing_addresses(self):
        errors, warnings = Settings().validate()

        assert any("TOKEN_MINT_ADDRESS" in e for e in errors)
        assert any("TREASURY_WALLET_ADDRESS" in e for e in errors)
        assert any("API_KEY" in w for w in warnings)

    def test_validate_inverted_burn_bounds(self):
        settings = Settings(
            token_mint_address="mint",
            treasury_wallet_address="treasury",
            burn_floor=Decimal("10"),
            burn_ceiling=Decimal("1"),
        )

        errors, _ = settings.validate()

        assert len(errors) == 1
        assert "burn bounds" in errors[0]

    def test_valid_settings(self):
        settings = Settings(
            token_mint_address="mint",
            treasury_wallet_address="treasury",
            backend_wallet_private_key="key",
            solana_rpc_url="https://private-rpc",
            api_key="secret",
        )

        assert settings.report() == {"errors": [], "warnings": []}
        assert settings.api_key != DEFAULT_API_KEY
