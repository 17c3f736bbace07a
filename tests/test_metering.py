"""
Tests for the AI usage cost calculator
"""

from decimal import Decimal

from burn_rail.billing.metering import CostCalculator, Provider, UsageMetrics


class TestCostCalculator:
    """Provider rates, voice estimate and markup."""

    def test_deepseek_rates(self):
        calc = CostCalculator()
        metrics = UsageMetrics(Provider.DEEPSEEK, input_tokens=1_000_000, output_tokens=1_000_000)

        assert calc.calculate_usage_cost(metrics) == Decimal("1.37")
        assert calc.calculate_cost_with_markup(metrics) == Decimal("2.74")

    def test_grok_model_rates(self):
        calc = CostCalculator()
        metrics = UsageMetrics(Provider.GROK, input_tokens=500_000, output_tokens=100_000, model="grok-2")

        assert calc.calculate_usage_cost(metrics) == Decimal("2.0")

    def test_unknown_grok_model_uses_default(self):
        calc = CostCalculator()
        estimate = calc.estimate(UsageMetrics(Provider.GROK, input_tokens=1_000_000, model="grok-unknown"))

        assert estimate.model == CostCalculator.GROK_DEFAULT_MODEL
        assert estimate.input_cost_usd == Decimal("1.0")

    def test_voice_minutes(self):
        calc = CostCalculator()
        metrics = UsageMetrics(Provider.GROK, voice_session_minutes=Decimal(3))

        assert calc.calculate_usage_cost(metrics).quantize(Decimal("0.01")) == Decimal("0.10")

    def test_custom_markup(self):
        calc = CostCalculator(markup_multiplier=Decimal("3"))
        metrics = UsageMetrics(Provider.DEEPSEEK, output_tokens=1_000_000)

        assert calc.calculate_cost_with_markup(metrics) == Decimal("3.30")

    def test_estimate_cost(self):
        calc = CostCalculator()

        cost = calc.estimate_cost(2_000_000, 0, Provider.DEEPSEEK)

        assert cost == Decimal("0.54")

    def test_metrics_from_dict(self):
        metrics = UsageMetrics.from_dict({
            "provider": "grok",
            "input_tokens": 10,
            "output_tokens": "20",
            "voice_session_minutes": 1.5,
        })

        assert metrics.provider == Provider.GROK
        assert metrics.output_tokens == 20
        assert metrics.voice_session_minutes == Decimal("1.5")

    def test_estimate_to_dict(self):
        estimate = CostCalculator().estimate(UsageMetrics(Provider.DEEPSEEK, input_tokens=1_000_000))
        data = estimate.to_dict()

        assert data["provider"] == "deepseek"
        assert Decimal(data["billed_cost_usd"]) == Decimal("0.54")
