"""
Cost Calculator for AI Usage

Prices a request in USD from provider token counts and voice minutes. The
marked-up cost is what gets converted to tokens by the price oracle.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import structlog

logger = structlog.get_logger()

PER_MILLION = Decimal(1_000_000)


class Provider(Enum):
    """Supported AI providers."""
    DEEPSEEK = "deepseek"
    GROK = "grok"


@dataclass
class UsageMetrics:
    """Measured usage of a single AI request."""
    provider: Provider
    input_tokens: int = 0
    output_tokens: int = 0
    model: Optional[str] = None
    voice_session_minutes: Decimal = Decimal(0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageMetrics":
        return cls(
            provider=Provider(data["provider"]),
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            model=data.get("model"),
            voice_session_minutes=Decimal(str(data.get("voice_session_minutes", 0))),
        )


@dataclass
class CostEstimate:
    """USD cost breakdown for a request."""
    provider: Provider
    model: str
    input_cost_usd: Decimal
    output_cost_usd: Decimal
    voice_cost_usd: Decimal
    total_cost_usd: Decimal
    billed_cost_usd: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "model": self.model,
            "input_cost_usd": str(self.input_cost_usd),
            "output_cost_usd": str(self.output_cost_usd),
            "voice_cost_usd": str(self.voice_cost_usd),
            "total_cost_usd": str(self.total_cost_usd),
            "billed_cost_usd": str(self.billed_cost_usd),
        }


class CostCalculator:
    """
    Calculates USD cost for AI requests.

    Rates are USD per million tokens. Unknown Grok models fall back to the
    default model's rates.
    """

    DEEPSEEK_MODEL = "deepseek-chat"
    DEEPSEEK_INPUT_PER_M = Decimal("0.27")
    DEEPSEEK_OUTPUT_PER_M = Decimal("1.10")

    GROK_DEFAULT_MODEL = "grok-4-1-fast-non-reasoning"
    GROK_INPUT_PER_M = {
        "grok-4-1-fast-reasoning": Decimal("2.0"),
        "grok-4-1-fast-non-reasoning": Decimal("1.0"),
        "grok-2": Decimal("2.0"),
        "grok-2-mini": Decimal("1.0"),
    }
    GROK_OUTPUT_PER_M = {
        "grok-4-1-fast-reasoning": Decimal("10.0"),
        "grok-4-1-fast-non-reasoning": Decimal("5.0"),
        "grok-2": Decimal("10.0"),
        "grok-2-mini": Decimal("5.0"),
    }

    # Estimate: $0.10 per 3-minute voice session
    VOICE_COST_PER_MINUTE = Decimal("0.10") / 3

    MARKUP_MULTIPLIER = Decimal("2.0")

    def __init__(self, markup_multiplier: Optional[Decimal] = None):
        self.markup = markup_multiplier if markup_multiplier is not None else self.MARKUP_MULTIPLIER

    def _rates(self, provider: Provider, model: Optional[str]) -> tuple[str, Decimal, Decimal]:
        if provider == Provider.DEEPSEEK:
            return self.DEEPSEEK_MODEL, self.DEEPSEEK_INPUT_PER_M, self.DEEPSEEK_OUTPUT_PER_M

        if model not in self.GROK_INPUT_PER_M:
            if model is not None:
                logger.warning("unknown_model_rates", model=model, fallback=self.GROK_DEFAULT_MODEL)
            model = self.GROK_DEFAULT_MODEL
        return model, self.GROK_INPUT_PER_M[model], self.GROK_OUTPUT_PER_M[model]

    def estimate(self, metrics: UsageMetrics) -> CostEstimate:
        """Full cost breakdown for a request."""
        model, input_rate, output_rate = self._rates(metrics.provider, metrics.model)

        input_cost = Decimal(metrics.input_tokens) / PER_MILLION * input_rate
        output_cost = Decimal(metrics.output_tokens) / PER_MILLION * output_rate
        voice_cost = Decimal(metrics.voice_session_minutes) * self.VOICE_COST_PER_MINUTE
        total = input_cost + output_cost + voice_cost

        return CostEstimate(
            provider=metrics.provider,
            model=model,
            input_cost_usd=input_cost,
            output_cost_usd=output_cost,
            voice_cost_usd=voice_cost,
            total_cost_usd=total,
            billed_cost_usd=total * self.markup,
        )

    def calculate_usage_cost(self, metrics: UsageMetrics) -> Decimal:
        """Provider cost in USD, without markup."""
        return self.estimate(metrics).total_cost_usd

    def calculate_cost_with_markup(self, metrics: UsageMetrics) -> Decimal:
        """Cost in USD that is billed to the wallet."""
        return self.estimate(metrics).billed_cost_usd

    def estimate_cost(
        self,
        input_tokens: int,
        output_tokens: int,
        provider: Provider,
        model: Optional[str] = None,
    ) -> Decimal:
        """Estimate provider cost before making the call."""
        return self.calculate_usage_cost(UsageMetrics(
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
        ))
