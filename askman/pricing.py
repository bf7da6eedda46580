"""Model pricing table.

The table is an immutable snapshot built once per process with
:func:`default_table` and passed explicitly to whatever needs it (the
OpenAI provider for its static model list, the CLI for ``--tokens``).
Local Ollama models have no entry and are reported as free.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Mapping, Optional

from .models import Pricing

OPENAI_PRICING_URL = "https://openai.com/api/pricing/"


@dataclass(frozen=True)
class ModelPricing:
    provider: str
    model: str
    pricing: Pricing
    pricing_url: str = ""

    def cost(self, tokens_input: int, tokens_output: int) -> float:
        """Return the USD cost of a call."""
        return (
            tokens_input / 1_000_000 * self.pricing.input_per_million
            + tokens_output / 1_000_000 * self.pricing.output_per_million
        )


@dataclass(frozen=True)
class PricingTable:
    last_updated: date
    models: Mapping[str, ModelPricing]

    def get(self, model: str) -> Optional[ModelPricing]:
        return self.models.get(model)

    def cost(self, model: str, tokens_input: int, tokens_output: int) -> Optional[float]:
        """Return the cost for ``model`` or ``None`` when it is not priced."""
        entry = self.get(model)
        if entry is None:
            return None
        return entry.cost(tokens_input, tokens_output)


def _openai(model: str, input_price: float, output_price: float) -> ModelPricing:
    return ModelPricing("openai", model, Pricing(input_price, output_price), OPENAI_PRICING_URL)


def default_table() -> PricingTable:
    """Return the bundled pricing snapshot."""
    entries = [
        _openai("gpt-4o", 2.50, 10.00),
        _openai("gpt-4o-mini", 0.15, 0.60),
        _openai("gpt-4-turbo", 10.00, 30.00),
        _openai("gpt-4", 30.00, 60.00),
        _openai("gpt-3.5-turbo", 0.50, 1.50),
    ]
    return PricingTable(
        last_updated=date(2026, 1, 12),
        models=MappingProxyType({e.model: e for e in entries}),
    )


def format_usage(
    tokens_input: int,
    tokens_output: int,
    entry: Optional[ModelPricing],
    last_updated: date,
) -> str:
    """Render token usage and estimated cost for the terminal."""
    lines = [
        "Token usage:",
        f"  Input:  {tokens_input:,} tokens",
        f"  Output: {tokens_output:,} tokens",
        f"  Total:  {tokens_input + tokens_output:,} tokens",
    ]
    if entry is None:
        lines.append("  Cost:   Free (local model)")
    else:
        cost = entry.cost(tokens_input, tokens_output)
        lines.append(
            f"  Cost:   ${cost:.4f} (estimated, based on {last_updated.isoformat()} pricing)"
        )
        if entry.pricing_url:
            lines.append(f"  Pricing may have changed. Check current rates: {entry.pricing_url}")
    return "\n".join(lines)
