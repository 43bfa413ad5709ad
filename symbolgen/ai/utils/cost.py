from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# USD per 1M tokens: (input, output).
PricingTable = dict[str, tuple[float, float]]

DEFAULT_PRICING: PricingTable = {
  "anthropic/claude-sonnet-4": (3.0, 15.0),
  "anthropic/claude-3.5-sonnet": (3.0, 15.0),
  "anthropic/claude-opus-4": (15.0, 75.0),
}


def build_pricing_table(overrides: Mapping[str, Any] | None = None) -> PricingTable:
  """Merge configured overrides (``{"model": [input, output]}``) onto the defaults."""
  table = dict(DEFAULT_PRICING)
  for model, rates in (overrides or {}).items():
    # Accept either a 2-item list or an {"input": x, "output": y} mapping.
    if isinstance(rates, Mapping):
      price_in, price_out = float(rates.get("input", 0.0)), float(rates.get("output", 0.0))
    else:
      price_in, price_out = (float(value) for value in rates)
    table[str(model).strip()] = (price_in, price_out)
  return table


def calculate_call_cost(model: str, tokens_in: int, tokens_out: int, pricing_table: PricingTable | None = None) -> float:
  """Estimate the cost of one model call from its token usage."""
  pricing = pricing_table if pricing_table is not None else DEFAULT_PRICING
  price_in, price_out = pricing.get(model.strip(), (0.0, 0.0))

  call_cost = (max(tokens_in, 0) / 1_000_000) * price_in
  call_cost += (max(tokens_out, 0) / 1_000_000) * price_out
  return round(call_cost, 6)
