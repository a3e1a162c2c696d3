from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from deskprobe.core.contracts import CostEntry, CostOperation, CostSummary

logger = logging.getLogger("deskprobe.cost")


@dataclass(frozen=True)
class Pricing:
    """USD per 1,000 input/output tokens and per image."""
    input_token_price: float
    output_token_price: float
    image_price: float


DEFAULT_PRICING_KEY = "default"

PRICING: dict[str, Pricing] = {
    "anthropic": Pricing(input_token_price=0.003, output_token_price=0.015, image_price=0.0048),
    "openai": Pricing(input_token_price=0.005, output_token_price=0.015, image_price=0.00765),
    "volcengine": Pricing(input_token_price=0.0008, output_token_price=0.002, image_price=0.001),
    "doubao": Pricing(input_token_price=0.0008, output_token_price=0.002, image_price=0.001),
    DEFAULT_PRICING_KEY: Pricing(input_token_price=0.003, output_token_price=0.015, image_price=0.005),
}


def _key(provider: object) -> str:
    return str(getattr(provider, "value", provider))


class CostTracker:
    """Append-only ledger of priced VLM calls."""

    def __init__(self) -> None:
        self._entries: list[CostEntry] = []
        self._custom_pricing: dict[str, Pricing] = {}

    def set_pricing(self, provider: str, pricing: Pricing) -> None:
        self._custom_pricing[_key(provider)] = pricing

    def pricing_for(self, provider: str) -> Pricing:
        key = _key(provider)
        return self._custom_pricing.get(key) or PRICING.get(key) or PRICING[DEFAULT_PRICING_KEY]

    def estimate(self, provider: str, input_tokens: int, output_tokens: int, images: int = 1) -> float:
        pricing = self.pricing_for(provider)
        return (
            (input_tokens / 1000) * pricing.input_token_price
            + (output_tokens / 1000) * pricing.output_token_price
            + images * pricing.image_price
        )

    def track(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        operation: Union[CostOperation, str],
        images: int = 1,
    ) -> CostEntry:
        entry = CostEntry(
            provider=_key(provider),
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            images=images,
            cost=self.estimate(provider, input_tokens, output_tokens, images),
            timestamp=time.time(),
            operation=CostOperation(operation),
        )
        self._entries.append(entry)
        logger.debug(
            f"[Cost] {entry.provider}/{entry.model} {entry.operation.value}: "
            f"{input_tokens} in, {output_tokens} out, ${entry.cost:.4f}"
        )
        return entry

    @property
    def total_cost(self) -> float:
        return sum(entry.cost for entry in self._entries)

    def get_summary(self) -> CostSummary:
        # Recomputed from the ledger on every call.
        by_provider: dict[str, float] = {}
        by_operation: dict[str, float] = {}
        for entry in self._entries:
            by_provider[entry.provider] = by_provider.get(entry.provider, 0.0) + entry.cost
            operation = entry.operation.value
            by_operation[operation] = by_operation.get(operation, 0.0) + entry.cost

        return CostSummary(
            total_cost=self.total_cost,
            total_calls=len(self._entries),
            by_provider=by_provider,
            by_operation=by_operation,
            entries=tuple(self._entries),
        )

    def recent_entries(self, count: int = 10) -> list[CostEntry]:
        if count <= 0:
            return []
        return self._entries[-count:]

    def reset(self) -> None:
        self._entries = []

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.get_summary().to_dict(), indent=indent)

    def log_summary(self, level: int = logging.INFO) -> None:
        summary = self.get_summary()
        lines = [
            "=== VLM Cost Summary ===",
            f"Total Cost: ${summary.total_cost:.4f}",
            f"Total Calls: {summary.total_calls}",
        ]
        if summary.by_provider:
            lines.append("By Provider:")
            lines.extend(f"  {name}: ${cost:.4f}" for name, cost in summary.by_provider.items())
        if summary.by_operation:
            lines.append("By Operation:")
            lines.extend(f"  {name}: ${cost:.4f}" for name, cost in summary.by_operation.items())
        logger.log(level, "\n".join(lines))


def empty_summary() -> CostSummary:
    return CostSummary(total_cost=0.0, total_calls=0, by_provider={}, by_operation={}, entries=())
