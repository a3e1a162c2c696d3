"""
Tests for VLM cost accounting.
"""

import json
import logging

import pytest

from deskprobe.core.contracts import CostOperation
from deskprobe.core.vision.cost_tracker import CostTracker, Pricing, empty_summary


class TestCostTracker:
    """Tests for CostTracker."""

    def test_anthropic_call_price(self):
        """1000 in, 500 out, one image on anthropic pricing."""
        tracker = CostTracker()

        entry = tracker.track("anthropic", "claude-sonnet-4-20250514", 1000, 500, CostOperation.FIND)

        assert entry.cost == pytest.approx(0.0153)
        assert entry.images == 1
        assert tracker.total_cost == pytest.approx(0.0153)

    def test_unknown_provider_uses_default_row(self):
        tracker = CostTracker()

        assert tracker.estimate("some-gateway", 1000, 1000) == pytest.approx(0.003 + 0.015 + 0.005)

    def test_estimate_does_not_record(self):
        tracker = CostTracker()

        tracker.estimate("openai", 1000, 1000, images=2)

        assert tracker.get_summary().total_calls == 0

    def test_set_pricing_overrides_table(self):
        tracker = CostTracker()
        tracker.set_pricing("openai", Pricing(input_token_price=0.0, output_token_price=0.0, image_price=0.01))

        entry = tracker.track("openai", "gpt-4o", 5000, 5000, "find", images=3)

        assert entry.cost == pytest.approx(0.03)
        assert CostTracker().pricing_for("openai").image_price == 0.00765

    def test_summary_groups_by_provider_and_operation(self):
        tracker = CostTracker()
        tracker.track("anthropic", "m", 1000, 500, CostOperation.FIND)
        tracker.track("openai", "m", 1000, 0, CostOperation.ASSERT, images=0)
        tracker.track("anthropic", "m", 0, 0, CostOperation.ACTION)

        summary = tracker.get_summary()

        assert summary.total_calls == 3
        assert summary.by_provider["anthropic"] == pytest.approx(0.0153 + 0.0048)
        assert summary.by_provider["openai"] == pytest.approx(0.005)
        assert set(summary.by_operation) == {"find", "assert", "action"}
        assert summary.total_cost == pytest.approx(sum(summary.by_provider.values()))

    def test_total_is_order_independent(self):
        calls = [
            ("anthropic", 1200, 300, CostOperation.FIND),
            ("volcengine", 800, 100, CostOperation.ACTION),
            ("openai", 50, 900, CostOperation.ASSERT),
        ]
        forward, backward = CostTracker(), CostTracker()
        for provider, tokens_in, tokens_out, operation in calls:
            forward.track(provider, "m", tokens_in, tokens_out, operation)
        for provider, tokens_in, tokens_out, operation in reversed(calls):
            backward.track(provider, "m", tokens_in, tokens_out, operation)

        assert forward.total_cost == pytest.approx(backward.total_cost)

    def test_reset_starts_a_new_ledger(self):
        tracker = CostTracker()
        tracker.track("anthropic", "m", 1000, 500, CostOperation.FIND)

        tracker.reset()
        tracker.track("doubao", "m", 1000, 1000, CostOperation.FIND)

        summary = tracker.get_summary()
        assert summary.total_calls == 1
        assert summary.total_cost == pytest.approx(0.0008 + 0.002 + 0.001)

    def test_recent_entries(self):
        tracker = CostTracker()
        for index in range(5):
            tracker.track("openai", f"m{index}", 10, 10, CostOperation.FIND)

        assert [entry.model for entry in tracker.recent_entries(2)] == ["m3", "m4"]
        assert tracker.recent_entries(0) == []

    def test_to_json(self):
        tracker = CostTracker()
        tracker.track("anthropic", "m", 1000, 500, CostOperation.ASSERT)

        payload = json.loads(tracker.to_json())

        assert payload["total_calls"] == 1
        assert payload["entries"][0]["operation"] == "assert"

    def test_log_summary(self, caplog):
        tracker = CostTracker()
        tracker.track("anthropic", "m", 1000, 500, CostOperation.FIND)

        with caplog.at_level(logging.INFO, logger="deskprobe.cost"):
            tracker.log_summary()

        assert "Total Calls: 1" in caplog.text
        assert "anthropic: $0.0153" in caplog.text


def test_empty_summary() -> None:
    summary = empty_summary()

    assert summary.total_cost == 0.0
    assert summary.to_dict()["entries"] == []
