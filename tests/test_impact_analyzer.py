"""Tests for business impact prompt building and reply parsing."""

import json

from compliance_tracker.services.impact_analyzer import (
    FALLBACK_IMPACT,
    BatchImpactItem,
    BusinessImpact,
    BusinessImpactAnalyzer,
    parse_batch_impact,
)

from conftest import FakeChatClient


ENTRY = {
    "financial": "Late fee of ₹50 per day.",
    "reputation": "Vendors may delay onboarding.",
    "operations": "E-way bills can be blocked.",
}


class TestParseBatchImpact:
    def test_plain_json(self):
        impacts = parse_batch_impact(json.dumps({"k1": ENTRY}), ["k1"])
        assert impacts == {"k1": BusinessImpact(**ENTRY)}

    def test_json_inside_fence_and_prose(self):
        text = f"Sure! Here you go:\n```json\n{json.dumps({'k1': ENTRY})}\n```\nLet me know."
        assert parse_batch_impact(text, ["k1"])["k1"].operations == ENTRY["operations"]

    def test_missing_field_gets_fallback_text(self):
        impacts = parse_batch_impact(json.dumps({"k1": {"financial": "Fines apply."}}), ["k1"])
        assert impacts["k1"].financial == "Fines apply."
        assert impacts["k1"].reputation == FALLBACK_IMPACT.reputation

    def test_empty_or_malformed_entries_are_dropped(self):
        text = json.dumps({"k1": {"financial": "  "}, "k2": "not an object", "k3": ENTRY})
        assert set(parse_batch_impact(text, ["k1", "k2", "k3"])) == {"k3"}

    def test_unexpected_keys_are_ignored(self):
        assert parse_batch_impact(json.dumps({"other": ENTRY}), ["k1"]) == {}

    def test_no_json_at_all(self):
        assert parse_batch_impact("I cannot help with that.", ["k1"]) == {}

    def test_broken_json(self):
        assert parse_batch_impact('{"k1": {"financial": "x"', ["k1"]) == {}


class TestBusinessImpactAnalyzer:
    async def test_single_call_for_all_items(self):
        chat = FakeChatClient()
        analyzer = BusinessImpactAnalyzer(chat)
        items = [
            BatchImpactItem("text:gst|gstr-1", "GST", "GSTR-1", "Section 47", "₹50/day"),
            BatchImpactItem("text:roc|aoc-4", "RoC", "AOC-4", "Section 137", "₹100/day"),
        ]

        impacts = await analyzer.analyze_batch(items)

        assert chat.calls == 1
        assert set(impacts) == {"text:gst|gstr-1", "text:roc|aoc-4"}

    async def test_llm_failure_returns_empty(self):
        analyzer = BusinessImpactAnalyzer(FakeChatClient(fail=True))
        items = [BatchImpactItem("k1", "GST", "GSTR-1", "Section 47", "₹50/day")]
        assert await analyzer.analyze_batch(items) == {}

    async def test_no_items_makes_no_call(self):
        chat = FakeChatClient()
        assert await BusinessImpactAnalyzer(chat).analyze_batch([]) == {}
        assert chat.calls == 0

    def test_from_dict_handles_non_dict(self):
        assert BusinessImpact.from_dict(None) == FALLBACK_IMPACT
