# Understood/tests/test_quality_gate.py
"""Quality gate tests: fence stripping is the only rewrite, everything else is reported."""
from __future__ import annotations

from conftest import CHANNEL, make_profile, variant_args
from src.agents.quality_gate import LENGTH_FLOOR, MAJOR, apply_quality_gate, inspect_text
from src.channels.formatter import format_variants
from src.models import AgentResult, CopyVariant, OutboundMessage


def _result(*texts: str) -> AgentResult:
    return AgentResult(messages=[OutboundMessage(channel=CHANNEL, text=t) for t in texts])


def _rendered(*overrides: dict) -> str:
    variants = [CopyVariant(**variant_args(i, **(overrides[i] if i < len(overrides) else {}))) for i in range(4)]
    return format_variants(variants, "launch.mp4")


class TestShortMessages:
    def test_short_messages_pass_untouched(self):
        result = _result("```ok```")
        gate = apply_quality_gate(result, make_profile())
        assert gate.result is result
        assert gate.issues == []

    def test_floor_is_inclusive(self):
        gate = apply_quality_gate(_result("x" * LENGTH_FLOOR), None)
        assert gate.issues == []


class TestChecks:
    def test_clean_variant_set_has_no_issues(self):
        gate = apply_quality_gate(_result(_rendered()), make_profile())
        assert gate.issues == []
        assert gate.modified is False

    def test_code_fences_stripped(self):
        text = "```json\n" + "a" * 250 + "\n```"
        gate = apply_quality_gate(_result(text), None)
        assert gate.modified is True
        assert "```" not in gate.result.messages[0].text
        assert [i.check for i in gate.issues] == ["code_fence"]

    def test_fence_fix_leaves_other_messages_alone(self):
        plain = "b" * 250
        gate = apply_quality_gate(_result(plain, "```\n" + "1" * 250), None)
        assert gate.result.messages[0].text == plain
        assert gate.result.messages[1].text == "1" * 250

    def test_banned_phrase_is_major_but_not_rewritten(self):
        text = _rendered({"description": "Morning synergy in a cup."})
        gate = apply_quality_gate(_result(text), make_profile())
        assert [i.check for i in gate.major_issues] == ["banned_phrase"]
        assert gate.result.messages[0].text == text

    def test_profile_checks_skipped_without_profile(self):
        text = _rendered({"description": "Morning synergy in a cup."})
        gate = apply_quality_gate(_result(text), None)
        assert gate.major_issues == []

    def test_missing_mandatory_is_minor(self):
        gate = apply_quality_gate(_result(_rendered()), make_profile(mandatory_phrases=["Free shipping"]))
        assert [i.check for i in gate.issues] == ["missing_mandatory"]
        assert gate.major_issues == []

    def test_duplicate_rendered_headlines_are_major(self):
        text = _rendered({}, {"headline": "Roasted This Week"})
        gate = apply_quality_gate(_result(text), None)
        assert "duplicate_headline" in [i.check for i in gate.major_issues]

    def test_leaked_json_and_odd_emphasis(self):
        text = '{"angle": "Taste", "headline": "x"} *' + "a" * 250
        _, issues = inspect_text(text, None)
        checks = {i.check for i in issues}
        assert "json_artifact" in checks
        assert "unbalanced_emphasis" in checks
        assert all(i.severity != MAJOR for i in issues)
