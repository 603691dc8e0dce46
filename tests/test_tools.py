# Understood/tests/test_tools.py
"""Unit tests for the copy agent tools: submit_variant, review_set, fetch_exemplars."""
from __future__ import annotations

import json

import pytest

from conftest import CHANNEL, StubStore, make_profile, variant_args
from src.agents.llm import FunctionCall
from src.agents.tools import (
    MAX_VARIANTS,
    AgentLoopState,
    count_paragraphs,
    execute_review_set,
    execute_submit_variant,
    execute_tool,
    jaccard,
)
from src.models import Exemplar


def _fill(state: AgentLoopState, profile=None, n: int = MAX_VARIANTS) -> None:
    for i in range(n):
        assert execute_submit_variant(variant_args(i), state, profile).success


class TestSubmitVariant:
    def test_accepts_valid_variant_with_running_count(self):
        state = AgentLoopState()
        result = execute_submit_variant(variant_args(0), state, make_profile())
        assert result.success
        assert "Variant 1 accepted (Freshness). 3 remaining." in result.message
        assert len(state.variants) == 1

    def test_fourth_acceptance_points_at_review_set(self):
        state = AgentLoopState()
        _fill(state, n=3)
        result = execute_submit_variant(variant_args(3), state, None)
        assert "review_set" in result.message

    def test_long_headline_names_limit_and_length(self):
        headline = "H" * 45
        result = execute_submit_variant(variant_args(0, headline=headline), AgentLoopState(), None)
        assert not result.success
        assert "40" in result.message
        assert "45" in result.message

    def test_banned_phrase_rejected(self):
        args = variant_args(0, description="Pure synergy in a mug.")
        result = execute_submit_variant(args, AgentLoopState(), make_profile(banned_phrases=["synergy"]))
        assert not result.success
        assert 'banned phrase "synergy"' in result.message

    def test_missing_mandatory_phrase_rejected(self):
        result = execute_submit_variant(
            variant_args(0), AgentLoopState(), make_profile(mandatory_phrases=["Free shipping"]),
        )
        assert not result.success
        assert 'mandatory phrase "Free shipping"' in result.message

    def test_mandatory_phrase_matches_case_insensitively(self):
        args = variant_args(0, description="free shipping on every bag.")
        result = execute_submit_variant(args, AgentLoopState(), make_profile(mandatory_phrases=["Free Shipping"]))
        assert result.success

    def test_too_few_paragraphs_rejected(self):
        args = variant_args(0, primary_text="One long paragraph with no breaks at all.")
        result = execute_submit_variant(args, AgentLoopState(), None)
        assert not result.success
        assert "at least 3" in result.message

    def test_code_fence_rejected(self):
        args = variant_args(0, description="```json")
        result = execute_submit_variant(args, AgentLoopState(), None)
        assert not result.success
        assert "code fence" in result.message

    def test_missing_fields_rejected(self):
        result = execute_submit_variant({"angle": "Taste"}, AgentLoopState(), None)
        assert not result.success
        assert "Missing field: headline" in result.message

    @pytest.mark.parametrize("first", [0, 1, 2])
    def test_duplicate_headline_always_rejected(self, first):
        state = AgentLoopState()
        assert execute_submit_variant(variant_args(first), state, None).success
        dup = variant_args(3, headline=variant_args(first)["headline"].upper())
        result = execute_submit_variant(dup, state, None)
        assert not result.success
        assert "duplicates" in result.message
        assert len(state.variants) == 1

    def test_rejections_are_recorded_as_quality_issues(self):
        state = AgentLoopState()
        execute_submit_variant(variant_args(0, headline="H" * 50), state, None)
        assert state.quality_issues

    def test_fifth_variant_rejected_without_replace_index(self):
        state = AgentLoopState()
        _fill(state)
        extra = variant_args(0, headline="One More Headline", angle="Gifting")
        result = execute_submit_variant(extra, state, None)
        assert not result.success
        assert len(state.variants) == MAX_VARIANTS

    def test_replace_index_swaps_variant_and_resets_review(self):
        state = AgentLoopState()
        _fill(state)
        state.review_passed = True
        replacement = variant_args(1, headline="Coffee Without Errands")
        result = execute_submit_variant({**replacement, "replace_index": 2}, state, None)
        assert result.success
        assert state.variants[1].headline == "Coffee Without Errands"
        assert state.review_passed is False
        assert len(state.variants) == MAX_VARIANTS

    def test_replace_index_may_keep_its_own_headline(self):
        state = AgentLoopState()
        _fill(state)
        result = execute_submit_variant({**variant_args(2), "replace_index": 3}, state, None)
        assert result.success

    def test_replace_index_out_of_range(self):
        state = AgentLoopState()
        _fill(state, n=2)
        result = execute_submit_variant({**variant_args(2), "replace_index": 4}, state, None)
        assert not result.success

    def test_exemplar_gate_blocks_submit_until_fetch(self):
        state = AgentLoopState(require_exemplars=True)
        result = execute_submit_variant(variant_args(0), state, None)
        assert not result.success
        assert "fetch_exemplars" in result.message
        state.exemplars_fetched = True
        assert execute_submit_variant(variant_args(0), state, None).success


class TestReviewSet:
    @pytest.mark.parametrize("n", [0, 1, 2, 3])
    def test_never_passes_with_fewer_than_four(self, n):
        state = AgentLoopState()
        _fill(state, n=n)
        result = execute_review_set(state)
        assert not result.success
        assert f"Only {n}/4" in result.message
        assert state.review_passed is False

    def test_passes_distinct_set(self):
        state = AgentLoopState()
        _fill(state)
        result = execute_review_set(state)
        assert result.success
        assert state.review_passed is True

    def test_flags_duplicate_angles(self):
        state = AgentLoopState()
        _fill(state)
        state.variants[3] = state.variants[3].model_copy(update={"angle": "Freshness"})
        result = execute_review_set(state)
        assert not result.success
        assert "Angles are not distinct" in result.message

    def test_flags_overlapping_primary_text(self):
        state = AgentLoopState()
        _fill(state)
        state.variants[1] = state.variants[1].model_copy(update={"primary_text": state.variants[0].primary_text})
        result = execute_review_set(state)
        assert not result.success
        assert "Variants 1 and 2" in result.message

    def test_flags_short_primary_text(self):
        state = AgentLoopState()
        _fill(state)
        state.variants[2] = state.variants[2].model_copy(update={"primary_text": "Short.\n\nToo.\n\nShort."})
        result = execute_review_set(state)
        assert not result.success
        assert "Variant 3 primary text is only" in result.message


class TestFetchExemplarsAndDispatch:
    @pytest.mark.asyncio
    async def test_fetch_with_no_exemplars(self):
        state = AgentLoopState(require_exemplars=True)
        result = await execute_tool(FunctionCall("fetch_exemplars", {}), state, None, StubStore(), CHANNEL)
        assert result.success
        assert "No exemplars found" in result.message
        assert state.exemplars_fetched is True

    @pytest.mark.asyncio
    async def test_fetch_caps_at_five(self):
        store = StubStore()
        for i in range(7):
            await store.save_exemplar(Exemplar(channel_id=CHANNEL, variant=variant_args(i % 4)))
        result = await execute_tool(
            FunctionCall("fetch_exemplars", {"count": 20}), AgentLoopState(), None, store, CHANNEL,
        )
        payload = json.loads(result.to_json())
        assert len(payload["data"]) == 5
        assert payload["data"][0]["index"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        result = await execute_tool(FunctionCall("publish_ad", {}), AgentLoopState(), None, StubStore(), CHANNEL)
        assert not result.success
        assert result.message == "Unknown tool: publish_ad"

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_failed_result(self):
        class BrokenStore(StubStore):
            async def get_exemplars(self, channel_id, limit=5):
                raise ConnectionError("redis down")

        result = await execute_tool(FunctionCall("fetch_exemplars", {}), AgentLoopState(), None, BrokenStore(), CHANNEL)
        assert not result.success
        assert result.message == "Tool error: redis down"


class TestHelpers:
    def test_jaccard_identical_and_disjoint(self):
        assert jaccard("fresh coffee beans daily", "fresh coffee beans daily") == 1.0
        assert jaccard("fresh coffee beans", "quick delivery service") == 0.0

    def test_jaccard_ignores_short_words(self):
        assert jaccard("a an the of", "a an the of") == 0.0

    def test_count_paragraphs(self):
        assert count_paragraphs("one\n\ntwo\n\n\nthree") == 3
        assert count_paragraphs("single") == 1
