# Understood/tests/test_store.py
"""BrandStore against an in-memory Redis: admission, profiles, notes, generations, insights, exemplars."""
from __future__ import annotations

import fakeredis
import pytest

from conftest import CHANNEL, USER, make_generation
from src.models import (
    CopyFeedbackRecord,
    Exemplar,
    FeedbackAction,
    InsightCategory,
    LearningInsight,
)
from src.state.store import REINFORCE_STEP, BrandStore


@pytest.fixture
def brand_store() -> BrandStore:
    return BrandStore(fakeredis.FakeAsyncRedis(decode_responses=True))


def _insight(text: str = "Taste-led headlines get approved", **overrides) -> LearningInsight:
    fields = {"channel_id": CHANNEL, "category": InsightCategory.ANGLE_PREFERENCE, "insight": text}
    fields.update(overrides)
    return LearningInsight(**fields)


class TestAdmission:
    @pytest.mark.asyncio
    async def test_first_delivery_admitted_once(self, brand_store):
        assert await brand_store.admit_event("Ev001") is True
        assert await brand_store.admit_event("Ev001") is False
        assert await brand_store.admit_event("Ev002") is True


class TestProfiles:
    @pytest.mark.asyncio
    async def test_upsert_merges_into_single_profile(self, brand_store):
        first = await brand_store.upsert_profile(CHANNEL, {"tone_description": "Warm", "banned_phrases": ["cheap"]})
        second = await brand_store.upsert_profile(CHANNEL, {"cta_language": "Order now"})

        assert second.id == first.id
        stored = await brand_store.get_profile(CHANNEL)
        assert stored.tone_description == "Warm"
        assert stored.banned_phrases == ["cheap"]
        assert stored.cta_language == "Order now"
        assert stored.channel_id == CHANNEL
        assert await brand_store.redis.keys("understood:profile:*") == [f"understood:profile:{CHANNEL}"]

    @pytest.mark.asyncio
    async def test_missing_profile_is_none(self, brand_store):
        assert await brand_store.get_profile("C999") is None


class TestCustomers:
    @pytest.mark.asyncio
    async def test_answers_merge_and_clear(self, brand_store):
        await brand_store.update_customer(USER, {"answers": {"product": "Coffee"}})
        customer = await brand_store.update_customer(USER, {"answers": {"audience": "Commuters"}})
        assert customer.answers == {"product": "Coffee", "audience": "Commuters"}

        cleared = await brand_store.update_customer(USER, {"answers": {}})
        assert cleared.answers == {}


class TestNotesAndGenerations:
    @pytest.mark.asyncio
    async def test_notes_kept_in_order(self, brand_store):
        await brand_store.add_brand_note(CHANNEL, USER, "We roast on Mondays")
        await brand_store.add_brand_note(CHANNEL, USER, "Never say cheap")

        notes = await brand_store.get_brand_notes(CHANNEL)
        assert [n.note for n in notes] == ["We roast on Mondays", "Never say cheap"]
        assert await brand_store.count_brand_notes(CHANNEL) == 2

    @pytest.mark.asyncio
    async def test_generations_listed_newest_first(self, brand_store):
        await brand_store.save_generation(make_generation(ts="100.1", created_at=100.0))
        await brand_store.save_generation(make_generation(source_type="image", ts="200.1", created_at=200.0))
        await brand_store.save_generation(make_generation(ts="300.1", created_at=300.0))

        assert await brand_store.count_generations(CHANNEL) == 3
        recent = await brand_store.list_generations(CHANNEL, limit=2)
        assert [g.slack_message_ts for g in recent] == ["300.1", "200.1"]
        videos = await brand_store.list_generations(CHANNEL, source_type="video")
        assert [g.slack_message_ts for g in videos] == ["300.1", "100.1"]

    @pytest.mark.asyncio
    async def test_update_generation_meta(self, brand_store):
        await brand_store.save_generation(make_generation(ts="100.1"))
        assert await brand_store.update_generation_meta(CHANNEL, "100.1", {"agent_turns": 3}) is True
        assert (await brand_store.get_generation(CHANNEL, "100.1")).agent_turns == 3
        assert await brand_store.update_generation_meta(CHANNEL, "999.9", {"agent_turns": 1}) is False

    @pytest.mark.asyncio
    async def test_feedback_listed_newest_first(self, brand_store):
        for text in ("shorter", "punchier", "calmer"):
            await brand_store.add_copy_feedback(
                CopyFeedbackRecord(channel_id=CHANNEL, action=FeedbackAction.REVISED, feedback_text=text),
            )
        records = await brand_store.list_copy_feedback(CHANNEL, limit=2)
        assert [r.feedback_text for r in records] == ["calmer", "punchier"]


class TestInsights:
    @pytest.mark.asyncio
    async def test_supersede_deactivates_old_and_links_new(self, brand_store):
        old = await brand_store.insert_insight(_insight(version=3))
        new = await brand_store.supersede_insight(old.id, _insight("Value-led headlines now win", version=7))

        assert new.active is True
        assert new.version == 1
        stored_old = await brand_store.get_insight(old.id)
        assert stored_old.active is False
        assert stored_old.superseded_by == new.id
        assert len(await brand_store.list_insights(CHANNEL)) == 2
        assert [i.id for i in await brand_store.get_active_insights(CHANNEL)] == [new.id]

    @pytest.mark.asyncio
    async def test_superseding_inactive_insight_writes_nothing(self, brand_store):
        old = await brand_store.insert_insight(_insight())
        await brand_store.supersede_insight(old.id, _insight("second"))

        assert await brand_store.supersede_insight(old.id, _insight("third")) is None
        assert len(await brand_store.list_insights(CHANNEL)) == 2

    @pytest.mark.asyncio
    async def test_reinforce_updates_in_place(self, brand_store):
        original = await brand_store.insert_insight(_insight(confidence=0.5))
        reinforced = await brand_store.reinforce_insight(original.id)

        assert reinforced.id == original.id
        assert reinforced.confidence == pytest.approx(0.5 + REINFORCE_STEP)
        assert reinforced.sample_size == 2
        assert reinforced.version == 2
        assert reinforced.last_reinforced_at is not None
        assert len(await brand_store.list_insights(CHANNEL)) == 1

    @pytest.mark.asyncio
    async def test_reinforce_caps_confidence(self, brand_store):
        original = await brand_store.insert_insight(_insight(confidence=0.99))
        assert (await brand_store.reinforce_insight(original.id)).confidence == 1.0

    @pytest.mark.asyncio
    async def test_reinforcing_superseded_insight_is_refused(self, brand_store):
        old = await brand_store.insert_insight(_insight())
        await brand_store.supersede_insight(old.id, _insight("replacement"))

        assert await brand_store.reinforce_insight(old.id) is None
        assert await brand_store.reinforce_insight("missing") is None
        assert (await brand_store.get_insight(old.id)).version == 1

    @pytest.mark.asyncio
    async def test_active_insights_sorted_by_confidence(self, brand_store):
        await brand_store.insert_insight(_insight("low", confidence=0.3))
        await brand_store.insert_insight(_insight("high", confidence=0.9))
        await brand_store.insert_insight(_insight("off", confidence=0.95, active=False))

        assert [i.insight for i in await brand_store.get_active_insights(CHANNEL)] == ["high", "low"]


class TestExemplars:
    @pytest.mark.asyncio
    async def test_ranked_by_score_then_recency(self, brand_store):
        variant = {"angle": "Taste", "headline": "H", "description": "D", "primary_text": "P"}
        for headline, score, created_at, active in (
            ("old", 1.0, 100.0, True),
            ("new", 1.0, 200.0, True),
            ("best", 2.0, 50.0, True),
            ("retired", 5.0, 300.0, False),
        ):
            await brand_store.save_exemplar(Exemplar(
                channel_id=CHANNEL,
                variant={**variant, "headline": headline},
                score=score,
                created_at=created_at,
                active=active,
            ))

        ranked = await brand_store.get_exemplars(CHANNEL, limit=2)
        assert [e.variant["headline"] for e in ranked] == ["best", "new"]
