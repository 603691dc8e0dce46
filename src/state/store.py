# Understood/src/state/store.py
# @ai-rules:
# 1. [Constraint]: Multi-key mutations (supersede, reinforce) use WATCH/MULTI/EXEC. Catch redis WatchError specifically.
# 2. [Pattern]: One profile key per channel. upsert_profile() is the ONLY profile write path -> exactly one active profile.
# 3. [Pattern]: Event admission is SET NX EX on understood:event:{event_id}. False means a re-delivery.
# 4. [Gotcha]: Copy feedback and brand notes are append-only lists. Nothing here deletes them.
# 5. [Gotcha]: Insights are never deleted. Supersede deactivates the old row and points superseded_by at the new id.
# 6. [Constraint]: The store never rewrites text. Notes arrive already sanitized by agents/effects.add_brand_note().
"""
BrandStore - Redis repository for every durable record the agents read or write.

Redis Schema (Flat Keys):
    understood:event:{event_id}               STRING  "1"  TTL=EVENT_ADMISSION_TTL_SECONDS
    understood:profile:{channel}              STRING  {VoiceProfile json}
    understood:customer:{user}                STRING  {CustomerState json}
    understood:generation:{channel}:{ts}      STRING  {GenerationRecord json}
    understood:generations:{channel}          ZSET    {ts: created_at}
    understood:feedback:{channel}             LIST    [CopyFeedbackRecord json]
    understood:notes:{channel}                LIST    [BrandNote json]
    understood:insight:{id}                   STRING  {LearningInsight json}
    understood:insights:{channel}             SET     [insight ids]
    understood:exemplars:{channel}            LIST    [Exemplar json]
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import TYPE_CHECKING, Any, Optional

from redis.exceptions import WatchError

from ..models import (
    BrandNote,
    CopyFeedbackRecord,
    CustomerState,
    Exemplar,
    GenerationRecord,
    LearningInsight,
    VoiceProfile,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

PREFIX = "understood"
EVENT_ADMISSION_TTL_SECONDS = int(os.getenv("EVENT_ADMISSION_TTL_SECONDS", "86400"))
WATCH_RETRIES = 3
REINFORCE_STEP = 0.05


class BrandStore:
    """Redis-backed persistence for profiles, customers, generations, feedback and learning."""

    def __init__(self, redis: "Redis"):
        self.redis = redis

    # =========================================================================
    # Event Admission
    # =========================================================================

    async def admit_event(self, event_id: str) -> bool:
        """Record a delivery id. Returns False if it was already admitted."""
        ok = await self.redis.set(
            f"{PREFIX}:event:{event_id}", "1", nx=True, ex=EVENT_ADMISSION_TTL_SECONDS,
        )
        return bool(ok)

    # =========================================================================
    # Voice Profiles
    # =========================================================================

    async def get_profile(self, channel_id: str) -> Optional[VoiceProfile]:
        raw = await self.redis.get(f"{PREFIX}:profile:{channel_id}")
        return VoiceProfile.model_validate_json(raw) if raw else None

    async def upsert_profile(self, channel_id: str, fields: dict[str, Any]) -> VoiceProfile:
        """Create or merge-update the channel's single voice profile."""
        key = f"{PREFIX}:profile:{channel_id}"
        for _ in range(WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw:
                        current = json.loads(raw)
                        current.update(fields)
                    else:
                        current = dict(fields)
                    current["channel_id"] = channel_id
                    current["updated_at"] = time.time()
                    profile = VoiceProfile.model_validate(current)
                    pipe.multi()
                    pipe.set(key, profile.model_dump_json())
                    await pipe.execute()
                    return profile
                except WatchError:
                    logger.warning(f"Profile {channel_id} modified concurrently, retrying")
        raise RuntimeError(f"Could not upsert profile for {channel_id}")

    # =========================================================================
    # Customers (onboarding state)
    # =========================================================================

    async def get_customer(self, slack_user_id: str) -> Optional[CustomerState]:
        raw = await self.redis.get(f"{PREFIX}:customer:{slack_user_id}")
        return CustomerState.model_validate_json(raw) if raw else None

    async def get_or_create_customer(self, slack_user_id: str) -> CustomerState:
        customer = await self.get_customer(slack_user_id)
        if customer is None:
            customer = CustomerState(slack_user_id=slack_user_id)
            await self.save_customer(customer)
        return customer

    async def save_customer(self, customer: CustomerState) -> None:
        customer.updated_at = time.time()
        await self.redis.set(f"{PREFIX}:customer:{customer.slack_user_id}", customer.model_dump_json())

    async def update_customer(self, slack_user_id: str, fields: dict[str, Any]) -> CustomerState:
        """Merge fields into the customer row. answers is merged key-by-key; an empty dict clears it."""
        customer = await self.get_or_create_customer(slack_user_id)
        data = customer.model_dump()
        fields = dict(fields)
        answers = fields.pop("answers", None)
        data.update(fields)
        if answers is not None:
            data["answers"] = {**data.get("answers", {}), **answers} if answers else {}
        updated = CustomerState.model_validate(data)
        await self.save_customer(updated)
        return updated

    # =========================================================================
    # Brand Notes
    # =========================================================================

    async def add_brand_note(self, channel_id: str, slack_user_id: str, text: str) -> None:
        note = BrandNote(channel_id=channel_id, slack_user_id=slack_user_id, note=text)
        await self.redis.rpush(f"{PREFIX}:notes:{channel_id}", note.model_dump_json())

    async def get_brand_notes(self, channel_id: str) -> list[BrandNote]:
        raw = await self.redis.lrange(f"{PREFIX}:notes:{channel_id}", 0, -1)
        return [BrandNote.model_validate_json(r) for r in raw]

    async def count_brand_notes(self, channel_id: str) -> int:
        return await self.redis.llen(f"{PREFIX}:notes:{channel_id}")

    # =========================================================================
    # Generations
    # =========================================================================

    async def save_generation(self, generation: GenerationRecord) -> None:
        channel, ts = generation.slack_channel_id, generation.slack_message_ts
        pipe = self.redis.pipeline()
        pipe.set(f"{PREFIX}:generation:{channel}:{ts}", generation.model_dump_json())
        pipe.zadd(f"{PREFIX}:generations:{channel}", {ts: generation.created_at})
        await pipe.execute()

    async def get_generation(self, channel_id: str, message_ts: str) -> Optional[GenerationRecord]:
        raw = await self.redis.get(f"{PREFIX}:generation:{channel_id}:{message_ts}")
        return GenerationRecord.model_validate_json(raw) if raw else None

    async def update_generation_meta(self, channel_id: str, message_ts: str, fields: dict[str, Any]) -> bool:
        """Patch telemetry fields on a saved generation. Returns False if it does not exist."""
        key = f"{PREFIX}:generation:{channel_id}:{message_ts}"
        for _ in range(WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return False
                    data = json.loads(raw)
                    data.update(fields)
                    generation = GenerationRecord.model_validate(data)
                    pipe.multi()
                    pipe.set(key, generation.model_dump_json())
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.warning(f"Generation {channel_id}:{message_ts} modified concurrently, retrying")
        return False

    async def count_generations(self, channel_id: str) -> int:
        return await self.redis.zcard(f"{PREFIX}:generations:{channel_id}")

    async def list_generations(
        self,
        channel_id: str,
        limit: int = 20,
        source_type: Optional[str] = None,
    ) -> list[GenerationRecord]:
        """Most recent first. source_type filter is applied after the index scan."""
        scan = limit if source_type is None else max(limit * 5, 50)
        ts_list = await self.redis.zrevrange(f"{PREFIX}:generations:{channel_id}", 0, scan - 1)
        if not ts_list:
            return []
        raws = await self.redis.mget([f"{PREFIX}:generation:{channel_id}:{ts}" for ts in ts_list])
        out: list[GenerationRecord] = []
        for raw in raws:
            if not raw:
                continue
            gen = GenerationRecord.model_validate_json(raw)
            if source_type is not None and gen.source_type.value != source_type:
                continue
            out.append(gen)
            if len(out) >= limit:
                break
        return out

    # =========================================================================
    # Copy Feedback (append-only)
    # =========================================================================

    async def add_copy_feedback(self, record: CopyFeedbackRecord) -> None:
        await self.redis.rpush(f"{PREFIX}:feedback:{record.channel_id}", record.model_dump_json())

    async def list_copy_feedback(self, channel_id: str, limit: int = 50) -> list[CopyFeedbackRecord]:
        """Most recent first."""
        raw = await self.redis.lrange(f"{PREFIX}:feedback:{channel_id}", -limit, -1)
        return [CopyFeedbackRecord.model_validate_json(r) for r in reversed(raw)]

    # =========================================================================
    # Learning Insights
    # =========================================================================

    async def get_insight(self, insight_id: str) -> Optional[LearningInsight]:
        raw = await self.redis.get(f"{PREFIX}:insight:{insight_id}")
        return LearningInsight.model_validate_json(raw) if raw else None

    async def list_insights(self, channel_id: str) -> list[LearningInsight]:
        ids = await self.redis.smembers(f"{PREFIX}:insights:{channel_id}")
        if not ids:
            return []
        raws = await self.redis.mget([f"{PREFIX}:insight:{i}" for i in sorted(ids)])
        return [LearningInsight.model_validate_json(r) for r in raws if r]

    async def get_active_insights(self, channel_id: str) -> list[LearningInsight]:
        """Active insights ordered by confidence, highest first."""
        insights = [i for i in await self.list_insights(channel_id) if i.active]
        insights.sort(key=lambda i: i.confidence, reverse=True)
        return insights

    async def insert_insight(self, insight: LearningInsight) -> LearningInsight:
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(f"{PREFIX}:insight:{insight.id}", insight.model_dump_json())
        pipe.sadd(f"{PREFIX}:insights:{insight.channel_id}", insight.id)
        await pipe.execute()
        return insight

    async def reinforce_insight(self, insight_id: str) -> Optional[LearningInsight]:
        """Nudge confidence up in place. Returns None if the insight is missing or inactive."""
        key = f"{PREFIX}:insight:{insight_id}"
        for _ in range(WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return None
                    insight = LearningInsight.model_validate_json(raw)
                    if not insight.active:
                        return None
                    insight.confidence = min(1.0, round(insight.confidence + REINFORCE_STEP, 4))
                    insight.sample_size += 1
                    insight.version += 1
                    insight.last_reinforced_at = time.time()
                    pipe.multi()
                    pipe.set(key, insight.model_dump_json())
                    await pipe.execute()
                    return insight
                except WatchError:
                    logger.warning(f"Insight {insight_id} modified concurrently, retrying reinforce")
        return None

    async def supersede_insight(self, old_id: str, new: LearningInsight) -> Optional[LearningInsight]:
        """Insert `new` active and deactivate `old_id` pointing at it, atomically.

        Returns None (and writes nothing) if the old insight is missing or already inactive.
        """
        old_key = f"{PREFIX}:insight:{old_id}"
        for _ in range(WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(old_key)
                    raw = await pipe.get(old_key)
                    if not raw:
                        return None
                    old = LearningInsight.model_validate_json(raw)
                    if not old.active:
                        return None
                    new.active = True
                    new.version = 1
                    new.channel_id = old.channel_id
                    old.active = False
                    old.superseded_by = new.id
                    pipe.multi()
                    pipe.set(f"{PREFIX}:insight:{new.id}", new.model_dump_json())
                    pipe.sadd(f"{PREFIX}:insights:{new.channel_id}", new.id)
                    pipe.set(old_key, old.model_dump_json())
                    await pipe.execute()
                    return new
                except WatchError:
                    logger.warning(f"Insight {old_id} modified concurrently, retrying supersede")
        return None

    # =========================================================================
    # Exemplars
    # =========================================================================

    async def save_exemplar(self, exemplar: Exemplar) -> None:
        await self.redis.rpush(f"{PREFIX}:exemplars:{exemplar.channel_id}", exemplar.model_dump_json())

    async def get_exemplars(self, channel_id: str, limit: int = 5) -> list[Exemplar]:
        """Active exemplars ranked by score, then recency."""
        raw = await self.redis.lrange(f"{PREFIX}:exemplars:{channel_id}", 0, -1)
        exemplars = [Exemplar.model_validate_json(r) for r in raw]
        exemplars = [e for e in exemplars if e.active]
        exemplars.sort(key=lambda e: (e.score, e.created_at), reverse=True)
        return exemplars[:limit]
