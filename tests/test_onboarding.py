# Understood/tests/test_onboarding.py
# @ai-rules:
# 1. [Pattern]: Side effects are applied through a real Dispatcher so StubStore sees what Redis would.
"""Onboarding interview tests: start, resume, skip, examples, profile extraction."""
from __future__ import annotations

import json

import pytest

from conftest import CHANNEL, USER, StubLLM, StubSlack, StubStore, make_ctx, make_profile
from src.agents.agent_registry import AgentRegistry
from src.agents.command import CommandAgent
from src.agents.dispatcher import Dispatcher
from src.agents.onboarding import (
    ALREADY_RUNNING_MESSAGE,
    COMPLETE_STEP,
    EXAMPLES_STEP,
    QUESTIONS,
    READY_MESSAGE,
    OnboardingAgent,
)
from src.models import AgentResult, BrandContext, CustomerState

THREAD = "500.1"

PROFILE_JSON = json.dumps({
    "headline_patterns": ["Benefit first"],
    "description_patterns": ["One short line"],
    "primary_text_structure": ["Hook", "Proof", "CTA"],
    "tone_description": "Warm and witty",
    "mandatory_phrases": ["Roasted to order"],
    "banned_phrases": ["cheap"],
    "value_prop_angles": [{"label": "Freshness", "description": "Roasted days before delivery"}, "Convenience"],
    "cta_language": "Start your subscription",
})


async def _apply(store: StubStore, result: AgentResult) -> None:
    await Dispatcher(AgentRegistry({}), store, StubSlack()).apply_side_effects(result.side_effects)


def _answer(text: str):
    return make_ctx(text, thread_ts=THREAD, ts=f"{THREAD}{len(text)}")


class TestStart:
    @pytest.mark.asyncio
    async def test_setup_asks_first_question_in_thread(self):
        store = StubStore()
        onboarding = OnboardingAgent(store, StubLLM())
        command = CommandAgent(store, onboarding)
        result = await command.handle(make_ctx("setup", ts=THREAD), BrandContext(), {"command": "setup"})

        assert result.messages[0].text == QUESTIONS[1]
        assert result.messages[0].thread_ts == THREAD
        await _apply(store, result)
        customer = store.customers[USER]
        assert customer.onboarding_step == 1
        assert customer.onboarding_thread_ts == THREAD
        assert customer.active_thread_type == "onboarding"

    @pytest.mark.asyncio
    async def test_setup_with_existing_profile_does_not_restart(self):
        store = StubStore()
        command = CommandAgent(store, OnboardingAgent(store, StubLLM()))
        result = await command.handle(make_ctx("setup"), BrandContext(profile=make_profile()), {"command": "setup"})
        assert "already has a brand profile" in result.messages[0].text
        assert result.side_effects == []

    @pytest.mark.asyncio
    async def test_second_setup_points_at_running_interview(self):
        store = StubStore()
        store.customers[USER] = CustomerState(slack_user_id=USER, onboarding_step=4)
        result = await OnboardingAgent(store, StubLLM()).start(make_ctx("setup"))
        assert result.messages[0].text == ALREADY_RUNNING_MESSAGE

    @pytest.mark.asyncio
    async def test_new_setup_resets_answers(self):
        store = StubStore()
        store.customers[USER] = CustomerState(
            slack_user_id=USER, onboarding_step=13, onboarding_complete=True, answers={"business_name": "Old"},
        )
        command = CommandAgent(store, OnboardingAgent(store, StubLLM()))
        result = await command.handle(make_ctx("new setup"), BrandContext(), {"command": "new_setup"})
        await _apply(store, result)
        customer = store.customers[USER]
        assert customer.onboarding_step == 1
        assert customer.onboarding_complete is False
        assert customer.answers == {}


class TestInterview:
    @pytest.mark.asyncio
    async def test_full_interview_builds_profile(self):
        store = StubStore()
        llm = StubLLM(replies=[PROFILE_JSON])
        agent = OnboardingAgent(store, llm)
        await _apply(store, await agent.start(make_ctx("setup", ts=THREAD)))

        answers = [
            "Brightside Coffee", "skip", "Small-batch coffee subscriptions", "Busy parents",
            "Freshness", "$24/mo", "warm, witty", "Roasted to order", "cheap", "Start your subscription", "Meta",
        ]
        for i, text in enumerate(answers, start=1):
            result = await agent.handle(_answer(text), BrandContext())
            assert result.messages[0].thread_ts == THREAD
            await _apply(store, result)
            assert store.customers[USER].onboarding_step == i + 1

        assert store.customers[USER].answers["website_url"] is None
        assert store.customers[USER].answers["business_name"] == "Brightside Coffee"

        await _apply(store, await agent.handle(_answer("Roasted Monday. Shipped Tuesday."), BrandContext()))
        result = await agent.handle(_answer("Your mornings, upgraded."), BrandContext())
        assert "2 examples so far" in result.messages[0].text
        await _apply(store, result)

        result = await agent.handle(_answer("done"), BrandContext())
        await _apply(store, result)

        assert [m.text for m in result.messages][-1] == READY_MESSAGE
        assert "*Brand Profile: Brightside Coffee*" in result.messages[1].text
        profile = store.profiles[CHANNEL]
        assert profile.name == "Brightside Coffee"
        assert profile.banned_phrases == ["cheap"]
        assert "Roasted Monday." in profile.raw_examples
        customer = store.customers[USER]
        assert customer.onboarding_complete is True
        assert customer.onboarding_step == COMPLETE_STEP
        assert customer.active_thread_type is None

    @pytest.mark.asyncio
    async def test_step_counter_is_shown(self):
        store = StubStore()
        store.customers[USER] = CustomerState(slack_user_id=USER, onboarding_step=3, onboarding_thread_ts=THREAD)
        result = await OnboardingAgent(store, StubLLM()).handle(_answer("Coffee"), BrandContext())
        assert "[Step 4 of 11]" in result.messages[0].text
        assert QUESTIONS[4] in result.messages[0].text

    @pytest.mark.asyncio
    async def test_failed_extraction_stays_on_examples_step(self):
        store = StubStore()
        store.customers[USER] = CustomerState(
            slack_user_id=USER, onboarding_step=EXAMPLES_STEP, onboarding_thread_ts=THREAD,
            answers={"business_name": "Brightside Coffee"},
        )
        agent = OnboardingAgent(store, StubLLM(replies=["Sorry, I can't do that."]))
        result = await agent.handle(_answer("done"), BrandContext())
        await _apply(store, result)

        assert "trouble analyzing" in result.messages[0].text
        assert store.customers[USER].onboarding_step == EXAMPLES_STEP
        assert CHANNEL not in store.profiles

    @pytest.mark.asyncio
    async def test_completed_customer_is_ignored(self):
        store = StubStore()
        store.customers[USER] = CustomerState(slack_user_id=USER, onboarding_step=13, onboarding_complete=True)
        result = await OnboardingAgent(store, StubLLM()).handle(_answer("hello"), BrandContext())
        assert result.messages == []
