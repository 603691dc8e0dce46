# Understood/tests/test_learning_worker.py
"""LearningWorker tests: bounded queue, coalescing, failure isolation."""
from __future__ import annotations

import asyncio

import pytest

from src.agents.learning_worker import LearningWorker


class RecordingAgent:
    def __init__(self, fail_on: set[str] | None = None):
        self.runs: list[str] = []
        self.fail_on = fail_on or set()

    async def run(self, channel_id: str):
        self.runs.append(channel_id)
        if channel_id in self.fail_on:
            raise RuntimeError(f"boom for {channel_id}")
        await asyncio.sleep(0)


class TestEnqueue:
    def test_coalesces_pending_channel(self):
        worker = LearningWorker(RecordingAgent(), queue_size=5)
        assert worker.enqueue("C1") is True
        assert worker.enqueue("C1") is False
        assert worker.dropped == 0

    def test_full_queue_drops_and_counts(self):
        worker = LearningWorker(RecordingAgent(), queue_size=2)
        assert worker.enqueue("C1") is True
        assert worker.enqueue("C2") is True
        assert worker.enqueue("C3") is False
        assert worker.dropped == 1


class TestWorkers:
    @pytest.mark.asyncio
    async def test_runs_queued_channels(self):
        agent = RecordingAgent()
        worker = LearningWorker(agent, queue_size=10, workers=2)
        await worker.start()
        try:
            for ch in ("C1", "C2", "C3"):
                worker.enqueue(ch)
            await worker.drain(timeout=2)
        finally:
            await worker.stop()
        assert sorted(agent.runs) == ["C1", "C2", "C3"]
        assert worker.completed == 3

    @pytest.mark.asyncio
    async def test_failed_run_does_not_kill_worker(self):
        agent = RecordingAgent(fail_on={"C1"})
        worker = LearningWorker(agent, queue_size=10, workers=1)
        await worker.start()
        try:
            worker.enqueue("C1")
            worker.enqueue("C2")
            await worker.drain(timeout=2)
            assert worker.running is True
        finally:
            await worker.stop()
        assert worker.failed == 1
        assert worker.completed == 1

    @pytest.mark.asyncio
    async def test_channel_can_requeue_after_dequeue(self):
        agent = RecordingAgent()
        worker = LearningWorker(agent, queue_size=10, workers=1)
        await worker.start()
        try:
            worker.enqueue("C1")
            await worker.drain(timeout=2)
            assert worker.enqueue("C1") is True
            await worker.drain(timeout=2)
        finally:
            await worker.stop()
        assert agent.runs == ["C1", "C1"]

    @pytest.mark.asyncio
    async def test_stop_is_clean(self):
        worker = LearningWorker(RecordingAgent(), workers=2)
        await worker.start()
        await worker.stop()
        assert worker.running is False
