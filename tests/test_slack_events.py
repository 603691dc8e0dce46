# Understood/tests/test_slack_events.py
# @ai-rules:
# 1. [Pattern]: TestClient WITHOUT the context manager, so lifespan (Redis, Slack, LLM) never runs.
# 2. [Pattern]: Requests are signed for real with SlackRequestVerifier.sign(); only the clock is pinned.
"""Webhook tests: signature gate, url_verification handshake, background hand-off."""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from src import dependencies
from src.auth import SignatureError, SlackRequestVerifier
from src.dependencies import get_pipeline, get_verifier
from src.main import app

SECRET = "8f742231b10e8888abcd99yyyzzz85a5"
NOW = 1_700_000_000


class RecordingPipeline:
    def __init__(self):
        self.envelopes: list[dict] = []

    async def handle(self, envelope: dict) -> None:
        self.envelopes.append(envelope)


@pytest.fixture
def verifier() -> SlackRequestVerifier:
    return SlackRequestVerifier(SECRET, clock=lambda: NOW)


@pytest.fixture
def pipeline() -> RecordingPipeline:
    return RecordingPipeline()


@pytest.fixture
def client(verifier, pipeline):
    app.dependency_overrides[get_verifier] = lambda: verifier
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post(client: TestClient, verifier: SlackRequestVerifier, payload: dict, ts: int = NOW, signature: str = ""):
    body = json.dumps(payload)
    headers = {
        "X-Slack-Request-Timestamp": str(ts),
        "X-Slack-Signature": signature or verifier.sign(body, str(ts)),
        "Content-Type": "application/json",
    }
    return client.post("/slack/events", content=body, headers=headers)


class TestSignature:
    def test_bad_signature_rejected(self, client, verifier, pipeline):
        resp = _post(client, verifier, {"type": "event_callback"}, signature="v0=deadbeef")
        assert resp.status_code == 401
        assert pipeline.envelopes == []

    def test_stale_timestamp_rejected(self, client, verifier, pipeline):
        resp = _post(client, verifier, {"type": "event_callback"}, ts=NOW - 600)
        assert resp.status_code == 401

    def test_missing_headers_rejected(self, client):
        resp = client.post("/slack/events", content="{}")
        assert resp.status_code == 401

    def test_unconfigured_secret_rejects_everything(self):
        with pytest.raises(SignatureError):
            SlackRequestVerifier("").verify("{}", str(NOW), "v0=abc")


class TestEnvelopes:
    def test_url_verification_echoes_challenge(self, client, verifier, pipeline):
        resp = _post(client, verifier, {"type": "url_verification", "challenge": "3eZbrw1aBm2rZgRNFdxV2595"})
        assert resp.status_code == 200
        assert resp.json() == {"challenge": "3eZbrw1aBm2rZgRNFdxV2595"}
        assert pipeline.envelopes == []

    def test_event_callback_is_acked_and_handed_off(self, client, verifier, pipeline):
        envelope = {
            "type": "event_callback",
            "event_id": "Ev123",
            "team_id": "T1",
            "event": {"type": "message", "user": "U1", "channel": "C1", "text": "setup", "ts": "1.1"},
        }
        resp = _post(client, verifier, envelope)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert pipeline.envelopes == [envelope]

    def test_other_envelope_types_are_acked_and_ignored(self, client, verifier, pipeline):
        resp = _post(client, verifier, {"type": "app_rate_limited"})
        assert resp.json() == {"ok": True}
        assert pipeline.envelopes == []

    def test_malformed_json_is_400(self, client, verifier):
        body = "not json"
        headers = {"X-Slack-Request-Timestamp": str(NOW), "X-Slack-Signature": verifier.sign(body, str(NOW))}
        resp = client.post("/slack/events", content=body, headers=headers)
        assert resp.status_code == 400


class TestHealth:
    def test_503_without_pipeline(self):
        dependencies.set_pipeline(None)
        resp = TestClient(app).get("/health")
        assert resp.status_code == 503

    def test_ok_with_pipeline(self, pipeline):
        dependencies.set_pipeline(pipeline)
        try:
            resp = TestClient(app).get("/health")
        finally:
            dependencies.set_pipeline(None)
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestDependencies:
    @pytest.mark.asyncio
    async def test_pipeline_dependency_requires_startup(self):
        dependencies.set_pipeline(None)
        with pytest.raises(RuntimeError):
            await get_pipeline()

    @pytest.mark.asyncio
    async def test_pipeline_dependency_returns_the_wired_pipeline(self, pipeline):
        dependencies.set_pipeline(pipeline)
        try:
            assert await get_pipeline() is pipeline
        finally:
            dependencies.set_pipeline(None)
