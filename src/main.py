# Understood/src/main.py
# @ai-rules:
# 1. [Pattern]: Everything is wired ONCE in lifespan(): Redis -> BrandStore -> SlackClient -> LLM -> registry -> Dispatcher -> pipeline.
# 2. [Constraint]: The agent registry is built here and passed by reference into the Dispatcher. Nothing registers later.
# 3. [Pattern]: Socket Mode is conditional on SLACK_APP_TOKEN. Without it only the HTTP webhook receives events.
# 4. [Gotcha]: Redis is REQUIRED. A failed connect leaves the pipeline unset and /health returns 503.
# 5. [Constraint]: LearningWorker is started before the first event and stopped (cancelled) on shutdown.
"""
Understood - FastAPI Application

Slack ad-copy bot:
- Events API webhook (POST /slack/events) and optional Socket Mode
- Smart Router + Dispatcher over a fixed set of agents
- Background learning worker
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from .agents import (
    Dispatcher,
    EventPipeline,
    LearningAgent,
    LearningWorker,
    MediaIntake,
    SmartRouter,
    create_registry,
)
from .agents.llm import create_adapter
from .channels.slack import SLACK_APP_TOKEN, SLACK_BOT_TOKEN, SlackClient, SlackSocketChannel
from .dependencies import set_pipeline
from .models import HealthResponse
from .routes import slack_events_router
from .state import BrandStore, RedisClient

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "claude")

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Squelch noisy third-party loggers
for noisy in (
    "slack_bolt", "slack_bolt.AsyncApp", "slack_bolt.IgnoringSelfEvents",
    "slack_sdk", "slack_sdk.socket_mode", "slack_sdk.web.async_client",
    "httpx", "httpcore", "anthropic",
):
    logging.getLogger(noisy).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Connects Redis, builds the agent registry and pipeline, starts the learning
    worker and (optionally) Socket Mode. Tears them down in reverse on shutdown.
    """
    logger.info("Understood starting up...")

    redis_client = RedisClient()
    try:
        redis = await redis_client.connect()
    except Exception as e:
        logger.error(f"CRITICAL: Failed to connect to Redis: {e}")
        logger.error("Redis is required for brand state. Startup will continue but health checks will fail.")
        redis = None

    worker = None
    socket_channel = None
    if redis:
        store = BrandStore(redis)

        slack = SlackClient(SLACK_BOT_TOKEN)
        llm = create_adapter(LLM_PROVIDER)
        registry = create_registry(store, llm)

        worker = LearningWorker(LearningAgent(store, llm))
        await worker.start()

        router = SmartRouter(store, llm)
        pipeline = EventPipeline(
            store=store,
            slack=slack,
            router=router,
            intake=MediaIntake(slack, router, llm),
            dispatcher=Dispatcher(registry, store, slack, learning=worker),
        )
        set_pipeline(pipeline)
        app.state.learning_worker = worker
        logger.info(f"Pipeline ready ({len(registry)} agents, provider={LLM_PROVIDER})")

        # === SLACK SOCKET MODE ===
        if SLACK_BOT_TOKEN and SLACK_APP_TOKEN:
            socket_channel = SlackSocketChannel(SLACK_BOT_TOKEN, SLACK_APP_TOKEN, pipeline.handle)
            await socket_channel.start()
            logger.info("Slack channel started (Socket Mode)")
        else:
            logger.info("Socket Mode disabled (SLACK_APP_TOKEN not set), using HTTP webhook only")

    yield  # Application runs here

    logger.info("Understood shutting down...")
    if socket_channel is not None:
        await socket_channel.stop()
    if worker is not None:
        await worker.stop()
    await redis_client.close()
    logger.info("Redis connection closed")


# Create FastAPI application
app = FastAPI(
    title="Understood",
    description="Slack bot that turns ad creatives into brand-voiced ad copy",
    version="0.4.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Endpoint
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint for liveness/readiness probes.

    Returns 503 Service Unavailable if the pipeline was not initialized.
    """
    from .dependencies import _pipeline

    if _pipeline is None:
        raise HTTPException(
            status_code=503,
            detail="Pipeline not initialized - Redis connection may have failed",
        )

    worker = getattr(app.state, "learning_worker", None)
    return HealthResponse(status="ok", learning_queue_dropped=worker.dropped if worker else 0)


app.include_router(slack_events_router)
