"""HTTP adapter around the pipeline."""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from redis import Redis

from .allocation import AllocationService
from .classifier import EventClassifier
from .config import LinkdropSettings, get_settings
from .delivery import HttpDeliveryGateway, HttpFallbackChannel, build_api_client
from .errors import LedgerPersistenceError, LinkdropError
from .fanout import Fanout, InMemoryFanout, RedisFanout
from .ledger import ResourceLedger, create_store
from .metrics import LinkdropMetrics
from .pipeline import EventPipeline


logger = logging.getLogger(__name__)


def challenge_response(crc_token: str, consumer_secret: str) -> str:
    digest = hmac.new(
        consumer_secret.encode("utf-8"),
        msg=crc_token.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).digest()
    return "sha256=" + base64.b64encode(digest).decode("ascii")


def build_pipeline(
    settings: LinkdropSettings,
    *,
    metrics: LinkdropMetrics,
    client: httpx.AsyncClient,
    fanout: Optional[Fanout] = None,
) -> EventPipeline:
    ledger = ResourceLedger(create_store(settings.ledger_url))
    if fanout is None:
        fanout = RedisFanout(Redis.from_url(settings.redis_url)) if settings.redis_url else InMemoryFanout()
    service = AllocationService(
        ledger=ledger,
        gateway=HttpDeliveryGateway(client),
        fallback=HttpFallbackChannel(client),
        metrics=metrics,
        delivery_timeout=settings.delivery_timeout,
        compensate_direct_messages=settings.compensate_direct_messages,
    )
    classifier = EventClassifier(bot_user_id=settings.bot_user_id, marker=settings.marker)
    return EventPipeline(
        classifier=classifier,
        service=service,
        fanout=fanout,
        metrics=metrics,
        topic=settings.fanout_topic,
    )


def create_app(
    *,
    settings: Optional[LinkdropSettings] = None,
    pipeline: Optional[EventPipeline] = None,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    settings = settings or get_settings()
    registry = registry or CollectorRegistry()
    client: Optional[httpx.AsyncClient] = None
    if pipeline is None:
        client = build_api_client(
            settings.api_base_url,
            settings.api_bearer_token,
            timeout=settings.delivery_timeout,
        )
        pipeline = build_pipeline(settings, metrics=LinkdropMetrics(registry), client=client)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            yield
        finally:
            if client is not None:
                await client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.pipeline = pipeline
    app.state.registry = registry
    app.state.settings = settings

    @app.exception_handler(LinkdropError)
    async def linkdrop_error_handler(request: Request, exc: LinkdropError):
        status_code = 503 if isinstance(exc, LedgerPersistenceError) else 500
        return JSONResponse(exc.envelope.to_dict(), status_code=status_code)

    @app.get("/webhook/twitter")
    async def crc_check(crc_token: Optional[str] = None):
        if not crc_token:
            raise HTTPException(status_code=400, detail="Error: crc_token missing from request.")
        if not settings.consumer_secret:
            raise HTTPException(status_code=503, detail="consumer secret is not configured")
        return {"response_token": challenge_response(crc_token, settings.consumer_secret)}

    @app.post("/webhook/twitter")
    async def receive(request: Request):
        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="body must be JSON") from exc
        outcomes = await app.state.pipeline.handle_webhook(body)
        return {
            "processed": len(outcomes),
            "outcomes": [
                {"requester_id": outcome.requester_id, "kind": outcome.kind.value, "state": outcome.state.value}
                for outcome in outcomes
            ],
        }

    @app.get("/healthz")
    async def healthz():
        stats = app.state.pipeline.service.ledger.stats()
        return {"status": "ok", "ledger": stats.to_dict()}

    @app.get("/metrics")
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app
