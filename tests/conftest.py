"""Shared fixtures and fakes for the distributor tests."""
from __future__ import annotations

import asyncio
from typing import Any, Iterable, Sequence

import pytest
from prometheus_client import CollectorRegistry

from linkdrop.allocation import AllocationService
from linkdrop.classifier import EventClassifier, ReplyContext
from linkdrop.delivery import DeliveryAck
from linkdrop.errors import DeliveryError, LedgerPersistenceError
from linkdrop.fanout import InMemoryFanout
from linkdrop.ledger import MemoryStore, ResourceLedger, ResourceRecord
from linkdrop.metrics import LinkdropMetrics
from linkdrop.pipeline import EventPipeline

BOT_ID = "999"


class RecordingGateway:
    def __init__(self, *, fail_for: Iterable[str] = (), fail_all: bool = False, delay: float = 0.0) -> None:
        self.fail_for = set(fail_for)
        self.fail_all = fail_all
        self.delay = delay
        self.sent: list[tuple[str, str]] = []

    async def send(self, requester_id: str, message_text: str) -> DeliveryAck:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((requester_id, message_text))
        if self.fail_all or requester_id in self.fail_for:
            raise DeliveryError(details={"requester_id": requester_id})
        return DeliveryAck(requester_id=requester_id, message_id=f"m-{len(self.sent)}")


class RecordingFallback:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.replies: list[tuple[ReplyContext, str]] = []

    async def post_public_reply(self, reply_context: ReplyContext, message_text: str) -> None:
        self.replies.append((reply_context, message_text))
        if self.fail:
            raise RuntimeError("status update rejected")


class FlakyStore(MemoryStore):
    """Memory store whose writes can be switched to fail."""

    def __init__(self, records: Sequence[ResourceRecord] = ()) -> None:
        super().__init__(records)
        self.fail_writes = False

    def write_all(self, records: Sequence[ResourceRecord]) -> None:
        if self.fail_writes:
            raise LedgerPersistenceError(details={"reason": "disk full"})
        super().write_all(records)


def make_records(count: int, prefix: str = "https://example.test/link/") -> list[ResourceRecord]:
    return [ResourceRecord(resource_value=f"{prefix}{index}") for index in range(1, count + 1)]


def dm_event(sender: str = "u555", recipient: str = BOT_ID, text: str = "hi", type_: str = "message_create") -> dict[str, Any]:
    return {
        "type": type_,
        "id": "1050000000000000000",
        "created_timestamp": "1538000000000",
        "message_create": {
            "target": {"recipient_id": recipient},
            "sender_id": sender,
            "message_data": {"text": text, "entities": {"hashtags": []}},
        },
    }


def tweet_event(
    sender: str = "u123",
    *,
    post_id: str = "p9",
    screen_name: str = "bob",
    hashtags: Iterable[str] = ("UpDog",),
    text: str = "what's #UpDog",
) -> dict[str, Any]:
    return {
        "id_str": post_id,
        "text": text,
        "user": {"id_str": sender, "screen_name": screen_name},
        "entities": {"hashtags": [{"text": tag, "indices": [0, len(tag)]} for tag in hashtags]},
    }


def webhook_body(*, dms: Iterable[dict] = (), tweets: Iterable[dict] = (), for_user_id: str = BOT_ID) -> dict[str, Any]:
    body: dict[str, Any] = {"for_user_id": for_user_id}
    dms = list(dms)
    tweets = list(tweets)
    if dms:
        body["direct_message_events"] = dms
    if tweets:
        body["tweet_create_events"] = tweets
    return body


@pytest.fixture()
def classifier() -> EventClassifier:
    return EventClassifier(bot_user_id=BOT_ID, marker="UpDog")


@pytest.fixture()
def store() -> FlakyStore:
    return FlakyStore(make_records(3))


@pytest.fixture()
def ledger(store: FlakyStore) -> ResourceLedger:
    return ResourceLedger(store)


@pytest.fixture()
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture()
def fallback() -> RecordingFallback:
    return RecordingFallback()


@pytest.fixture()
def metrics() -> LinkdropMetrics:
    return LinkdropMetrics(CollectorRegistry())


@pytest.fixture()
def service(ledger: ResourceLedger, gateway: RecordingGateway, fallback: RecordingFallback, metrics: LinkdropMetrics) -> AllocationService:
    return AllocationService(
        ledger=ledger,
        gateway=gateway,
        fallback=fallback,
        metrics=metrics,
        delivery_timeout=1.0,
    )


@pytest.fixture()
def fanout() -> InMemoryFanout:
    return InMemoryFanout()


@pytest.fixture()
def pipeline(classifier: EventClassifier, service: AllocationService, fanout: InMemoryFanout, metrics: LinkdropMetrics) -> EventPipeline:
    return EventPipeline(classifier=classifier, service=service, fanout=fanout, metrics=metrics)
