"""Webhook body processing: fan-out, classification and concurrent allocation."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, List
from uuid import uuid4

from .allocation import AllocationOutcome, AllocationService
from .classifier import EventClassifier
from .errors import LedgerPersistenceError
from .fanout import DEFAULT_TOPIC, Fanout
from .logging_utils import correlation_id_var
from .metrics import LinkdropMetrics


logger = logging.getLogger(__name__)


class EventPipeline:
    def __init__(
        self,
        *,
        classifier: EventClassifier,
        service: AllocationService,
        fanout: Fanout,
        metrics: LinkdropMetrics | None = None,
        topic: str = DEFAULT_TOPIC,
    ) -> None:
        self.classifier = classifier
        self.service = service
        self.fanout = fanout
        self.metrics = metrics
        self.topic = topic

    async def handle_webhook(self, body: Any) -> List[AllocationOutcome]:
        internal_id = str(uuid4())
        token = correlation_id_var.set(internal_id)
        try:
            self._publish(internal_id, body)
            raw_events = self.classifier.split_batch(body)
            results = await asyncio.gather(
                *(self.handle_event(raw) for raw in raw_events),
                return_exceptions=True,
            )

            outcomes: List[AllocationOutcome] = []
            failure: BaseException | None = None
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(
                        "event processing failed",
                        exc_info=result,
                        extra={"ctx_code": getattr(result, "code", type(result).__name__), "ctx_internal_id": internal_id},
                    )
                    if failure is None or isinstance(result, LedgerPersistenceError):
                        failure = result
                    continue
                outcomes.append(result)
        finally:
            correlation_id_var.reset(token)

        if failure is not None:
            raise failure
        return outcomes

    async def handle_event(self, raw_event: Any) -> AllocationOutcome:
        event = self.classifier.classify(raw_event)
        if self.metrics:
            self.metrics.record_event(event.kind.value)
        logger.info(
            "event classified",
            extra={
                "ctx_kind": event.kind.value,
                "ctx_requester": event.requester_id,
                "ctx_qualifies": event.qualifies,
            },
        )
        return await self.service.process(event)

    def _publish(self, internal_id: str, body: Any) -> None:
        try:
            self.fanout.publish(self.topic, {"internal_id": internal_id, "event": body})
        except Exception:  # pylint: disable=broad-except
            logger.warning("fan-out failed", exc_info=True, extra={"ctx_code": "FANOUT_FAILED"})
