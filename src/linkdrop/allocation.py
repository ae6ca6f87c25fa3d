"""Allocation service orchestrating claim, delivery and compensation."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .classifier import EventKind, InboundEvent
from .delivery import DeliveryGateway, FallbackChannel
from .errors import LedgerPersistenceError
from .ledger import ClaimResult, ClaimStatus, ReleaseStatus, ResourceLedger
from .metrics import LinkdropMetrics


logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TIMEOUT = 10.0


class AllocationState(str, Enum):
    RECEIVED = "RECEIVED"
    CLASSIFIED = "CLASSIFIED"
    REJECTED = "REJECTED"
    CLAIMING = "CLAIMING"
    CLAIMED = "CLAIMED"
    CLAIM_DENIED = "CLAIM_DENIED"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    COMPENSATING = "COMPENSATING"
    COMPENSATED = "COMPENSATED"


@dataclass(frozen=True)
class ResponseMessages:
    already_claimed: str = "You've already gotten one!"
    exhausted: str = "Sorry, all the spots have been claimed!"
    fallback_notice: str = "we couldn't send you a direct message, please send us a DM to retry."


@dataclass(slots=True)
class AllocationOutcome:
    """Trace of one request through the state machine."""

    requester_id: Optional[str]
    kind: EventKind
    states: List[AllocationState] = field(
        default_factory=lambda: [AllocationState.RECEIVED, AllocationState.CLASSIFIED]
    )
    claim_status: Optional[ClaimStatus] = None
    message: Optional[str] = None
    released: bool = False
    fallback_posted: bool = False

    @property
    def state(self) -> AllocationState:
        return self.states[-1]

    def advance(self, state: AllocationState) -> None:
        self.states.append(state)


class AllocationService:
    def __init__(
        self,
        *,
        ledger: ResourceLedger,
        gateway: DeliveryGateway,
        fallback: FallbackChannel | None = None,
        metrics: LinkdropMetrics | None = None,
        messages: ResponseMessages | None = None,
        delivery_timeout: float = DEFAULT_DELIVERY_TIMEOUT,
        compensate_direct_messages: bool = False,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._fallback = fallback
        self._metrics = metrics
        self._messages = messages or ResponseMessages()
        self._delivery_timeout = delivery_timeout
        self._compensate_direct_messages = compensate_direct_messages

    @property
    def ledger(self) -> ResourceLedger:
        return self._ledger

    async def process(self, event: InboundEvent) -> AllocationOutcome:
        outcome = AllocationOutcome(requester_id=event.requester_id, kind=event.kind)
        if not event.qualifies:
            outcome.advance(AllocationState.REJECTED)
            return outcome

        requester_id = event.requester_id
        assert requester_id is not None
        outcome.advance(AllocationState.CLAIMING)
        claim = await self._claim(requester_id)
        outcome.claim_status = claim.status
        if self._metrics:
            self._metrics.record_claim(claim.status.value)

        if claim.allocated:
            outcome.advance(AllocationState.CLAIMED)
            outcome.message = claim.resource_value
        else:
            outcome.advance(AllocationState.CLAIM_DENIED)
            outcome.message = self._denied_message(claim)

        outcome.advance(AllocationState.DELIVERING)
        assert outcome.message is not None
        try:
            delivered = await self._deliver(requester_id, outcome.message)
        except asyncio.CancelledError:
            outcome.advance(AllocationState.DELIVERY_FAILED)
            logger.warning(
                "delivery cancelled; resolving as failed",
                extra={"ctx_code": "DELIVERY_CANCELLED", "ctx_requester": requester_id},
            )
            await asyncio.shield(self._compensate(event, claim, outcome))
            raise

        if delivered:
            outcome.advance(AllocationState.DELIVERED)
            return outcome

        outcome.advance(AllocationState.DELIVERY_FAILED)
        await self._compensate(event, claim, outcome)
        return outcome

    async def _claim(self, requester_id: str) -> ClaimResult:
        claim_task = asyncio.ensure_future(asyncio.to_thread(self._ledger.claim, requester_id))
        try:
            return await asyncio.shield(claim_task)
        except asyncio.CancelledError:
            # the worker thread keeps running; undo whatever it allocated
            try:
                claim = await claim_task
                if claim.allocated:
                    await asyncio.to_thread(self._ledger.release, requester_id)
            except LedgerPersistenceError:
                logger.error(
                    "ledger failed while unwinding a cancelled claim",
                    exc_info=True,
                    extra={"ctx_code": "LEDGER_PERSISTENCE_FAILED", "ctx_requester": requester_id},
                )
            raise

    async def _deliver(self, requester_id: str, message: str) -> bool:
        started = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._gateway.send(requester_id, message),
                timeout=self._delivery_timeout,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "delivery failed",
                extra={
                    "ctx_code": "DELIVERY_FAILED",
                    "ctx_requester": requester_id,
                    "ctx_reason": type(exc).__name__,
                },
            )
            if self._metrics:
                self._metrics.record_delivery("failed", time.perf_counter() - started)
            return False
        if self._metrics:
            self._metrics.record_delivery("delivered", time.perf_counter() - started)
        logger.info("delivered", extra={"ctx_code": "DELIVERED", "ctx_requester": requester_id})
        return True

    async def _compensate(self, event: InboundEvent, claim: ClaimResult, outcome: AllocationOutcome) -> None:
        if not claim.allocated:
            return
        requester_id = claim.requester_id
        if event.reply_context is None and not self._compensate_direct_messages:
            logger.warning(
                "direct-message delivery failed; claim kept",
                extra={"ctx_code": "CLAIM_KEPT", "ctx_requester": requester_id},
            )
            return

        outcome.advance(AllocationState.COMPENSATING)
        released = await asyncio.to_thread(self._ledger.release, requester_id)
        outcome.released = released.status is ReleaseStatus.RELEASED
        if self._metrics and outcome.released:
            self._metrics.record_compensation()

        if event.reply_context is not None and self._fallback is not None:
            try:
                await self._fallback.post_public_reply(event.reply_context, self._messages.fallback_notice)
                outcome.fallback_posted = True
            except Exception:  # pylint: disable=broad-except
                logger.warning(
                    "fallback notice failed",
                    exc_info=True,
                    extra={"ctx_code": "FALLBACK_FAILED", "ctx_requester": requester_id},
                )
        outcome.advance(AllocationState.COMPENSATED)

    def _denied_message(self, claim: ClaimResult) -> str:
        if claim.status is ClaimStatus.ALREADY_CLAIMED:
            return self._messages.already_claimed
        return self._messages.exhausted
