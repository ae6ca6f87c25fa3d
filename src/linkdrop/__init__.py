"""Social-media triggered distributor of single-use links."""

from .allocation import AllocationOutcome, AllocationService, AllocationState, ResponseMessages
from .classifier import EventClassifier, EventKind, InboundEvent, ReplyContext
from .delivery import DeliveryAck, DeliveryGateway, FallbackChannel
from .errors import DeliveryError, LedgerPersistenceError, LinkdropError
from .fanout import Fanout, InMemoryFanout, RedisFanout
from .ledger import ClaimResult, ClaimStatus, ResourceLedger, ResourceRecord
from .pipeline import EventPipeline

__all__ = [
    "AllocationOutcome",
    "AllocationService",
    "AllocationState",
    "ClaimResult",
    "ClaimStatus",
    "DeliveryAck",
    "DeliveryError",
    "DeliveryGateway",
    "EventClassifier",
    "EventKind",
    "EventPipeline",
    "FallbackChannel",
    "Fanout",
    "InMemoryFanout",
    "InboundEvent",
    "LedgerPersistenceError",
    "LinkdropError",
    "RedisFanout",
    "ReplyContext",
    "ResourceLedger",
    "ResourceRecord",
    "ResponseMessages",
]
