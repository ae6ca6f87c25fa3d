from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True, slots=True)
class ErrorEnvelope:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


LINKDROP_ERRORS = {
    "CLASSIFICATION_AMBIGUOUS": ErrorEnvelope(
        code="CLASSIFICATION_AMBIGUOUS",
        message="Inbound event is missing expected fields.",
    ),
    "POOL_EXHAUSTED": ErrorEnvelope(
        code="POOL_EXHAUSTED",
        message="No unclaimed resource is left in the pool.",
    ),
    "ALREADY_CLAIMED": ErrorEnvelope(
        code="ALREADY_CLAIMED",
        message="Requester already holds a resource.",
    ),
    "DELIVERY_FAILED": ErrorEnvelope(
        code="DELIVERY_FAILED",
        message="Delivery gateway did not accept the message.",
    ),
    "LEDGER_PERSISTENCE_FAILED": ErrorEnvelope(
        code="LEDGER_PERSISTENCE_FAILED",
        message="Ledger mutation could not be persisted; retry later.",
    ),
    "CONFIGURATION_INVALID": ErrorEnvelope(
        code="CONFIGURATION_INVALID",
        message="Configuration is invalid.",
    ),
}


class LinkdropError(Exception):
    """Base class carrying a serialisable error envelope."""

    code = "LINKDROP_ERROR"

    def __init__(self, message: str | None = None, *, details: Optional[Dict[str, Any]] = None) -> None:
        base = LINKDROP_ERRORS.get(self.code)
        text = message or (base.message if base else self.code)
        super().__init__(text)
        self.envelope = ErrorEnvelope(code=self.code, message=text, details=details)


class ClassificationAmbiguous(LinkdropError):
    code = "CLASSIFICATION_AMBIGUOUS"


class PoolExhausted(LinkdropError):
    code = "POOL_EXHAUSTED"


class AlreadyClaimed(LinkdropError):
    code = "ALREADY_CLAIMED"

    def __init__(self, resource_value: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.resource_value = resource_value


class DeliveryError(LinkdropError):
    code = "DELIVERY_FAILED"


class LedgerPersistenceError(LinkdropError):
    code = "LEDGER_PERSISTENCE_FAILED"


class ConfigurationError(LinkdropError):
    code = "CONFIGURATION_INVALID"


__all__ = [
    "AlreadyClaimed",
    "ClassificationAmbiguous",
    "ConfigurationError",
    "DeliveryError",
    "ErrorEnvelope",
    "LedgerPersistenceError",
    "LinkdropError",
    "PoolExhausted",
]
