"""Typed records held by the resource ledger."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Iterator, Optional

from ..errors import AlreadyClaimed, PoolExhausted

LEGACY_DELIMITER = "||"


@dataclass(frozen=True, slots=True)
class ResourceRecord:
    """One distributable value and, when claimed, the requester holding it."""

    resource_value: str
    claimant_id: Optional[str] = None

    @property
    def claimed(self) -> bool:
        return self.claimant_id is not None

    def claim_for(self, requester_id: str) -> "ResourceRecord":
        return replace(self, claimant_id=requester_id)

    def released(self) -> "ResourceRecord":
        return replace(self, claimant_id=None)

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"resource_value": self.resource_value, "claimant_id": self.claimant_id}

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceRecord":
        claimant = data.get("claimant_id")
        return cls(
            resource_value=str(data["resource_value"]),
            claimant_id=str(claimant) if claimant not in (None, "") else None,
        )


class ClaimStatus(str, Enum):
    CLAIMED = "CLAIMED"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"


class ReleaseStatus(str, Enum):
    RELEASED = "RELEASED"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True, slots=True)
class ClaimResult:
    status: ClaimStatus
    requester_id: str
    resource_value: Optional[str] = None

    @property
    def allocated(self) -> bool:
        """True only when this call assigned a fresh record."""

        return self.status is ClaimStatus.CLAIMED

    def raise_for_status(self) -> str:
        if self.status is ClaimStatus.POOL_EXHAUSTED:
            raise PoolExhausted(details={"requester_id": self.requester_id})
        if self.status is ClaimStatus.ALREADY_CLAIMED:
            assert self.resource_value is not None
            raise AlreadyClaimed(self.resource_value, details={"requester_id": self.requester_id})
        assert self.resource_value is not None
        return self.resource_value


@dataclass(frozen=True, slots=True)
class ReleaseResult:
    status: ReleaseStatus
    requester_id: str
    resource_value: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LedgerStats:
    total: int
    claimed: int

    @property
    def available(self) -> int:
        return self.total - self.claimed

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "claimed": self.claimed, "available": self.available}


def parse_legacy_lines(lines: Iterable[str]) -> Iterator[ResourceRecord]:
    """Read the plain-text pool format: ``value`` or ``value||claimant`` per line."""

    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        value, sep, claimant = line.partition(LEGACY_DELIMITER)
        value = value.strip()
        if not value:
            continue
        claimant = claimant.strip() if sep else ""
        yield ResourceRecord(resource_value=value, claimant_id=claimant or None)
