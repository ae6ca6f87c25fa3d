"""Resource ledger: serialized claim and release over a write-through store."""
from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional

from ..errors import LedgerPersistenceError
from .models import (
    ClaimResult,
    ClaimStatus,
    LedgerStats,
    ReleaseResult,
    ReleaseStatus,
    ResourceRecord,
)
from .store import BackingStore


logger = logging.getLogger(__name__)


class ResourceLedger:
    """Single owner of the pool within a process.

    Every mutation runs inside one lock plus the store's ``locked()`` section:
    it re-reads the pool, applies the change and writes the whole pool back
    before returning. When the write fails the in-memory records are restored
    to the last durable snapshot and ``LedgerPersistenceError`` is raised, so
    the caller never sees a claim that was not persisted.
    """

    def __init__(self, store: BackingStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._records: List[ResourceRecord] = store.read_all()

    def claim(self, requester_id: str) -> ClaimResult:
        with self._lock, self._store.locked():
            self._refresh()
            first_free: Optional[int] = None
            for index, record in enumerate(self._records):
                if record.claimant_id == requester_id:
                    logger.info(
                        "requester already holds a resource",
                        extra={"ctx_code": "ALREADY_CLAIMED", "ctx_requester": requester_id},
                    )
                    return ClaimResult(
                        status=ClaimStatus.ALREADY_CLAIMED,
                        requester_id=requester_id,
                        resource_value=record.resource_value,
                    )
                if first_free is None and not record.claimed:
                    first_free = index

            if first_free is None:
                logger.warning(
                    "pool exhausted",
                    extra={"ctx_code": "POOL_EXHAUSTED", "ctx_requester": requester_id},
                )
                return ClaimResult(status=ClaimStatus.POOL_EXHAUSTED, requester_id=requester_id)

            record = self._records[first_free]
            updated = list(self._records)
            updated[first_free] = record.claim_for(requester_id)
            self._commit(updated, position=first_free)
            logger.info(
                "resource claimed",
                extra={"ctx_code": "CLAIMED", "ctx_requester": requester_id, "ctx_position": first_free},
            )
            return ClaimResult(
                status=ClaimStatus.CLAIMED,
                requester_id=requester_id,
                resource_value=record.resource_value,
            )

    def release(self, requester_id: str) -> ReleaseResult:
        with self._lock, self._store.locked():
            self._refresh()
            for index, record in enumerate(self._records):
                if record.claimant_id != requester_id:
                    continue
                updated = list(self._records)
                updated[index] = record.released()
                self._commit(updated, position=index)
                logger.info(
                    "resource released",
                    extra={"ctx_code": "RELEASED", "ctx_requester": requester_id, "ctx_position": index},
                )
                return ReleaseResult(
                    status=ReleaseStatus.RELEASED,
                    requester_id=requester_id,
                    resource_value=record.resource_value,
                )
        logger.warning(
            "no claim to release",
            extra={"ctx_code": "NOT_FOUND", "ctx_requester": requester_id},
        )
        return ReleaseResult(status=ReleaseStatus.NOT_FOUND, requester_id=requester_id)

    def load(self, records: Iterable[ResourceRecord]) -> int:
        """Append records whose value is not in the pool yet; return how many."""

        with self._lock, self._store.locked():
            self._refresh()
            known = {record.resource_value for record in self._records}
            holders = {record.claimant_id for record in self._records if record.claimed}
            added: List[ResourceRecord] = []
            for record in records:
                if record.resource_value in known:
                    continue
                if record.claimed and record.claimant_id in holders:
                    # a requester may hold one resource only
                    record = record.released()
                known.add(record.resource_value)
                if record.claimed:
                    holders.add(record.claimant_id)
                added.append(record)
            if not added:
                return 0
            self._commit(self._records + added)
            logger.info("pool loaded", extra={"ctx_code": "LOADED", "ctx_added": len(added)})
            return len(added)

    def reload(self) -> None:
        with self._lock:
            self._refresh()

    def records(self) -> List[ResourceRecord]:
        with self._lock:
            self._refresh()
            return list(self._records)

    def holder_of(self, requester_id: str) -> Optional[ResourceRecord]:
        with self._lock:
            self._refresh()
            for record in self._records:
                if record.claimant_id == requester_id:
                    return record
        return None

    def stats(self) -> LedgerStats:
        with self._lock:
            self._refresh()
            claimed = sum(1 for record in self._records if record.claimed)
            return LedgerStats(total=len(self._records), claimed=claimed)

    def _refresh(self) -> None:
        # other processes (the CLI) may have rewritten the store
        self._records = self._store.read_all()

    def _commit(self, updated: List[ResourceRecord], position: Optional[int] = None) -> None:
        try:
            self._store.write_all(updated)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "ledger write failed; mutation rolled back",
                extra={"ctx_code": "LEDGER_PERSISTENCE_FAILED", "ctx_position": position},
            )
            if isinstance(exc, LedgerPersistenceError):
                raise
            raise LedgerPersistenceError(details={"reason": f"{type(exc).__name__}: {exc}"}) from exc
        self._records = updated
