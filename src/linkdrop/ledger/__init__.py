"""Resource ledger public API."""

from .ledger import ResourceLedger
from .models import (
    ClaimResult,
    ClaimStatus,
    LedgerStats,
    ReleaseResult,
    ReleaseStatus,
    ResourceRecord,
    parse_legacy_lines,
)
from .store import (
    BackingStore,
    JsonLinesStore,
    MemoryStore,
    SQLAlchemyStore,
    create_sqlalchemy_store,
    create_store,
)

__all__ = [
    "BackingStore",
    "ClaimResult",
    "ClaimStatus",
    "JsonLinesStore",
    "LedgerStats",
    "MemoryStore",
    "ReleaseResult",
    "ReleaseStatus",
    "ResourceLedger",
    "ResourceRecord",
    "SQLAlchemyStore",
    "create_sqlalchemy_store",
    "create_store",
    "parse_legacy_lines",
]
