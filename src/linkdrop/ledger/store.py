"""Backing stores supporting a full read and a full rewrite of the pool."""
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import ContextManager, Iterator, List, Protocol, Sequence

from sqlalchemy import Column, Integer, String, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import ConfigurationError, LedgerPersistenceError
from .models import ResourceRecord

Base = declarative_base()


class BackingStore(Protocol):
    """Durable store for the ordered pool."""

    def read_all(self) -> List[ResourceRecord]:
        """Return every record in stored order."""

    def write_all(self, records: Sequence[ResourceRecord]) -> None:
        """Replace the stored pool; must be durable before returning."""

    def locked(self) -> ContextManager[None]:
        """Exclude other writers for one read-modify-write cycle."""


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive OS lock on ``lock_path`` across processes."""
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(lock_path, "a+b")
    except OSError as exc:
        raise LedgerPersistenceError(details={"path": str(lock_path), "reason": str(exc)}) from exc
    try:
        _acquire(handle)
        try:
            yield
        finally:
            _release(handle)
    finally:
        handle.close()


def _acquire(handle) -> None:
    if os.name == "nt":
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl

        fcntl.flock(handle, fcntl.LOCK_EX)


def _release(handle) -> None:
    if os.name == "nt":
        import msvcrt

        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        except OSError:
            pass
    else:
        import fcntl

        fcntl.flock(handle, fcntl.LOCK_UN)


class MemoryStore:
    def __init__(self, records: Sequence[ResourceRecord] = ()) -> None:
        self._records = list(records)
        self.writes = 0

    def read_all(self) -> List[ResourceRecord]:
        return list(self._records)

    def write_all(self, records: Sequence[ResourceRecord]) -> None:
        self._records = list(records)
        self.writes += 1

    def locked(self) -> ContextManager[None]:
        return nullcontext()


class JsonLinesStore:
    """One JSON object per line, promoted atomically on every rewrite.

    ``locked()`` takes a sibling ``.lock`` file so the server and the CLI
    can share one ledger file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def locked(self) -> ContextManager[None]:
        return file_lock(self.lock_path)

    def read_all(self) -> List[ResourceRecord]:
        if not self.path.exists():
            return []
        records: List[ResourceRecord] = []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                for lineno, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(ResourceRecord.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
                        raise LedgerPersistenceError(
                            f"corrupt ledger line {lineno} in {self.path}",
                            details={"path": str(self.path), "line": lineno},
                        ) from exc
        except OSError as exc:
            raise LedgerPersistenceError(details={"path": str(self.path), "reason": str(exc)}) from exc
        return records

    def write_all(self, records: Sequence[ResourceRecord]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f"{self.path.name}.", suffix=".part", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    for record in records:
                        handle.write(json.dumps(record.to_dict(), ensure_ascii=False))
                        handle.write("\n")
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, self.path)
            finally:
                try:
                    os.remove(tmp_path)
                except FileNotFoundError:
                    pass
        except OSError as exc:
            raise LedgerPersistenceError(details={"path": str(self.path), "reason": str(exc)}) from exc


class ResourceRecordModel(Base):
    __tablename__ = "resource_records"

    position = Column(Integer, primary_key=True)
    resource_value = Column(String(2048), nullable=False)
    claimant_id = Column(String(64), nullable=True, unique=True)


class SQLAlchemyStore:
    def __init__(self, engine: Engine, lock_path: Path | None = None):
        self.engine = engine
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.lock_path = lock_path

    def locked(self) -> ContextManager[None]:
        if self.lock_path is None:
            return nullcontext()
        return file_lock(self.lock_path)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def read_all(self) -> List[ResourceRecord]:
        try:
            with self.session_factory() as session:
                rows = session.execute(
                    select(ResourceRecordModel).order_by(ResourceRecordModel.position)
                ).scalars()
                return [
                    ResourceRecord(resource_value=row.resource_value, claimant_id=row.claimant_id)
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            raise LedgerPersistenceError(details={"reason": str(exc)}) from exc

    def write_all(self, records: Sequence[ResourceRecord]) -> None:
        try:
            with self.session_factory.begin() as session:
                session.execute(delete(ResourceRecordModel))
                session.add_all(
                    ResourceRecordModel(
                        position=index,
                        resource_value=record.resource_value,
                        claimant_id=record.claimant_id,
                    )
                    for index, record in enumerate(records)
                )
        except SQLAlchemyError as exc:
            raise LedgerPersistenceError(details={"reason": str(exc)}) from exc


def create_sqlalchemy_store(url: str = "sqlite:///:memory:") -> SQLAlchemyStore:
    if url in {"sqlite://", "sqlite:///:memory:"}:
        engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, future=True)
    lock_path = None
    # only sqlite files get a lock file; the CLI and the server may share one
    if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        lock_path = Path(engine.url.database + ".lock")
    store = SQLAlchemyStore(engine, lock_path=lock_path)
    store.create_schema()
    return store


def create_store(url: str) -> BackingStore:
    """Build a store from ``memory://``, ``jsonl:///path`` or a SQLAlchemy URL."""

    if url.startswith("memory://"):
        return MemoryStore()
    if url.startswith("jsonl://"):
        path = url[len("jsonl://"):]
        if not path:
            raise ConfigurationError("jsonl ledger url needs a path", details={"url": url})
        return JsonLinesStore(path)
    if "://" not in url:
        raise ConfigurationError("unsupported ledger url", details={"url": url})
    return create_sqlalchemy_store(url)
