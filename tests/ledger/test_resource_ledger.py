from __future__ import annotations

import concurrent.futures

import pytest

from linkdrop.errors import AlreadyClaimed, LedgerPersistenceError, PoolExhausted
from linkdrop.ledger import ClaimStatus, MemoryStore, ReleaseStatus, ResourceLedger, ResourceRecord
from tests.conftest import FlakyStore, make_records


def test_claim_takes_lowest_unclaimed_record(ledger: ResourceLedger, store: FlakyStore) -> None:
    result = ledger.claim("alice")

    assert result.status is ClaimStatus.CLAIMED
    assert result.resource_value == "https://example.test/link/1"
    assert store.read_all()[0] == ResourceRecord("https://example.test/link/1", "alice")
    assert store.writes == 1


def test_idempotent_replay_returns_same_value(ledger: ResourceLedger, store: FlakyStore) -> None:
    first = ledger.claim("alice")
    second = ledger.claim("alice")

    assert second.status is ClaimStatus.ALREADY_CLAIMED
    assert second.resource_value == first.resource_value
    assert ledger.stats().claimed == 1
    assert store.writes == 1


def test_exhausted_pool_never_mutates() -> None:
    store = FlakyStore([ResourceRecord("only", "bob")])
    ledger = ResourceLedger(store)

    for requester in ("alice", "carol", "alice"):
        result = ledger.claim(requester)
        assert result.status is ClaimStatus.POOL_EXHAUSTED
        assert result.resource_value is None

    assert store.writes == 0
    assert ledger.records() == [ResourceRecord("only", "bob")]


def test_empty_pool_is_exhausted() -> None:
    ledger = ResourceLedger(FlakyStore())

    assert ledger.claim("alice").status is ClaimStatus.POOL_EXHAUSTED


def test_release_restores_availability(ledger: ResourceLedger) -> None:
    held = ledger.claim("alice").resource_value

    released = ledger.release("alice")
    again = ledger.claim("bob")

    assert released.status is ReleaseStatus.RELEASED
    assert released.resource_value == held
    assert again.resource_value == held
    assert ledger.holder_of("alice") is None
    assert ledger.holder_of("bob") == ResourceRecord(held, "bob")


def test_release_keeps_positions(ledger: ResourceLedger) -> None:
    ledger.claim("alice")
    ledger.claim("bob")
    ledger.release("alice")

    values = [record.resource_value for record in ledger.records()]
    assert values == [f"https://example.test/link/{index}" for index in (1, 2, 3)]
    assert [record.claimant_id for record in ledger.records()] == [None, "bob", None]


def test_release_without_claim_is_not_found(ledger: ResourceLedger, store: FlakyStore) -> None:
    result = ledger.release("nobody")

    assert result.status is ReleaseStatus.NOT_FOUND
    assert store.writes == 0


def test_failed_write_rolls_back_claim(ledger: ResourceLedger, store: FlakyStore) -> None:
    store.fail_writes = True

    with pytest.raises(LedgerPersistenceError):
        ledger.claim("alice")

    assert ledger.holder_of("alice") is None
    assert ledger.stats().claimed == 0

    store.fail_writes = False
    assert ledger.claim("alice").resource_value == "https://example.test/link/1"


def test_failed_write_rolls_back_release(ledger: ResourceLedger, store: FlakyStore) -> None:
    ledger.claim("alice")
    store.fail_writes = True

    with pytest.raises(LedgerPersistenceError):
        ledger.release("alice")

    assert ledger.holder_of("alice") is not None


def test_concurrent_claims_never_double_allocate() -> None:
    store = FlakyStore(make_records(5))
    ledger = ResourceLedger(store)
    requesters = [f"user-{index}" for index in range(40)]

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(ledger.claim, requesters))

    claimed = [result for result in results if result.status is ClaimStatus.CLAIMED]
    exhausted = [result for result in results if result.status is ClaimStatus.POOL_EXHAUSTED]
    assert len(claimed) == 5
    assert len(exhausted) == 35
    assert len({result.resource_value for result in claimed}) == 5
    assert {record.claimant_id for record in store.read_all()} == {result.requester_id for result in claimed}


def test_concurrent_replays_allocate_once() -> None:
    ledger = ResourceLedger(FlakyStore(make_records(5)))

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: ledger.claim("alice"), range(10)))

    assert sum(1 for result in results if result.allocated) == 1
    assert len({result.resource_value for result in results}) == 1
    assert ledger.stats().claimed == 1


def test_load_appends_new_values_only(ledger: ResourceLedger) -> None:
    ledger.claim("alice")
    added = ledger.load(
        [
            ResourceRecord("https://example.test/link/1"),
            ResourceRecord("https://example.test/link/4"),
            ResourceRecord("https://example.test/link/5", "alice"),
            ResourceRecord("https://example.test/link/6", "dave"),
        ]
    )

    assert added == 3
    stats = ledger.stats()
    assert stats.total == 6
    # alice already holds link/1, so the imported claim is dropped
    assert ledger.holder_of("alice").resource_value == "https://example.test/link/1"
    assert ledger.holder_of("dave").resource_value == "https://example.test/link/6"
    assert stats.available == 4


def test_claim_result_raise_for_status(ledger: ResourceLedger) -> None:
    value = ledger.claim("alice").raise_for_status()

    with pytest.raises(AlreadyClaimed) as excinfo:
        ledger.claim("alice").raise_for_status()
    assert excinfo.value.resource_value == value

    exhausted = ResourceLedger(FlakyStore()).claim("bob")
    with pytest.raises(PoolExhausted) as excinfo_pool:
        exhausted.raise_for_status()
    assert excinfo_pool.value.envelope.code == "POOL_EXHAUSTED"


def test_reload_picks_up_external_rewrite(ledger: ResourceLedger, store: FlakyStore) -> None:
    store.write_all([ResourceRecord("fresh")])

    ledger.reload()

    assert ledger.records() == [ResourceRecord("fresh")]
    assert ledger.claim("alice").resource_value == "fresh"


class BrokenStore(MemoryStore):
    def write_all(self, records) -> None:
        raise RuntimeError("backend went away")


def test_foreign_write_errors_roll_back_and_wrap() -> None:
    store = BrokenStore([ResourceRecord("L1"), ResourceRecord("L2", "bob")])
    ledger = ResourceLedger(store)

    with pytest.raises(LedgerPersistenceError) as excinfo:
        ledger.claim("alice")
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert ledger.holder_of("alice") is None

    with pytest.raises(LedgerPersistenceError):
        ledger.release("bob")
    with pytest.raises(LedgerPersistenceError):
        ledger.load([ResourceRecord("L3")])
    assert ledger.records() == [ResourceRecord("L1"), ResourceRecord("L2", "bob")]
