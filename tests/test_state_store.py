"""Tests for the in-memory session state store and sweeper."""

from datetime import timedelta

from nebenkosten_review.domain.jobs import (
    Active,
    Done,
    ErrorKind,
    Failed,
    JobFailed,
    JobSucceeded,
    NoJob,
    Pending,
    PendingInput,
)
from nebenkosten_review.services.state_store import (
    InMemorySessionStateStore,
    StateSweeper,
    current_state,
)
from tests.conftest import FIXED_NOW, analysis_result, make_upload

PENDING_TTL = timedelta(minutes=30)
COMPLETED_TTL = timedelta(minutes=60)


def _pending(minutes_ago: int = 0) -> PendingInput:
    return PendingInput(
        files=(make_upload(),), created_at=FIXED_NOW - timedelta(minutes=minutes_ago)
    )


def test_state_moves_from_pending_to_active_to_done() -> None:
    store = InMemorySessionStateStore()
    assert isinstance(current_state(store, "cs_1"), NoJob)

    store.put_pending("cs_1", _pending())
    assert isinstance(current_state(store, "cs_1"), Pending)

    assert store.try_mark_active("cs_1") is True
    assert isinstance(current_state(store, "cs_1"), Active)

    store.settle("cs_1", JobSucceeded(result=analysis_result(), completed_at=FIXED_NOW))
    state = current_state(store, "cs_1")
    assert isinstance(state, Done)
    assert store.get_pending("cs_1") is None
    assert store.is_active("cs_1") is False


def test_try_mark_active_refuses_second_claim() -> None:
    store = InMemorySessionStateStore()
    store.put_pending("cs_1", _pending())

    assert store.try_mark_active("cs_1") is True
    assert store.try_mark_active("cs_1") is False


def test_active_and_completed_are_exclusive() -> None:
    store = InMemorySessionStateStore()
    store.settle(
        "cs_1",
        JobFailed(message="x", kind=ErrorKind.ANALYSIS_FAILED, completed_at=FIXED_NOW),
    )
    store.reset("cs_1", _pending())

    assert store.try_mark_active("cs_1") is True
    assert store.get_completed("cs_1") is None


def test_settle_without_record_clears_flags() -> None:
    store = InMemorySessionStateStore()
    store.put_pending("cs_1", _pending())
    store.try_mark_active("cs_1")

    store.settle("cs_1", None)

    assert isinstance(current_state(store, "cs_1"), NoJob)


def test_failed_record_is_reported_as_failed() -> None:
    store = InMemorySessionStateStore()
    record = JobFailed(
        message="nope", kind=ErrorKind.RATE_LIMIT, completed_at=FIXED_NOW
    )
    store.settle("cs_1", record)

    state = current_state(store, "cs_1")

    assert isinstance(state, Failed)
    assert state.record == record


def test_refund_can_be_claimed_once() -> None:
    store = InMemorySessionStateStore()

    assert store.claim_refund("cs_1", FIXED_NOW) is True
    assert store.claim_refund("cs_1", FIXED_NOW) is False
    store.record_refund("cs_1", True, FIXED_NOW)

    refund = store.get_refund("cs_1")
    assert refund is not None
    assert refund.issued is True


def test_sweep_evicts_expired_entries_only() -> None:
    store = InMemorySessionStateStore()
    store.put_pending("old", _pending(minutes_ago=31))
    store.put_pending("fresh", _pending(minutes_ago=5))
    store.settle(
        "done_old",
        JobSucceeded(
            result=analysis_result(), completed_at=FIXED_NOW - timedelta(minutes=61)
        ),
    )
    store.settle(
        "done_fresh",
        JobSucceeded(result=analysis_result(), completed_at=FIXED_NOW),
    )

    evicted = store.sweep(FIXED_NOW, PENDING_TTL, COMPLETED_TTL)

    assert evicted == 2
    assert store.get_pending("old") is None
    assert store.get_pending("fresh") is not None
    assert store.get_completed("done_old") is None
    assert store.get_completed("done_fresh") is not None


def test_sweep_keeps_refund_markers() -> None:
    store = InMemorySessionStateStore()
    store.claim_refund("cs_1", FIXED_NOW - timedelta(days=30))
    store.record_refund("cs_1", True, FIXED_NOW - timedelta(days=30))

    evicted = store.sweep(FIXED_NOW, PENDING_TTL, COMPLETED_TTL)

    assert evicted == 0
    assert store.claim_refund("cs_1", FIXED_NOW) is False
    assert store.snapshot().refunds == 1


def test_sweep_never_removes_input_of_active_job() -> None:
    store = InMemorySessionStateStore()
    store.put_pending("running", _pending(minutes_ago=45))
    store.try_mark_active("running")

    store.sweep(FIXED_NOW, PENDING_TTL, COMPLETED_TTL)

    assert store.get_pending("running") is not None
    assert store.is_active("running")


def test_sweeper_uses_configured_ttls() -> None:
    store = InMemorySessionStateStore()
    store.put_pending("old", _pending(minutes_ago=31))
    sweeper = StateSweeper(
        store=store,
        pending_ttl=PENDING_TTL,
        completed_ttl=COMPLETED_TTL,
        interval_seconds=60,
        now=lambda: FIXED_NOW,
    )

    assert sweeper.sweep_once() == 1
    assert store.snapshot().pending == 0
