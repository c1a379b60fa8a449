"""Tests for the Supabase-backed session state store."""

from dataclasses import dataclass, field
from datetime import timedelta

import pytest
from postgrest.exceptions import APIError

from nebenkosten_review.adapters.supabase_state_store import SupabaseSessionStateStore
from nebenkosten_review.domain.jobs import (
    ErrorKind,
    JobFailed,
    JobSucceeded,
    PendingInput,
)
from tests.conftest import FIXED_NOW, analysis_result, make_upload


@dataclass
class FakeResponse:
    data: list[dict[str, object]]
    count: int | None = None


@dataclass
class FakeQuery:
    table: "FakeTable"
    action: str
    payload: object = None
    count: str | None = None
    filters: list = field(default_factory=list)

    def eq(self, column: str, value) -> "FakeQuery":  # type: ignore[no-untyped-def]
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values) -> "FakeQuery":  # type: ignore[no-untyped-def]
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def lt(self, column: str, value) -> "FakeQuery":  # type: ignore[no-untyped-def]
        self.filters.append(
            lambda row: row.get(column) is not None and row[column] < value
        )
        return self

    def limit(self, _count: int) -> "FakeQuery":
        return self

    def execute(self) -> FakeResponse:
        return self.table.run(self)


@dataclass
class FakeTable:
    name: str
    rows: list[dict[str, object]] = field(default_factory=list)
    fail_with: str | None = None

    def select(self, *_columns: str, count: str | None = None) -> FakeQuery:
        return FakeQuery(self, "select", count=count)

    def insert(self, payload: dict[str, object]) -> FakeQuery:
        return FakeQuery(self, "insert", payload=payload)

    def upsert(self, payload: dict[str, object], on_conflict: str = "") -> FakeQuery:
        return FakeQuery(self, "upsert", payload=payload)

    def update(self, payload: dict[str, object]) -> FakeQuery:
        return FakeQuery(self, "update", payload=payload)

    def delete(self) -> FakeQuery:
        return FakeQuery(self, "delete")

    def run(self, query: FakeQuery) -> FakeResponse:
        if self.fail_with is not None:
            raise APIError({"code": self.fail_with, "message": "failed"})
        matching = [
            row for row in self.rows if all(check(row) for check in query.filters)
        ]
        if query.action == "select":
            return FakeResponse(data=[dict(row) for row in matching], count=len(matching))
        if query.action in {"insert", "upsert"}:
            row = dict(query.payload)
            existing = [item for item in self.rows if item["session_id"] == row["session_id"]]
            if existing and query.action == "insert":
                raise APIError({"code": "23505", "message": "duplicate key value"})
            for item in existing:
                self.rows.remove(item)
            self.rows.append(row)
            return FakeResponse(data=[row])
        if query.action == "update":
            for row in matching:
                row.update(query.payload)
            return FakeResponse(data=matching)
        for row in matching:
            self.rows.remove(row)
        return FakeResponse(data=matching)


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]


def _pending(minutes_ago: int = 0) -> PendingInput:
    return PendingInput(
        files=(
            make_upload(content=b"\x89PNG-bytes"),
            make_upload("seite.pdf", "application/pdf", b"%PDF-1.7"),
        ),
        created_at=FIXED_NOW - timedelta(minutes=minutes_ago),
        email="mieter@example.de",
        plan="standard",
        floor_area_m2=72.5,
        amount_cents=399,
    )


def test_pending_input_round_trips_binary_files() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())
    pending = _pending()

    store.put_pending("cs_1", pending)

    assert store.get_pending("cs_1") == pending
    assert store.get_pending("cs_other") is None


def test_try_mark_active_maps_unique_violation_to_refusal() -> None:
    client = FakeSupabaseClient()
    store = SupabaseSessionStateStore(client)
    store.settle(
        "cs_1",
        JobFailed(message="x", kind=ErrorKind.ANALYSIS_FAILED, completed_at=FIXED_NOW),
    )

    assert store.try_mark_active("cs_1") is True
    assert store.try_mark_active("cs_1") is False
    assert store.is_active("cs_1")
    assert store.get_completed("cs_1") is None


def test_other_api_errors_propagate() -> None:
    client = FakeSupabaseClient()
    client.table("analysis_active").fail_with = "42P01"
    store = SupabaseSessionStateStore(client)

    with pytest.raises(APIError):
        store.try_mark_active("cs_1")


def test_settle_stores_result_and_clears_session() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())
    store.put_pending("cs_1", _pending())
    store.try_mark_active("cs_1")
    result = analysis_result()

    store.settle("cs_1", JobSucceeded(result=result, completed_at=FIXED_NOW))

    record = store.get_completed("cs_1")
    assert isinstance(record, JobSucceeded)
    assert record.result.to_payload() == result.to_payload()
    assert record.completed_at == FIXED_NOW
    assert store.get_pending("cs_1") is None
    assert not store.is_active("cs_1")


def test_settle_clears_active_flag_when_result_write_fails() -> None:
    client = FakeSupabaseClient()
    store = SupabaseSessionStateStore(client)
    store.put_pending("cs_1", _pending())
    store.try_mark_active("cs_1")
    client.table("analysis_results").fail_with = "08006"

    record = JobSucceeded(result=analysis_result(), completed_at=FIXED_NOW)

    with pytest.raises(APIError):
        store.settle("cs_1", record)

    assert not store.is_active("cs_1")


def test_failed_record_round_trips() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())
    failed = JobFailed(
        message="Dokument unvollständig.",
        kind=ErrorKind.VALIDATION_INCOMPLETE,
        completed_at=FIXED_NOW,
        refunded=True,
    )

    store.settle("cs_1", failed)

    assert store.get_completed("cs_1") == failed


def test_refund_claim_is_single_use() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())

    assert store.claim_refund("cs_1", FIXED_NOW) is True
    assert store.claim_refund("cs_1", FIXED_NOW) is False
    store.record_refund("cs_1", True, FIXED_NOW)

    refund = store.get_refund("cs_1")
    assert refund is not None
    assert refund.issued is True
    assert refund.recorded_at == FIXED_NOW


def test_sweep_keeps_active_fresh_and_refund_entries() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())
    store.put_pending("stale", _pending(minutes_ago=40))
    store.put_pending("running", _pending(minutes_ago=40))
    store.put_pending("fresh", _pending(minutes_ago=1))
    store.try_mark_active("running")
    store.settle(
        "old_result",
        JobSucceeded(
            result=analysis_result(), completed_at=FIXED_NOW - timedelta(minutes=90)
        ),
    )
    store.claim_refund("old_refund", FIXED_NOW - timedelta(minutes=90))

    evicted = store.sweep(FIXED_NOW, timedelta(minutes=30), timedelta(minutes=60))

    assert evicted == 2
    assert store.get_pending("stale") is None
    assert store.get_pending("running") is not None
    assert store.get_pending("fresh") is not None
    assert store.get_completed("old_result") is None
    assert store.get_refund("old_refund") is not None


def test_snapshot_counts_rows() -> None:
    store = SupabaseSessionStateStore(FakeSupabaseClient())
    store.put_pending("cs_1", _pending())
    store.put_pending("cs_2", _pending())
    store.try_mark_active("cs_1")

    snapshot = store.snapshot()

    assert snapshot.pending == 2
    assert snapshot.active == 1
    assert snapshot.completed == 0
    assert snapshot.refunds == 0
