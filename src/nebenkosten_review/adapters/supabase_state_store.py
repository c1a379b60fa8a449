"""Supabase-backed session state store."""

import base64
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from postgrest.exceptions import APIError
from supabase import Client

from nebenkosten_review.domain.analysis import AnalysisResult
from nebenkosten_review.domain.jobs import (
    CompletedRecord,
    ErrorKind,
    JobFailed,
    JobSucceeded,
    PendingInput,
    RefundRecord,
)
from nebenkosten_review.domain.uploads import UploadedFile
from nebenkosten_review.services.state_store import SessionStateStore, StateSnapshot

_UNIQUE_VIOLATION = "23505"
_PENDING = "analysis_pending"
_ACTIVE = "analysis_active"
_RESULTS = "analysis_results"
_REFUNDS = "analysis_refunds"


@dataclass
class SupabaseSessionStateStore(SessionStateStore):
    """Supabase implementation of the session state store.

    Active flags and refund claims rely on the primary key of their tables,
    so a second insert for the same session fails with a unique violation.
    """

    client: Client

    def get_pending(self, session_id: str) -> PendingInput | None:
        response = (
            self.client.table(_PENDING)
            .select("*")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return pending_from_row(response.data[0])

    def put_pending(self, session_id: str, pending: PendingInput) -> None:
        self.client.table(_PENDING).upsert(
            pending_to_row(session_id, pending), on_conflict="session_id"
        ).execute()

    def is_active(self, session_id: str) -> bool:
        response = (
            self.client.table(_ACTIVE)
            .select("session_id")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def try_mark_active(self, session_id: str) -> bool:
        if not self._insert_unique(
            _ACTIVE, {"session_id": session_id, "created_at": _utcnow_iso()}
        ):
            return False
        self.client.table(_RESULTS).delete().eq("session_id", session_id).execute()
        return True

    def get_completed(self, session_id: str) -> CompletedRecord | None:
        response = (
            self.client.table(_RESULTS)
            .select("*")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return completed_from_row(response.data[0])

    def settle(self, session_id: str, record: CompletedRecord | None) -> None:
        try:
            if record is not None:
                self.client.table(_RESULTS).upsert(
                    completed_to_row(session_id, record), on_conflict="session_id"
                ).execute()
            self.client.table(_PENDING).delete().eq("session_id", session_id).execute()
        finally:
            self.client.table(_ACTIVE).delete().eq("session_id", session_id).execute()

    def reset(self, session_id: str, pending: PendingInput) -> None:
        self.client.table(_RESULTS).delete().eq("session_id", session_id).execute()
        self.put_pending(session_id, pending)

    def claim_refund(self, session_id: str, now: datetime) -> bool:
        return self._insert_unique(
            _REFUNDS,
            {"session_id": session_id, "issued": False, "recorded_at": now.isoformat()},
        )

    def record_refund(self, session_id: str, issued: bool, now: datetime) -> None:
        self.client.table(_REFUNDS).update(
            {"issued": issued, "recorded_at": now.isoformat()}
        ).eq("session_id", session_id).execute()

    def get_refund(self, session_id: str) -> RefundRecord | None:
        response = (
            self.client.table(_REFUNDS)
            .select("issued, recorded_at")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return RefundRecord(
            issued=bool(row["issued"]),
            recorded_at=datetime.fromisoformat(str(row["recorded_at"])),
        )

    def sweep(
        self, now: datetime, pending_ttl: timedelta, completed_ttl: timedelta
    ) -> int:
        active = {
            row["session_id"]
            for row in self.client.table(_ACTIVE).select("session_id").execute().data
            or []
        }
        stale = (
            self.client.table(_PENDING)
            .select("session_id")
            .lt("created_at", (now - pending_ttl).isoformat())
            .execute()
        )
        expired_pending = [
            row["session_id"]
            for row in stale.data or []
            if row["session_id"] not in active
        ]
        evicted = 0
        if expired_pending:
            deleted = (
                self.client.table(_PENDING)
                .delete()
                .in_("session_id", expired_pending)
                .execute()
            )
            evicted += len(deleted.data or [])
        completed_cutoff = (now - completed_ttl).isoformat()
        deleted = (
            self.client.table(_RESULTS)
            .delete()
            .lt("completed_at", completed_cutoff)
            .execute()
        )
        evicted += len(deleted.data or [])
        return evicted

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            pending=self._count(_PENDING),
            active=self._count(_ACTIVE),
            completed=self._count(_RESULTS),
            refunds=self._count(_REFUNDS),
        )

    def _insert_unique(self, table: str, row: dict[str, object]) -> bool:
        try:
            self.client.table(table).insert(row).execute()
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                return False
            raise
        return True

    def _count(self, table: str) -> int:
        response = self.client.table(table).select("session_id", count="exact").execute()
        return response.count or 0


def pending_to_row(session_id: str, pending: PendingInput) -> dict[str, object]:
    """Serialize pending input into a table row."""
    return {
        "session_id": session_id,
        "files_json": [
            {
                "filename": item.filename,
                "media_type": item.media_type,
                "content": base64.b64encode(item.content).decode("utf-8"),
            }
            for item in pending.files
        ],
        "email": pending.email,
        "plan": pending.plan,
        "floor_area_m2": pending.floor_area_m2,
        "amount_cents": pending.amount_cents,
        "created_at": pending.created_at.isoformat(),
    }


def pending_from_row(row: dict[str, object]) -> PendingInput:
    """Deserialize pending input from a table row."""
    files = tuple(
        UploadedFile(
            content=base64.b64decode(item["content"]),
            media_type=item["media_type"],
            filename=item["filename"],
        )
        for item in row.get("files_json") or []
    )
    floor_area = row.get("floor_area_m2")
    amount = row.get("amount_cents")
    return PendingInput(
        files=files,
        created_at=datetime.fromisoformat(str(row["created_at"])),
        email=row.get("email"),
        plan=row.get("plan"),
        floor_area_m2=float(floor_area) if floor_area is not None else None,
        amount_cents=int(amount) if amount is not None else None,
    )


def completed_to_row(session_id: str, record: CompletedRecord) -> dict[str, object]:
    """Serialize a terminal record into a table row."""
    if isinstance(record, JobSucceeded):
        return {
            "session_id": session_id,
            "status": "done",
            "result_json": record.result.to_payload(),
            "error_message": None,
            "error_kind": None,
            "refunded": None,
            "completed_at": record.completed_at.isoformat(),
        }
    return {
        "session_id": session_id,
        "status": "error",
        "result_json": None,
        "error_message": record.message,
        "error_kind": record.kind.value,
        "refunded": record.refunded,
        "completed_at": record.completed_at.isoformat(),
    }


def completed_from_row(row: dict[str, object]) -> CompletedRecord:
    """Deserialize a terminal record from a table row."""
    completed_at = datetime.fromisoformat(str(row["completed_at"]))
    if row["status"] == "done":
        return JobSucceeded(
            result=AnalysisResult.model_validate(row["result_json"]),
            completed_at=completed_at,
        )
    return JobFailed(
        message=str(row["error_message"]),
        kind=ErrorKind(row["error_kind"]),
        completed_at=completed_at,
        refunded=row.get("refunded"),
    )


def _utcnow_iso() -> str:
    return datetime.now(tz=UTC).isoformat()
