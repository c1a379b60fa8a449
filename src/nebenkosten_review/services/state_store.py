"""Session state store for pending inputs, active jobs and results."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from nebenkosten_review.domain.jobs import (
    Active,
    CompletedRecord,
    Done,
    Failed,
    JobFailed,
    JobState,
    JobSucceeded,
    NoJob,
    Pending,
    PendingInput,
    RefundRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateSnapshot:
    """Entry counts per map, for monitoring."""

    pending: int
    active: int
    completed: int
    refunds: int


class SessionStateStore(Protocol):
    """Storage interface for per-session job state.

    All methods are synchronous so that callers can combine them without a
    suspension point in between.
    """

    def get_pending(self, session_id: str) -> PendingInput | None:
        """Return the stored pending input, if present."""

    def put_pending(self, session_id: str, pending: PendingInput) -> None:
        """Store pending input, replacing any previous one."""

    def is_active(self, session_id: str) -> bool:
        """Return true while a job runs for the session."""

    def try_mark_active(self, session_id: str) -> bool:
        """Atomically mark the session active; false if it already was."""

    def get_completed(self, session_id: str) -> CompletedRecord | None:
        """Return the terminal record, if present."""

    def settle(self, session_id: str, record: CompletedRecord | None) -> None:
        """Store the terminal record, clear the active flag, drop pending input."""

    def reset(self, session_id: str, pending: PendingInput) -> None:
        """Drop previous results and store fresh pending input."""

    def claim_refund(self, session_id: str, now: datetime) -> bool:
        """Atomically claim the single refund attempt for a session."""

    def record_refund(self, session_id: str, issued: bool, now: datetime) -> None:
        """Record the outcome of the claimed refund attempt."""

    def get_refund(self, session_id: str) -> RefundRecord | None:
        """Return the refund marker, if present."""

    def sweep(
        self, now: datetime, pending_ttl: timedelta, completed_ttl: timedelta
    ) -> int:
        """Evict expired pending inputs and results; return evicted count.

        Refund markers are never evicted, so a session is refunded at most once
        for its whole lifetime.
        """

    def snapshot(self) -> StateSnapshot:
        """Return entry counts."""


@dataclass
class InMemorySessionStateStore(SessionStateStore):
    """Process-local state store backed by dictionaries."""

    _pending: dict[str, PendingInput] = field(default_factory=dict)
    _active: set[str] = field(default_factory=set)
    _completed: dict[str, CompletedRecord] = field(default_factory=dict)
    _refunds: dict[str, RefundRecord] = field(default_factory=dict)

    def get_pending(self, session_id: str) -> PendingInput | None:
        return self._pending.get(session_id)

    def put_pending(self, session_id: str, pending: PendingInput) -> None:
        self._pending[session_id] = pending

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def try_mark_active(self, session_id: str) -> bool:
        if session_id in self._active:
            return False
        self._active.add(session_id)
        self._completed.pop(session_id, None)
        return True

    def get_completed(self, session_id: str) -> CompletedRecord | None:
        return self._completed.get(session_id)

    def settle(self, session_id: str, record: CompletedRecord | None) -> None:
        self._active.discard(session_id)
        self._pending.pop(session_id, None)
        if record is not None:
            self._completed[session_id] = record

    def reset(self, session_id: str, pending: PendingInput) -> None:
        self._completed.pop(session_id, None)
        self._pending[session_id] = pending

    def claim_refund(self, session_id: str, now: datetime) -> bool:
        if session_id in self._refunds:
            return False
        self._refunds[session_id] = RefundRecord(issued=False, recorded_at=now)
        return True

    def record_refund(self, session_id: str, issued: bool, now: datetime) -> None:
        self._refunds[session_id] = RefundRecord(issued=issued, recorded_at=now)

    def get_refund(self, session_id: str) -> RefundRecord | None:
        return self._refunds.get(session_id)

    def sweep(
        self, now: datetime, pending_ttl: timedelta, completed_ttl: timedelta
    ) -> int:
        expired_pending = [
            key
            for key, pending in self._pending.items()
            if key not in self._active and now - pending.created_at > pending_ttl
        ]
        expired_completed = [
            key
            for key, record in self._completed.items()
            if now - record.completed_at > completed_ttl
        ]
        for key in expired_pending:
            del self._pending[key]
        for key in expired_completed:
            del self._completed[key]
        return len(expired_pending) + len(expired_completed)

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            pending=len(self._pending),
            active=len(self._active),
            completed=len(self._completed),
            refunds=len(self._refunds),
        )


def current_state(store: SessionStateStore, session_id: str) -> JobState:
    """Fold the store entries for a session into a single job state."""
    if store.is_active(session_id):
        return Active()
    record = store.get_completed(session_id)
    if isinstance(record, JobSucceeded):
        return Done(record)
    if isinstance(record, JobFailed):
        return Failed(record)
    pending = store.get_pending(session_id)
    if pending is not None:
        return Pending(pending)
    return NoJob()


@dataclass
class StateSweeper:
    """Periodically evicts expired entries from a state store."""

    store: SessionStateStore
    pending_ttl: timedelta
    completed_ttl: timedelta
    interval_seconds: float
    now: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    def sweep_once(self) -> int:
        """Run a single eviction pass."""
        evicted = self.store.sweep(self.now(), self.pending_ttl, self.completed_ttl)
        if evicted:
            logger.info("Evicted expired session state", extra={"count": evicted})
        return evicted

    async def run_forever(self) -> None:
        """Sweep on a fixed interval until cancelled."""
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("State sweep failed")
