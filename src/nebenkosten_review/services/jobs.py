"""Job orchestration for paid statement analyses.

A session moves through ``NoJob -> Pending -> Active -> Done | Failed``.
Polling drives ``Pending -> Active`` once the payment is confirmed; the
background job always settles into a terminal record, and a paid customer may
restart from ``Pending`` by uploading new files.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from nebenkosten_review.domain.analysis import AnalysisResult, ValidationStatus
from nebenkosten_review.domain.errors import (
    AnalysisServiceError,
    ServiceErrorKind,
    UploadRejectedError,
)
from nebenkosten_review.domain.jobs import (
    Active,
    CheckoutStarted,
    CompletedRecord,
    Done,
    ErrorKind,
    Failed,
    JobFailed,
    JobSucceeded,
    NoJob,
    Pending,
    PendingInput,
    StatusReport,
)
from nebenkosten_review.domain.uploads import ALLOWED_MEDIA_TYPES, UploadedFile
from nebenkosten_review.services.analysis import AnalysisService
from nebenkosten_review.services.notifications import ResultNotifier
from nebenkosten_review.services.payments import PaymentGateway
from nebenkosten_review.services.reports import ReportRenderer
from nebenkosten_review.services.state_store import SessionStateStore, current_state

logger = logging.getLogger(__name__)

VALIDATION_MESSAGES: dict[ValidationStatus, str] = {
    ValidationStatus.UNREADABLE: (
        "Das Dokument konnte leider nicht gelesen werden. Bitte laden Sie "
        "deutlichere Fotos oder ein besseres PDF hoch."
    ),
    ValidationStatus.NOT_A_STATEMENT: (
        "Das hochgeladene Dokument scheint keine Nebenkostenabrechnung zu sein."
    ),
    ValidationStatus.INCOMPLETE: (
        "Das Dokument scheint unvollständig zu sein. Bitte laden Sie alle "
        "Seiten Ihrer Abrechnung hoch."
    ),
}

FAILURE_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CONFIG_ERROR: (
        "Interner Konfigurationsfehler. Bitte kontaktieren Sie den Support."
    ),
    ErrorKind.RATE_LIMIT: (
        "Unser System ist gerade überlastet. Bitte versuchen Sie es in wenigen "
        "Minuten erneut."
    ),
    ErrorKind.ANALYSIS_FAILED: (
        "Die Analyse konnte leider nicht abgeschlossen werden. Bitte versuchen "
        "Sie es in Kürze erneut."
    ),
    ErrorKind.FILES_EXPIRED: (
        "Ihre Dateien konnten nicht mehr gefunden werden. Bitte laden Sie Ihre "
        "Abrechnung kostenlos erneut hoch."
    ),
    ErrorKind.PAYMENT_INCOMPLETE: "Zahlung nicht abgeschlossen.",
    ErrorKind.STATUS_UNAVAILABLE: (
        "Fehler bei der Abfrage. Bitte versuchen Sie es erneut."
    ),
}

_GENERIC_VALIDATION_MESSAGE = "Dokument konnte nicht verarbeitet werden."
_BYTES_PER_MB = 1024 * 1024


def classify_failure(exc: Exception) -> ErrorKind:
    """Map an analysis failure to the client-facing error kind."""
    if isinstance(exc, AnalysisServiceError):
        if exc.kind == ServiceErrorKind.UNAUTHORIZED:
            return ErrorKind.CONFIG_ERROR
        if exc.kind == ServiceErrorKind.RATE_LIMITED:
            return ErrorKind.RATE_LIMIT
    return ErrorKind.ANALYSIS_FAILED


def format_euro(amount_cents: int) -> str:
    """Format cents as a German euro amount, e.g. ``3,99 €``."""
    euros, cents = divmod(amount_cents, 100)
    return f"{euros},{cents:02d} €"


@dataclass
class AnalysisJobService:
    """State machine driving a paid session from upload to result."""

    state_store: SessionStateStore
    payments: PaymentGateway
    analysis: AnalysisService
    report_renderer: ReportRenderer
    notifier: ResultNotifier | None = None
    plan_prices: dict[str, int] = field(default_factory=lambda: {"standard": 399})
    default_plan: str = "standard"
    currency: str = "eur"
    product_name: str = "Nebenkostenabrechnung Prüfung"
    max_files: int = 5
    max_file_bytes: int = 10 * _BYTES_PER_MB
    now: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    def validate_upload(self, files: Sequence[UploadedFile]) -> None:
        """Reject empty, oversized or unsupported uploads."""
        if not files:
            raise UploadRejectedError("Keine Datei hochgeladen.")
        if len(files) > self.max_files:
            raise UploadRejectedError(f"Maximal {self.max_files} Dateien erlaubt.")
        for upload in files:
            if upload.media_type not in ALLOWED_MEDIA_TYPES:
                raise UploadRejectedError("Nur PDF, JPG oder PNG erlaubt.")
            if upload.size == 0:
                raise UploadRejectedError(f"Die Datei {upload.filename} ist leer.")
            if upload.size > self.max_file_bytes:
                limit_mb = self.max_file_bytes // _BYTES_PER_MB
                raise UploadRejectedError(
                    f"Die Datei {upload.filename} ist größer als {limit_mb} MB."
                )

    async def start_checkout(  # noqa: PLR0913
        self,
        files: Sequence[UploadedFile],
        *,
        base_url: str,
        email: str | None = None,
        plan: str | None = None,
        floor_area_m2: float | None = None,
    ) -> CheckoutStarted:
        """Create a checkout and store the upload as pending input."""
        self.validate_upload(files)
        plan_id = plan or self.default_plan
        amount_cents = self.plan_prices.get(plan_id)
        if amount_cents is None:
            raise UploadRejectedError("Unbekannter Tarif.")
        if floor_area_m2 is not None and floor_area_m2 <= 0:
            raise UploadRejectedError("Die Wohnfläche muss größer als 0 sein.")

        metadata = {"plan": plan_id}
        if floor_area_m2 is not None:
            metadata["floor_area_m2"] = f"{floor_area_m2:g}"
        base = base_url.rstrip("/")
        checkout = await self.payments.create_checkout(
            amount_cents=amount_cents,
            currency=self.currency,
            product_name=self.product_name,
            success_url=f"{base}/?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/#upload",
            customer_email=email,
            metadata=metadata,
        )
        self.state_store.put_pending(
            checkout.id,
            PendingInput(
                files=tuple(files),
                created_at=self.now(),
                email=email,
                plan=plan_id,
                floor_area_m2=floor_area_m2,
                amount_cents=amount_cents,
            ),
        )
        logger.info(
            "Checkout session created",
            extra={
                "session_id": checkout.id,
                "files": len(files),
                "has_email": email is not None,
                "plan": plan_id,
            },
        )
        return CheckoutStarted(session_id=checkout.id, redirect_url=checkout.url)

    async def poll_status(self, session_id: str) -> StatusReport:
        """Report the session state, starting the job on the first paid poll."""
        try:
            return await self._poll(session_id)
        except Exception:
            logger.exception("Status check failed", extra={"session_id": session_id})
            return _error(ErrorKind.STATUS_UNAVAILABLE)

    async def _poll(self, session_id: str) -> StatusReport:
        known = self._report_known_state(session_id)
        if known is not None:
            return known

        try:
            payment = await self.payments.get_payment_status(session_id)
        except Exception:
            logger.exception(
                "Payment status lookup failed", extra={"session_id": session_id}
            )
            return _error(ErrorKind.STATUS_UNAVAILABLE)
        if not payment.is_paid:
            return _error(ErrorKind.PAYMENT_INCOMPLETE)

        # Another poll may have moved the session while the lookup was pending.
        state = current_state(self.state_store, session_id)
        if isinstance(state, NoJob):
            return _error(ErrorKind.FILES_EXPIRED)
        if isinstance(state, Pending):
            self.launch(session_id)
            return StatusReport.processing()
        return self._report_known_state(session_id) or StatusReport.processing()

    def _report_known_state(self, session_id: str) -> StatusReport | None:
        state = current_state(self.state_store, session_id)
        if isinstance(state, Done):
            return StatusReport(status="done", result=state.record.result)
        if isinstance(state, Failed):
            record = state.record
            return StatusReport.error(record.message, record.kind, record.refunded)
        if isinstance(state, Active):
            return StatusReport.processing()
        return None

    def launch(self, session_id: str) -> bool:
        """Start the background job unless one is already running.

        The active check-and-set and the task creation happen without a
        suspension point, so concurrent callers launch at most one job.
        """
        pending = self.state_store.get_pending(session_id)
        if pending is None:
            return False
        if not self.state_store.try_mark_active(session_id):
            return False
        logger.info("Starting analysis job", extra={"session_id": session_id})
        self._spawn(self._run_job(session_id, pending))
        return True

    async def retry_with_new_upload(
        self, session_id: str, files: Sequence[UploadedFile]
    ) -> StatusReport:
        """Replace the input of a paid session and analyze it again for free."""
        self.validate_upload(files)
        try:
            payment = await self.payments.get_payment_status(session_id)
        except Exception:
            logger.exception(
                "Payment status lookup failed", extra={"session_id": session_id}
            )
            return _error(ErrorKind.STATUS_UNAVAILABLE)
        if not payment.is_paid:
            logger.info("Retry rejected, unpaid", extra={"session_id": session_id})
            return _error(ErrorKind.PAYMENT_INCOMPLETE)
        if self.state_store.is_active(session_id):
            return StatusReport.processing()

        self.state_store.reset(
            session_id,
            PendingInput(
                files=tuple(files),
                created_at=self.now(),
                email=payment.customer_email,
                plan=payment.metadata.get("plan"),
                floor_area_m2=_parse_floor_area(payment.metadata.get("floor_area_m2")),
                amount_cents=payment.amount_total,
            ),
        )
        logger.info(
            "Retrying analysis with new upload",
            extra={"session_id": session_id, "files": len(files)},
        )
        self.launch(session_id)
        return StatusReport.processing()

    async def download_report(self, session_id: str) -> bytes | None:
        """Return the PDF report for a finished analysis."""
        record = self.state_store.get_completed(session_id)
        if not isinstance(record, JobSucceeded):
            return None
        return await asyncio.to_thread(self.report_renderer.render, record.result)

    async def drain(self) -> None:
        """Wait until running jobs and notifications have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_job(self, session_id: str, pending: PendingInput) -> None:
        record: CompletedRecord | None = None
        try:
            record = await self._execute(session_id, pending)
        except Exception as exc:
            record = self._infra_failure(session_id, exc)
        finally:
            settled = self._settle(session_id, record)

        if (
            settled
            and isinstance(record, JobSucceeded)
            and pending.email
            and self.notifier is not None
        ):
            self._spawn(
                self._notify(self.notifier, session_id, pending.email, record.result)
            )

    def _settle(self, session_id: str, record: CompletedRecord | None) -> bool:
        try:
            self.state_store.settle(session_id, record)
        except Exception:
            logger.exception(
                "Settling job state failed", extra={"session_id": session_id}
            )
            return False
        return True

    async def _execute(self, session_id: str, pending: PendingInput) -> CompletedRecord:
        result = await self.analysis.analyze(pending.files, pending.floor_area_m2)
        if result.validation != ValidationStatus.OK:
            return await self._validation_failure(session_id, pending, result)
        logger.info(
            "Analysis complete",
            extra={
                "session_id": session_id,
                "errors": result.error_count,
                "warnings": result.warning_count,
            },
        )
        return JobSucceeded(result=result, completed_at=self.now())

    async def _validation_failure(
        self, session_id: str, pending: PendingInput, result: AnalysisResult
    ) -> JobFailed:
        message = VALIDATION_MESSAGES.get(
            result.validation, _GENERIC_VALIDATION_MESSAGE
        )
        if result.validation_reason:
            message = f"{message} {result.validation_reason}"
        refunded = await self._refund_once(session_id)
        if refunded:
            if pending.amount_cents is not None:
                amount = format_euro(pending.amount_cents)
                message += f" Ihr Geld ({amount}) wurde automatisch zurückerstattet."
            else:
                message += " Ihr Geld wurde automatisch zurückerstattet."
        logger.info(
            "Document validation failed",
            extra={
                "session_id": session_id,
                "validation": result.validation.value,
                "reason": result.validation_reason,
                "refunded": refunded,
            },
        )
        return JobFailed(
            message=message,
            kind=ErrorKind.for_validation(result.validation),
            completed_at=self.now(),
            refunded=refunded,
        )

    async def _refund_once(self, session_id: str) -> bool:
        if not self.state_store.claim_refund(session_id, self.now()):
            prior = self.state_store.get_refund(session_id)
            logger.info("Refund already attempted", extra={"session_id": session_id})
            return prior.issued if prior else False
        try:
            issued = await self.payments.issue_refund(session_id)
        except Exception:
            logger.exception("Auto-refund failed", extra={"session_id": session_id})
            issued = False
        self.state_store.record_refund(session_id, issued, self.now())
        return issued

    def _infra_failure(self, session_id: str, exc: Exception) -> JobFailed:
        kind = classify_failure(exc)
        logger.error(
            "Analysis failed",
            exc_info=exc,
            extra={
                "session_id": session_id,
                "error_kind": kind.value,
                "status_code": getattr(exc, "status_code", None),
            },
        )
        return JobFailed(
            message=FAILURE_MESSAGES[kind], kind=kind, completed_at=self.now()
        )

    async def _notify(
        self,
        notifier: ResultNotifier,
        session_id: str,
        email: str,
        result: AnalysisResult,
    ) -> None:
        try:
            await notifier.notify(email, result)
        except Exception:
            logger.exception("Report email failed", extra={"session_id": session_id})

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _error(kind: ErrorKind) -> StatusReport:
    return StatusReport.error(FAILURE_MESSAGES[kind], kind)


def _parse_floor_area(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
