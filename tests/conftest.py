"""Shared test fixtures."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from nebenkosten_review.config import Settings
from nebenkosten_review.containers import AppContainer
from nebenkosten_review.domain.analysis import AnalysisResult
from nebenkosten_review.domain.uploads import ContentPart, TextPart, UploadedFile
from nebenkosten_review.services.analysis import (
    AnalysisClient,
    AnalysisService,
    ModelResponse,
)
from nebenkosten_review.services.jobs import AnalysisJobService
from nebenkosten_review.services.notifications import (
    EmailAttachment,
    EmailSender,
    ResultNotifier,
)
from nebenkosten_review.services.payments import (
    CheckoutSession,
    PaymentGateway,
    PaymentState,
    PaymentStatus,
)
from nebenkosten_review.services.preprocessing import DocumentPreprocessor
from nebenkosten_review.services.reports import ReportRenderer
from nebenkosten_review.services.retry import RetryPolicy
from nebenkosten_review.services.state_store import (
    InMemorySessionStateStore,
    StateSweeper,
)

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def analysis_payload(validation: str = "ok", **overrides: object) -> dict[str, object]:
    """Return a model answer with German keys."""
    payload: dict[str, object] = {
        "validierung": validation,
        "validierung_grund": None,
        "zusammenfassung": "Zwei Posten sind fehlerhaft.",
        "wohnflaeche_erkannt": None,
        "abrechnungszeitraum": "01.01.2024 - 31.12.2024",
        "gesamtkosten_mieter": "1.234,56 €",
        "ergebnisse": [
            {
                "posten": "Grundsteuer",
                "betrag": "240,00 €",
                "status": "ok",
                "fehlercode": None,
                "titel": "Korrekt umgelegt",
                "erklaerung": "Umlagefähig nach BetrKV.",
                "beweis": "Grundsteuer 240,00 €",
                "ersparnis_geschaetzt": 0,
            },
            {
                "posten": "Verwaltungskosten",
                "betrag": "180,00 €",
                "status": "fehler",
                "fehlercode": "E1",
                "titel": "Nicht umlagefähig",
                "erklaerung": "Verwaltungskosten sind nicht umlagefähig.",
                "beweis": "Verwaltung 180,00 €",
                "ersparnis_geschaetzt": "180,00",
            },
        ],
        "unklar_pruefungen": [],
        "potenzielle_ersparnis_gesamt": 180,
        "fehler_anzahl": 1,
        "warnungen_anzahl": 0,
        "unklar_anzahl": 0,
        "empfehlung": "Widerspruch einlegen.",
        "widerspruchsbrief": "Sehr geehrte Damen und Herren,\\nich widerspreche.",
    }
    payload.update(overrides)
    return payload


def analysis_result(validation: str = "ok", **overrides: object) -> AnalysisResult:
    return AnalysisResult.model_validate(analysis_payload(validation, **overrides))


def make_upload(
    filename: str = "abrechnung.png",
    media_type: str = "image/png",
    content: bytes = b"fake-bytes",
) -> UploadedFile:
    return UploadedFile(content=content, media_type=media_type, filename=filename)


@dataclass
class FakeAnalysisClient(AnalysisClient):
    """Returns queued responses; exceptions in the queue are raised."""

    responses: list[ModelResponse | Exception] = field(default_factory=list)
    calls: list[list[ContentPart]] = field(default_factory=list)

    def queue_payload(self, payload: dict[str, object], truncated: bool = False) -> None:
        self.responses.append(ModelResponse(text=json.dumps(payload), truncated=truncated))

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        instructions: str,
        content: list[ContentPart],
        max_output_tokens: int,
        temperature: float,
    ) -> ModelResponse:
        self.calls.append(list(content))
        if not self.responses:
            return ModelResponse(text=json.dumps(analysis_payload()))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@dataclass
class FakePaymentGateway(PaymentGateway):
    paid: set[str] = field(default_factory=set)
    emails: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, dict[str, str]] = field(default_factory=dict)
    checkouts: list[dict[str, object]] = field(default_factory=list)
    refunds: list[str] = field(default_factory=list)
    status_calls: int = 0
    fail_status: bool = False
    fail_checkout: bool = False
    fail_refund: bool = False

    async def create_checkout(  # noqa: PLR0913
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        if self.fail_checkout:
            raise RuntimeError("checkout down")
        session_id = f"cs_test_{len(self.checkouts) + 1}"
        self.checkouts.append(
            {
                "id": session_id,
                "amount_cents": amount_cents,
                "currency": currency,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "customer_email": customer_email,
                "metadata": metadata,
            }
        )
        self.metadata[session_id] = dict(metadata)
        if customer_email:
            self.emails[session_id] = customer_email
        return CheckoutSession(
            id=session_id, url=f"https://checkout.example/{session_id}"
        )

    async def get_payment_status(self, session_id: str) -> PaymentStatus:
        self.status_calls += 1
        await asyncio.sleep(0)
        if self.fail_status:
            raise RuntimeError("status down")
        return PaymentStatus(
            state=PaymentState.PAID if session_id in self.paid else PaymentState.UNPAID,
            customer_email=self.emails.get(session_id),
            amount_total=399,
            metadata=self.metadata.get(session_id, {}),
        )

    async def issue_refund(self, session_id: str) -> bool:
        if self.fail_refund:
            raise RuntimeError("refund down")
        self.refunds.append(session_id)
        return True


@dataclass
class FakeEmailSender(EmailSender):
    sent: list[dict[str, object]] = field(default_factory=list)
    fail: bool = False

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[EmailAttachment],
    ) -> None:
        if self.fail:
            raise RuntimeError("mail down")
        self.sent.append(
            {"to": to, "subject": subject, "html": html, "attachments": attachments}
        )


@dataclass
class FakeReportRenderer(ReportRenderer):
    rendered: list[AnalysisResult] = field(default_factory=list)

    def render(self, result: AnalysisResult) -> bytes:
        self.rendered.append(result)
        return b"%PDF-1.4 fake report"


@dataclass
class StubPreprocessor(DocumentPreprocessor):
    """Preprocessor that does not touch pypdf or Pillow."""

    async def prepare(self, files: list[UploadedFile]) -> list[ContentPart]:
        return [TextPart(text=upload.filename) for upload in files]


def build_job_service(
    *,
    client: FakeAnalysisClient | None = None,
    payments: FakePaymentGateway | None = None,
    store: InMemorySessionStateStore | None = None,
    sender: FakeEmailSender | None = None,
    sleeps: list[float] | None = None,
    preprocessor: DocumentPreprocessor | None = None,
) -> AnalysisJobService:
    recorded = sleeps if sleeps is not None else []

    async def record_sleep(seconds: float) -> None:
        recorded.append(seconds)

    renderer = FakeReportRenderer()
    analysis = AnalysisService(
        client=client or FakeAnalysisClient(),
        preprocessor=preprocessor or StubPreprocessor(),
        retry_policy=RetryPolicy(sleep=record_sleep),
        model="test-model",
    )
    return AnalysisJobService(
        state_store=store or InMemorySessionStateStore(),
        payments=payments or FakePaymentGateway(),
        analysis=analysis,
        report_renderer=renderer,
        notifier=ResultNotifier(sender=sender, renderer=renderer) if sender else None,
        now=lambda: FIXED_NOW,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        stripe_secret_key="sk_test_key",
        stripe_webhook_secret="whsec_test",
        admin_token="admin-token",
        public_base_url="https://nebenkosten.example",
    )


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def container(
    settings: Settings,
    analysis_client: FakeAnalysisClient,
    payment_gateway: FakePaymentGateway,
    email_sender: FakeEmailSender,
) -> AppContainer:
    store = InMemorySessionStateStore()
    job_service = build_job_service(
        client=analysis_client,
        payments=payment_gateway,
        store=store,
        sender=email_sender,
    )
    sweeper = StateSweeper(
        store=store,
        pending_ttl=timedelta(minutes=30),
        completed_ttl=timedelta(minutes=60),
        interval_seconds=3600,
    )

    async def close_resources() -> None:
        await job_service.drain()

    return AppContainer(
        settings=settings,
        state_store=store,
        payments=payment_gateway,
        job_service=job_service,
        sweeper=sweeper,
        close_resources=close_resources,
    )
