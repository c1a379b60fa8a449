"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from supabase import create_client

from nebenkosten_review.adapters.openai_analysis_client import OpenAIAnalysisClient
from nebenkosten_review.adapters.reportlab_renderer import ReportlabReportRenderer
from nebenkosten_review.adapters.resend_client import HttpxResendClient
from nebenkosten_review.adapters.stripe_client import HttpxStripeClient
from nebenkosten_review.adapters.supabase_state_store import (
    SupabaseSessionStateStore,
)
from nebenkosten_review.config import Settings
from nebenkosten_review.services.analysis import AnalysisService
from nebenkosten_review.services.jobs import AnalysisJobService
from nebenkosten_review.services.notifications import ResultNotifier
from nebenkosten_review.services.payments import PaymentGateway
from nebenkosten_review.services.preprocessing import DocumentPreprocessor
from nebenkosten_review.services.retry import RetryPolicy
from nebenkosten_review.services.state_store import (
    InMemorySessionStateStore,
    SessionStateStore,
    StateSweeper,
)

_BYTES_PER_MB = 1024 * 1024


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    state_store: SessionStateStore
    payments: PaymentGateway
    job_service: AnalysisJobService
    sweeper: StateSweeper
    close_resources: Callable[[], Awaitable[None]]


def build_state_store(settings: Settings) -> SessionStateStore:
    """Create the configured session state store."""
    if settings.state_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("Supabase state backend requires URL and service key")
        return SupabaseSessionStateStore(
            create_client(settings.supabase_url, settings.supabase_service_key)
        )
    return InMemorySessionStateStore()


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    state_store = build_state_store(resolved_settings)
    stripe_client = HttpxStripeClient.create(resolved_settings.stripe_secret_key)
    openai_client = OpenAIAnalysisClient.create(
        resolved_settings.openai_api_key, store=resolved_settings.openai_store
    )
    renderer = ReportlabReportRenderer()
    analysis_service = AnalysisService(
        client=openai_client,
        preprocessor=DocumentPreprocessor(),
        retry_policy=RetryPolicy(
            max_retries=resolved_settings.analysis_max_retries,
            delay_seconds=resolved_settings.analysis_retry_delay_seconds,
        ),
        model=resolved_settings.openai_model,
        max_output_tokens=resolved_settings.openai_max_output_tokens,
        temperature=resolved_settings.openai_temperature,
    )
    resend_client = (
        HttpxResendClient.create(
            resolved_settings.resend_api_key, resolved_settings.email_sender
        )
        if resolved_settings.resend_api_key
        else None
    )
    notifier = (
        ResultNotifier(sender=resend_client, renderer=renderer)
        if resend_client
        else None
    )
    job_service = AnalysisJobService(
        state_store=state_store,
        payments=stripe_client,
        analysis=analysis_service,
        report_renderer=renderer,
        notifier=notifier,
        plan_prices=dict(resolved_settings.plan_prices),
        default_plan=resolved_settings.default_plan,
        currency=resolved_settings.currency,
        max_files=resolved_settings.max_upload_files,
        max_file_bytes=resolved_settings.max_upload_mb * _BYTES_PER_MB,
    )
    sweeper = StateSweeper(
        store=state_store,
        pending_ttl=timedelta(minutes=resolved_settings.pending_ttl_minutes),
        completed_ttl=timedelta(minutes=resolved_settings.completed_ttl_minutes),
        interval_seconds=resolved_settings.sweep_interval_seconds,
    )

    async def close_resources() -> None:
        await job_service.drain()
        await stripe_client.close()
        await openai_client.close()
        if resend_client:
            await resend_client.close()

    return AppContainer(
        settings=resolved_settings,
        state_store=state_store,
        payments=stripe_client,
        job_service=job_service,
        sweeper=sweeper,
        close_resources=close_resources,
    )
