"""FastAPI application factory."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from nebenkosten_review.adapters.stripe_client import verify_webhook_signature
from nebenkosten_review.api.admin import router as admin_router
from nebenkosten_review.app_logging import configure_logging
from nebenkosten_review.config import parse_floor_area, parse_plan_id
from nebenkosten_review.containers import AppContainer
from nebenkosten_review.domain.errors import UploadRejectedError
from nebenkosten_review.domain.jobs import ErrorKind
from nebenkosten_review.domain.uploads import UploadedFile
from nebenkosten_review.services.notifications import REPORT_FILENAME

_CHECKOUT_FAILED = "Zahlung konnte nicht erstellt werden. Bitte versuchen Sie es erneut."
_RETRY_FAILED = "Erneuter Versuch fehlgeschlagen. Bitte kontaktieren Sie den Support."
_PAYMENT_NOT_FOUND = "Zahlung nicht gefunden."


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        sweeper_task = asyncio.create_task(state_container.sweeper.run_forever())
        yield
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/api/create-checkout")
    async def create_checkout(
        request: Request,
        files: list[UploadFile] | None = File(default=None),
        email: str | None = Form(default=None),
        plan: str | None = Form(default=None),
        wohnflaeche: str | None = Form(default=None),
    ) -> JSONResponse:
        """Store the upload and redirect the customer to checkout."""
        state_container: AppContainer = request.app.state.container
        uploads = await _read_uploads(files or [])
        base_url = state_container.settings.public_base_url or str(request.base_url)
        try:
            started = await state_container.job_service.start_checkout(
                uploads,
                base_url=base_url,
                email=(email or "").strip() or None,
                plan=parse_plan_id(plan),
                floor_area_m2=parse_floor_area(wohnflaeche),
            )
        except UploadRejectedError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})
        except Exception:
            logger.exception("Checkout creation failed")
            return JSONResponse(status_code=500, content={"error": _CHECKOUT_FAILED})
        return JSONResponse(
            content={
                "checkoutUrl": started.redirect_url,
                "sessionId": started.session_id,
            }
        )

    @app.get("/api/result/{session_id}")
    async def result(session_id: str, request: Request) -> dict[str, object]:
        """Poll the analysis status, starting the job on the first paid poll."""
        state_container: AppContainer = request.app.state.container
        report = await state_container.job_service.poll_status(session_id)
        return report.to_payload()

    @app.post("/api/retry-analysis")
    async def retry_analysis(
        request: Request,
        session_id: str | None = Form(default=None),
        files: list[UploadFile] | None = File(default=None),
    ) -> JSONResponse:
        """Analyze a new upload for an already paid session."""
        state_container: AppContainer = request.app.state.container
        if not session_id:
            return JSONResponse(
                status_code=400, content={"error": "Keine Session-ID angegeben."}
            )
        uploads = await _read_uploads(files or [])
        try:
            report = await state_container.job_service.retry_with_new_upload(
                session_id, uploads
            )
        except UploadRejectedError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})
        if report.kind == ErrorKind.PAYMENT_INCOMPLETE:
            return JSONResponse(status_code=403, content={"error": _PAYMENT_NOT_FOUND})
        if report.status == "error":
            return JSONResponse(status_code=500, content={"error": _RETRY_FAILED})
        return JSONResponse(content=report.to_payload())

    @app.get("/api/report/{session_id}")
    async def report(session_id: str, request: Request) -> Response:
        """Download the PDF report of a finished analysis."""
        state_container: AppContainer = request.app.state.container
        pdf = await state_container.job_service.download_report(session_id)
        if pdf is None:
            return JSONResponse(
                status_code=404, content={"error": "Kein Bericht verfügbar."}
            )
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{REPORT_FILENAME}"'
            },
        )

    @app.post("/api/stripe/webhook")
    async def stripe_webhook(request: Request) -> JSONResponse:
        """Start the job as soon as Stripe reports a completed checkout."""
        state_container: AppContainer = request.app.state.container
        secret = state_container.settings.stripe_webhook_secret
        if not secret:
            return JSONResponse(status_code=404, content={"error": "Not configured"})
        payload = await request.body()
        try:
            event = verify_webhook_signature(
                payload, request.headers.get("Stripe-Signature", ""), secret
            )
        except ValueError:
            logger.warning("Rejected Stripe webhook with invalid signature")
            return JSONResponse(status_code=400, content={"error": "Invalid signature"})

        if event.get("type") == "checkout.session.completed":
            session = (event.get("data") or {}).get("object") or {}
            session_id = session.get("id")
            if session_id and session.get("payment_status") == "paid":
                launched = state_container.job_service.launch(str(session_id))
                logger.info(
                    "Checkout completed webhook",
                    extra={"session_id": session_id, "launched": launched},
                )
        return JSONResponse(content={"received": True})

    return app


async def _read_uploads(files: list[UploadFile]) -> list[UploadedFile]:
    uploads: list[UploadedFile] = []
    for upload in files:
        content = await upload.read()
        uploads.append(
            UploadedFile(
                content=content,
                media_type=upload.content_type or "application/octet-stream",
                filename=upload.filename or "upload",
            )
        )
    return uploads
