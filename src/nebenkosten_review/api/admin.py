"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from nebenkosten_review.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health(request: Request) -> dict[str, object]:
    """Admin health check with the configured collaborators."""
    container: AppContainer = request.app.state.container
    settings = container.settings
    return {
        "status": "ok",
        "environment": settings.environment,
        "state_backend": settings.state_backend,
        "model": settings.openai_model,
        "email_enabled": container.job_service.notifier is not None,
        "webhook_enabled": settings.stripe_webhook_secret is not None,
    }


@router.get("/jobs", dependencies=[Depends(require_admin)])
async def job_counts(request: Request) -> dict[str, object]:
    """Return entry counts of the session state store."""
    container: AppContainer = request.app.state.container
    snapshot = container.state_store.snapshot()
    return {
        "jobs": asdict(snapshot),
        "running_tasks": container.job_service.running_tasks,
    }
