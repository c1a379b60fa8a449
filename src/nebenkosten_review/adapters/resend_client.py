"""Resend email API adapter."""

import base64
from dataclasses import dataclass

import httpx

from nebenkosten_review.services.notifications import EmailAttachment, EmailSender


@dataclass
class HttpxResendClient(EmailSender):
    """Email sender implemented with httpx against the Resend API."""

    api_key: str
    sender: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, api_key: str, sender: str) -> "HttpxResendClient":
        """Create a Resend client with a managed httpx session."""
        return cls(api_key=api_key, sender=sender, http_client=httpx.AsyncClient())

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[EmailAttachment],
    ) -> None:
        """Send an email using Resend's /emails endpoint."""
        payload: dict[str, object] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if attachments:
            payload["attachments"] = [
                {
                    "filename": attachment.filename,
                    "content": base64.b64encode(attachment.content).decode("utf-8"),
                }
                for attachment in attachments
            ]
        response = await self.http_client.post(
            "https://api.resend.com/emails",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=15,
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
