"""Email delivery of finished analysis reports."""

import asyncio
import logging
from dataclasses import dataclass
from html import escape
from typing import Protocol

from nebenkosten_review.domain.analysis import AnalysisResult, FindingStatus
from nebenkosten_review.services.reports import ReportRenderer

logger = logging.getLogger(__name__)

REPORT_FILENAME = "Pruefbericht-Nebenkosten.pdf"


@dataclass(frozen=True)
class EmailAttachment:
    """File attached to an outgoing email."""

    filename: str
    content: bytes


class EmailSender(Protocol):
    """Interface for transactional email delivery."""

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[EmailAttachment],
    ) -> None:
        """Send an HTML email."""


@dataclass
class ResultNotifier:
    """Emails the rendered report for a finished analysis."""

    sender: EmailSender
    renderer: ReportRenderer

    async def notify(self, email: str, result: AnalysisResult) -> None:
        """Render the report and send it to the customer."""
        pdf = await asyncio.to_thread(self.renderer.render, result)
        await self.sender.send(
            to=email,
            subject=build_subject(result),
            html=build_html(result),
            attachments=[EmailAttachment(filename=REPORT_FILENAME, content=pdf)],
        )
        logger.info("Report email sent", extra={"to": email})


def build_subject(result: AnalysisResult) -> str:
    errors = len(result.findings_with(FindingStatus.ERROR))
    subject = f"Ihr Prüfbericht: {errors} Fehler gefunden"
    savings = round(result.total_estimated_savings)
    if savings > 0:
        subject += f" – bis zu {savings} € Ersparnis"
    return subject


def build_html(result: AnalysisResult) -> str:
    counts = [
        ("Fehler", len(result.findings_with(FindingStatus.ERROR))),
        ("Warnungen", len(result.findings_with(FindingStatus.WARNING))),
        ("Offen", len(result.findings_with(FindingStatus.UNCLEAR))),
    ]
    cells = "".join(
        f'<td style="padding:12px;text-align:center;"><strong>{count}</strong>'
        f"<br><span>{label}</span></td>"
        for label, count in counts
    )
    cells += (
        '<td style="padding:12px;text-align:center;">'
        f"<strong>{round(result.total_estimated_savings)} €</strong>"
        "<br><span>Ersparnis</span></td>"
    )
    letter_hint = (
        "<p>Im angehängten PDF finden Sie auch einen <strong>fertigen "
        "Muster-Widerspruchsbrief</strong>.</p>"
        if result.dispute_letter
        else ""
    )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">'
        "<h2>Ihr Prüfbericht ist fertig!</h2>"
        "<p>Wir haben Ihre Nebenkostenabrechnung geprüft. "
        "Hier die wichtigsten Ergebnisse:</p>"
        f'<table style="width:100%;"><tr>{cells}</tr></table>'
        f"<p><strong>Zusammenfassung:</strong> {escape(result.summary)}</p>"
        f"{letter_hint}"
        '<p style="font-size:12px;color:#8896a6;">Dieser Bericht wurde automatisch '
        "erstellt und stellt keine Rechtsberatung dar.</p>"
        "</div>"
    )
