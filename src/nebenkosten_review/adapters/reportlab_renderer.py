"""PDF report rendering with reportlab."""

import io
from dataclasses import dataclass
from datetime import UTC, datetime
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from nebenkosten_review.domain.analysis import (
    AnalysisResult,
    Finding,
    FindingStatus,
)
from nebenkosten_review.services.reports import ReportRenderer

_GREEN = colors.HexColor("#1a6b4a")
_GRAY = colors.HexColor("#4a5568")
_STATUS_STYLE = {
    FindingStatus.OK: ("OK", "#1a6b4a"),
    FindingStatus.WARNING: ("WARNUNG", "#b7791f"),
    FindingStatus.ERROR: ("FEHLER", "#c53030"),
    FindingStatus.UNCLEAR: ("UNKLAR", "#2563eb"),
}
_DISCLAIMER = (
    "Dieser Bericht wurde automatisch erstellt und stellt keine Rechtsberatung dar. "
    "Bei komplexen Fällen empfehlen wir einen Fachanwalt oder Mieterverein."
)


@dataclass
class ReportlabReportRenderer(ReportRenderer):
    """Renders the analysis report as an A4 PDF."""

    brand: str = "NebenkostenRetter"

    def render(self, result: AnalysisResult) -> bytes:
        """Build the PDF report for a finished analysis."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=18 * mm,
            rightMargin=18 * mm,
            topMargin=18 * mm,
            bottomMargin=18 * mm,
            title="Prüfbericht Nebenkostenabrechnung",
        )
        styles = _styles()
        story: list = [
            Paragraph(escape(self.brand), styles["title"]),
            Paragraph("Prüfbericht Ihrer Nebenkostenabrechnung", styles["subtitle"]),
            Spacer(1, 6 * mm),
        ]
        for label, value in (
            ("Abrechnungszeitraum", result.billing_period),
            ("Wohnfläche", result.floor_area_detected),
            ("Gesamtkosten Mieter", result.tenant_total),
        ):
            if value:
                story.append(Paragraph(f"{label}: {escape(value)}", styles["meta"]))

        story.append(Paragraph("Zusammenfassung", styles["heading"]))
        story.append(Paragraph(escape(result.summary), styles["body"]))
        story.append(_counts_table(result))
        story.append(Spacer(1, 4 * mm))

        story.append(Paragraph("Prüfergebnisse", styles["heading"]))
        for finding in result.findings:
            story.extend(_finding_flowables(finding, styles))

        if result.open_checks:
            story.append(Paragraph("Offene Prüfpunkte", styles["heading"]))
            story.append(
                Paragraph(
                    "Folgende Punkte konnten nicht abschließend geprüft werden. "
                    "Fordern Sie ggf. Belegeinsicht beim Vermieter an:",
                    styles["body"],
                )
            )
            for check in result.open_checks:
                story.append(Paragraph(f"• {escape(check)}", styles["body"]))

        if result.recommendation:
            story.append(Paragraph("Empfehlung", styles["heading"]))
            story.append(Paragraph(escape(result.recommendation), styles["body"]))

        if result.dispute_letter:
            story.append(PageBreak())
            story.append(Paragraph("Muster-Widerspruchsbrief", styles["heading"]))
            letter = result.dispute_letter.replace("\\n", "\n")
            for line in letter.split("\n"):
                story.append(Paragraph(escape(line) or "&nbsp;", styles["letter"]))

        story.append(Spacer(1, 8 * mm))
        story.append(Paragraph(_DISCLAIMER, styles["footer"]))
        created = datetime.now(tz=UTC).strftime("%d.%m.%Y")
        story.append(Paragraph(f"Erstellt am {created}", styles["footer"]))
        doc.build(story)
        return buffer.getvalue()


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReportTitle", parent=base["Title"], textColor=_GREEN, fontSize=22
        ),
        "subtitle": ParagraphStyle(
            "ReportSubtitle", parent=base["Normal"], alignment=1, textColor=_GRAY
        ),
        "meta": ParagraphStyle("Meta", parent=base["Normal"], textColor=_GRAY),
        "heading": ParagraphStyle(
            "Heading", parent=base["Heading2"], spaceBefore=8, spaceAfter=4
        ),
        "body": ParagraphStyle("Body", parent=base["Normal"], textColor=_GRAY),
        "evidence": ParagraphStyle(
            "Evidence",
            parent=base["Normal"],
            fontName="Helvetica-Oblique",
            fontSize=8,
            textColor=colors.HexColor("#6b7280"),
        ),
        "letter": ParagraphStyle("Letter", parent=base["Normal"], leading=14),
        "footer": ParagraphStyle(
            "Footer", parent=base["Normal"], fontSize=7, alignment=1, textColor=_GRAY
        ),
    }


def _counts_table(result: AnalysisResult) -> Table:
    row = [
        f"Fehler: {len(result.findings_with(FindingStatus.ERROR))}",
        f"Warnungen: {len(result.findings_with(FindingStatus.WARNING))}",
        f"Offene Punkte: {len(result.findings_with(FindingStatus.UNCLEAR))}",
        f"Ersparnis: {round(result.total_estimated_savings)} €",
    ]
    table = Table([row])
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#f0faf4")),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ]
        )
    )
    return table


def _finding_flowables(finding: Finding, styles: dict[str, ParagraphStyle]) -> list:
    label, color = _STATUS_STYLE[finding.status]
    code = f" ({escape(finding.error_code)})" if finding.error_code else ""
    amount = f"  {escape(finding.amount)}" if finding.amount else ""
    flowables: list = [
        Paragraph(
            f'<font color="{color}"><b>[{label}{code}]</b></font> '
            f"{escape(finding.item)}{amount}",
            styles["body"],
        )
    ]
    if finding.explanation:
        flowables.append(Paragraph(escape(finding.explanation), styles["body"]))
    if finding.evidence:
        flowables.append(
            Paragraph(f"Beleg: „{escape(finding.evidence)}“", styles["evidence"])
        )
    if finding.estimated_savings > 0:
        flowables.append(
            Paragraph(
                f"Mögliche Ersparnis: {round(finding.estimated_savings)} €",
                styles["body"],
            )
        )
    flowables.append(Spacer(1, 2 * mm))
    return flowables
