"""Report rendering interface."""

from typing import Protocol

from nebenkosten_review.domain.analysis import AnalysisResult


class ReportRenderer(Protocol):
    """Interface for turning an analysis result into a PDF report."""

    def render(self, result: AnalysisResult) -> bytes:
        """Return the PDF bytes for a result."""
