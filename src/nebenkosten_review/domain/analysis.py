"""Models for statement analysis results."""

import re
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NUMBER_CLEANUP = re.compile(r"[^\d,.\-]")


class ValidationStatus(StrEnum):
    """Model verdict on whether the upload is a usable statement."""

    OK = "ok"
    UNREADABLE = "nicht_lesbar"
    NOT_A_STATEMENT = "keine_abrechnung"
    INCOMPLETE = "unvollstaendig"


class FindingStatus(StrEnum):
    """Assessment of a single cost item."""

    OK = "ok"
    WARNING = "warnung"
    ERROR = "fehler"
    UNCLEAR = "unklar"


def _parse_amount(value: object) -> float:
    """Parse a euro amount, accepting German number formatting."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, int | float):
        return float(value)
    cleaned = _NUMBER_CLEANUP.sub("", str(value))
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


class _AliasedModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Finding(_AliasedModel):
    """Single checked cost item."""

    item: str = Field(alias="posten")
    amount: str | None = Field(default=None, alias="betrag")
    status: FindingStatus
    error_code: str | None = Field(default=None, alias="fehlercode")
    title: str | None = Field(default=None, alias="titel")
    explanation: str | None = Field(default=None, alias="erklaerung")
    evidence: str | None = Field(default=None, alias="beweis")
    estimated_savings: float = Field(default=0.0, alias="ersparnis_geschaetzt")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("amount", mode="before")
    @classmethod
    def _stringify_amount(cls, value: object) -> object:
        return str(value) if isinstance(value, int | float) else value

    @field_validator("estimated_savings", mode="before")
    @classmethod
    def _coerce_savings(cls, value: object) -> float:
        return _parse_amount(value)


class AnalysisResult(_AliasedModel):
    """Structured output for a statement analysis."""

    validation: ValidationStatus = Field(alias="validierung")
    validation_reason: str | None = Field(default=None, alias="validierung_grund")
    summary: str = Field(default="", alias="zusammenfassung")
    floor_area_detected: str | None = Field(default=None, alias="wohnflaeche_erkannt")
    floor_area_source: Literal["dokument", "nutzer"] | None = Field(
        default=None, alias="wohnflaeche_quelle"
    )
    billing_period: str | None = Field(default=None, alias="abrechnungszeitraum")
    tenant_total: str | None = Field(default=None, alias="gesamtkosten_mieter")
    findings: list[Finding] = Field(default_factory=list, alias="ergebnisse")
    open_checks: list[str] = Field(default_factory=list, alias="unklar_pruefungen")
    total_estimated_savings: float = Field(
        default=0.0, alias="potenzielle_ersparnis_gesamt"
    )
    error_count: int = Field(default=0, alias="fehler_anzahl")
    warning_count: int = Field(default=0, alias="warnungen_anzahl")
    unclear_count: int = Field(default=0, alias="unklar_anzahl")
    recommendation: str | None = Field(default=None, alias="empfehlung")
    dispute_letter: str | None = Field(default=None, alias="widerspruchsbrief")

    @field_validator("validation", mode="before")
    @classmethod
    def _normalize_validation(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("summary", mode="before")
    @classmethod
    def _default_summary(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("findings", "open_checks", mode="before")
    @classmethod
    def _default_list(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("total_estimated_savings", mode="before")
    @classmethod
    def _coerce_total(cls, value: object) -> float:
        return _parse_amount(value)

    @field_validator("error_count", "warning_count", "unclear_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: object) -> int:
        return int(_parse_amount(value))

    def findings_with(self, status: FindingStatus) -> list[Finding]:
        """Return findings carrying the given status."""
        return [finding for finding in self.findings if finding.status == status]

    def to_payload(self) -> dict[str, object]:
        """Serialize using the wire (German) field names."""
        return self.model_dump(mode="json", by_alias=True)
