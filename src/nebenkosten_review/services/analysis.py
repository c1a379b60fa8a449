"""Statement analysis via a document-understanding model."""

import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from nebenkosten_review.domain.analysis import AnalysisResult
from nebenkosten_review.domain.errors import (
    MalformedOutputError,
    NoStructuredOutputError,
)
from nebenkosten_review.domain.uploads import ContentPart, TextPart, UploadedFile
from nebenkosten_review.services.preprocessing import DocumentPreprocessor
from nebenkosten_review.services.prompts import SYSTEM_INSTRUCTIONS, floor_area_hint
from nebenkosten_review.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class ModelResponse:
    """Raw model output and whether it hit the token ceiling."""

    text: str
    truncated: bool = False


class AnalysisClient(Protocol):
    """Interface for the document-understanding model."""

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        instructions: str,
        content: list[ContentPart],
        max_output_tokens: int,
        temperature: float,
    ) -> ModelResponse:
        """Return the model's free-form response text."""


@dataclass
class AnalysisService:
    """Runs the model on prepared content and returns a validated result."""

    client: AnalysisClient
    preprocessor: DocumentPreprocessor
    retry_policy: RetryPolicy
    model: str
    max_output_tokens: int = 8192
    temperature: float = 0.0

    async def analyze(
        self, files: Sequence[UploadedFile], floor_area_m2: float | None = None
    ) -> AnalysisResult:
        """Preprocess uploads and analyze them with bounded retry."""
        content = await self.preprocessor.prepare(list(files))
        if floor_area_m2 is not None:
            content.append(TextPart(text=floor_area_hint(floor_area_m2)))
        logger.info(
            "Analyzing statement",
            extra={
                "files": [upload.filename for upload in files],
                "total_kb": round(sum(upload.size for upload in files) / 1024),
            },
        )
        result = await self.retry_policy.run(lambda: self.invoke(content))
        return backfill_floor_area(result, floor_area_m2)

    async def invoke(self, content: list[ContentPart]) -> AnalysisResult:
        """Single model call followed by JSON extraction and validation."""
        started = time.perf_counter()
        response = await self.client.complete(
            model=self.model,
            instructions=SYSTEM_INSTRUCTIONS,
            content=content,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        logger.info(
            "Model response received",
            extra={
                "elapsed_s": round(time.perf_counter() - started, 1),
                "truncated": response.truncated,
            },
        )
        payload = extract_json_object(response.text, truncated=response.truncated)
        try:
            return AnalysisResult.model_validate(payload)
        except ValidationError as exc:
            raise MalformedOutputError(f"Response does not fit schema: {exc}") from exc


def backfill_floor_area(
    result: AnalysisResult, floor_area_m2: float | None
) -> AnalysisResult:
    """Fill in a user-declared floor area when the model found none."""
    if result.floor_area_detected:
        if result.floor_area_source is None:
            return result.model_copy(update={"floor_area_source": "dokument"})
        return result
    if floor_area_m2 is None:
        return result
    return result.model_copy(
        update={
            "floor_area_detected": f"{floor_area_m2:g} m² (Angabe Nutzer)",
            "floor_area_source": "nutzer",
        }
    )


def extract_json_object(text: str, *, truncated: bool) -> dict[str, object]:
    """Locate the first top-level JSON object in free-form text.

    A truncated response is cut back to its last complete element and the
    open brackets are closed. Objects nested in arrays are kept whole or
    dropped, never closed half-way.
    """
    start = text.find("{")
    if start < 0:
        raise NoStructuredOutputError("No JSON object in model response")

    stack: list[str] = []
    in_string = False
    escaped = False
    last_cut: tuple[int, tuple[str, ...]] | None = None
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
            if _can_cut(stack):
                last_cut = (index + 1, tuple(stack))
        elif char in {"}", "]"}:
            if not stack or _CLOSERS[stack[-1]] != char:
                raise MalformedOutputError("Unbalanced JSON in model response")
            stack.pop()
            if not stack:
                return _loads(text[start : index + 1])
            if _can_cut(stack):
                last_cut = (index + 1, tuple(stack))
        elif char == "," and _can_cut(stack):
            last_cut = (index, tuple(stack))

    if not truncated:
        raise MalformedOutputError("JSON object in model response is not terminated")
    if last_cut is None:
        raise NoStructuredOutputError("Truncated response has no usable JSON")
    logger.info("Repairing truncated model response")
    cut, open_stack = last_cut
    closing = "".join(_CLOSERS[opener] for opener in reversed(open_stack))
    return _loads(text[start:cut].rstrip() + closing)


def _can_cut(stack: list[str]) -> bool:
    """Cutting is allowed unless an object inside an array is still open."""
    inside_array = False
    for opener in stack:
        if opener == "[":
            inside_array = True
        elif inside_array:
            return False
    return True


def _loads(raw: str) -> dict[str, object]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(f"Invalid JSON in model response: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedOutputError("Model response JSON is not an object")
    return payload
