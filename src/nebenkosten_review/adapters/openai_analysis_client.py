"""OpenAI Responses API client for statement analysis."""

import base64
from dataclasses import dataclass

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from nebenkosten_review.domain.errors import (
    AnalysisServiceError,
    NoStructuredOutputError,
    classify_status,
)
from nebenkosten_review.domain.uploads import (
    ContentPart,
    DocumentPart,
    ImagePart,
    TextPart,
)
from nebenkosten_review.services.analysis import AnalysisClient, ModelResponse


@dataclass
class OpenAIAnalysisClient(AnalysisClient):
    """Analysis client backed by OpenAI Responses API."""

    client: AsyncOpenAI
    store: bool = False

    @classmethod
    def create(cls, api_key: str, store: bool = False) -> "OpenAIAnalysisClient":
        """Create an OpenAI analysis client."""
        return cls(client=AsyncOpenAI(api_key=api_key, max_retries=0), store=store)

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        instructions: str,
        content: list[ContentPart],
        max_output_tokens: int,
        temperature: float,
    ) -> ModelResponse:
        """Call OpenAI Responses API and report truncation."""
        request_payload: dict[str, object] = {
            "model": model,
            "instructions": instructions,
            "input": [
                {
                    "role": "user",
                    "content": [_to_input_part(part) for part in content],
                }
            ],
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
            "store": self.store,
        }
        try:
            response = await self.client.responses.create(**request_payload)
        except APIStatusError as exc:
            raise AnalysisServiceError(
                str(exc),
                kind=classify_status(exc.status_code),
                status_code=exc.status_code,
            ) from exc
        except APIConnectionError as exc:
            raise AnalysisServiceError(str(exc), kind=classify_status(None)) from exc

        output_text = response.output_text
        if not output_text:
            raise NoStructuredOutputError("OpenAI returned an empty response")
        incomplete = getattr(response, "incomplete_details", None)
        truncated = (
            getattr(response, "status", None) == "incomplete"
            and getattr(incomplete, "reason", None) == "max_output_tokens"
        )
        return ModelResponse(text=output_text, truncated=truncated)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()


def _to_input_part(part: ContentPart) -> dict[str, object]:
    if isinstance(part, TextPart):
        return {"type": "input_text", "text": part.text}
    if isinstance(part, ImagePart):
        return {"type": "input_image", "image_url": _data_url(part.media_type, part.data)}
    if isinstance(part, DocumentPart):
        return {
            "type": "input_file",
            "filename": part.filename,
            "file_data": _data_url(part.media_type, part.data),
        }
    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def _data_url(media_type: str, data: bytes) -> str:
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{media_type};base64,{encoded}"
