"""Normalization of uploaded statements into model content."""

import asyncio
import io
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader

from nebenkosten_review.domain.uploads import (
    ContentPart,
    DocumentPart,
    ImagePart,
    TextPart,
    UploadedFile,
)

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[... Text gekürzt, restliche Seiten nicht einbezogen ...]"
_BYTES_PER_MB = 1024 * 1024


def extract_pdf_text(data: bytes) -> str:
    """Extract embedded text from all pages of a PDF."""
    reader = PdfReader(io.BytesIO(data))
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n".join(page for page in pages if page).strip()


def compress_image(data: bytes, max_dimension: int, quality: int) -> bytes:
    """Bound the longer side of an image and re-encode it as JPEG."""
    with Image.open(io.BytesIO(data)) as original:
        image = ImageOps.exif_transpose(original)
        image.thumbnail((max_dimension, max_dimension))
        if image.mode != "RGB":
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


@dataclass
class DocumentPreprocessor:
    """Turns uploads into bounded content parts for the analysis model."""

    max_pdf_text_chars: int = 15_000
    min_pdf_text_chars: int = 100
    max_pdf_document_bytes: int = 5 * _BYTES_PER_MB
    max_image_dimension: int = 1200
    image_quality: int = 75
    text_extractor: Callable[[bytes], str] = field(default=extract_pdf_text)

    async def prepare(self, files: list[UploadedFile]) -> list[ContentPart]:
        """Build model content for an ordered list of uploads."""
        content: list[ContentPart] = []
        for upload in files:
            if upload.is_pdf:
                content.append(await self._prepare_pdf(upload))
            else:
                content.append(await self._prepare_image(upload))
        content.append(TextPart(text=_closing_instruction(len(files))))
        return content

    async def _prepare_pdf(self, upload: UploadedFile) -> ContentPart:
        try:
            text = await asyncio.to_thread(self.text_extractor, upload.content)
        except Exception:
            logger.warning(
                "PDF text extraction failed",
                exc_info=True,
                extra={"upload_name": upload.filename, "size": upload.size},
            )
            return self._pdf_fallback(upload, parse_failed=True)

        if len(text) <= self.min_pdf_text_chars:
            return self._pdf_fallback(upload, parse_failed=False)
        if len(text) > self.max_pdf_text_chars:
            logger.info(
                "PDF text truncated",
                extra={"upload_name": upload.filename, "chars": len(text)},
            )
            text = f"{text[: self.max_pdf_text_chars]}\n\n{TRUNCATION_MARKER}"
        return TextPart(text=_wrap_pdf_text(upload.filename, text))

    def _pdf_fallback(self, upload: UploadedFile, *, parse_failed: bool) -> ContentPart:
        """Send scanned PDFs as documents unless they exceed the size cap."""
        if upload.size <= self.max_pdf_document_bytes:
            return DocumentPart(data=upload.content, filename=upload.filename)
        size_mb = upload.size / _BYTES_PER_MB
        logger.info(
            "PDF too large for visual reading",
            extra={"upload_name": upload.filename, "size_mb": round(size_mb, 1)},
        )
        if parse_failed:
            notice = (
                "[Dokument konnte nicht gelesen werden. "
                "Bitte laden Sie Fotos der einzelnen Seiten hoch.]"
            )
        else:
            notice = (
                "[Dokument konnte nicht gelesen werden. Die Datei ist zu groß "
                f"({size_mb:.1f} MB). Bitte laden Sie einzelne Fotos der Seiten hoch.]"
            )
        return TextPart(text=_wrap_pdf_text(upload.filename, notice))

    async def _prepare_image(self, upload: UploadedFile) -> ContentPart:
        try:
            compressed = await asyncio.to_thread(
                compress_image,
                upload.content,
                self.max_image_dimension,
                self.image_quality,
            )
        except (UnidentifiedImageError, OSError):
            logger.warning(
                "Image could not be decoded",
                extra={"upload_name": upload.filename, "size": upload.size},
            )
            return TextPart(
                text=(
                    f"--- Bild: {upload.filename} ---\n"
                    "[Bild konnte nicht gelesen werden.]\n---"
                )
            )
        logger.info(
            "Image compressed",
            extra={
                "upload_name": upload.filename,
                "original_kb": round(upload.size / 1024),
                "compressed_kb": round(len(compressed) / 1024),
            },
        )
        return ImagePart(data=compressed)


def _wrap_pdf_text(filename: str, body: str) -> str:
    return f"--- PDF: {filename} ---\n{body}\n---"


def _closing_instruction(file_count: int) -> str:
    if file_count > 1:
        return (
            f"Dies sind {file_count} Seiten/Fotos einer Nebenkostenabrechnung. "
            "Bitte analysiere sie zusammen als ein Dokument."
        )
    return "Bitte analysiere diese Nebenkostenabrechnung."
