"""Domain models for uploaded statement files and model content."""

from dataclasses import dataclass

PDF_MEDIA_TYPE = "application/pdf"
IMAGE_MEDIA_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png"})
ALLOWED_MEDIA_TYPES = IMAGE_MEDIA_TYPES | {PDF_MEDIA_TYPE}


@dataclass(frozen=True)
class UploadedFile:
    """Single uploaded file held in memory."""

    content: bytes
    media_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_pdf(self) -> bool:
        return self.media_type == PDF_MEDIA_TYPE


@dataclass(frozen=True)
class TextPart:
    """Plain text handed to the model."""

    text: str


@dataclass(frozen=True)
class ImagePart:
    """Compressed image handed to the model."""

    data: bytes
    media_type: str = "image/jpeg"


@dataclass(frozen=True)
class DocumentPart:
    """Raw document bytes handed to the model for visual reading."""

    data: bytes
    filename: str
    media_type: str = PDF_MEDIA_TYPE


ContentPart = TextPart | ImagePart | DocumentPart
