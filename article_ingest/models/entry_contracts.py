from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class ImageFormat(str, Enum):
    GIF = "gif"
    JPEG = "jpeg"
    PNG = "png"


# Extensions accepted for localized images and the codec each one is written with.
IMAGE_EXTENSION_FORMATS: dict[str, ImageFormat] = {
    "gif": ImageFormat.GIF,
    "jpeg": ImageFormat.JPEG,
    "jpg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
}

# Declared MIME types mapped to the extension used on disk.
IMAGE_MIME_EXTENSIONS: dict[str, str] = {
    "image/gif": "gif",
    "image/jpeg": "jpeg",
    "image/pjpeg": "jpeg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/x-png": "png",
}


def image_extension_from_mime(content_type: str | None) -> str | None:
    """Map a `Content-Type` header value to a whitelisted image extension."""
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return IMAGE_MIME_EXTENSIONS.get(mime)


@dataclass
class Entry:
    """Article record owned by the persistence layer.

    The ingest core only mutates fields; it never creates or deletes entries.
    """

    entry_id: int
    url: str | None = None
    title: str | None = None
    content: str | None = None
    language: str | None = None
    domain_name: str | None = None
    preview_picture: str | None = None
    published_at: datetime | None = None
    published_by: list[str] = field(default_factory=list)
    origin_url: str | None = None
    mimetype: str | None = None
    http_status: str | None = None
    reading_time: int = 0


class FetchedContent(BaseModel):
    """Output of the content fetcher, or content supplied by an importer."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    title: str | None = None
    html: str | None = None
    content_type: str | None = None
    language: str | None = None
    date: str | None = None
    preview_image: str | None = None
    description: str | None = None
    authors: list[str] = Field(default_factory=list)
    status: str | None = None

    @field_validator("date", "status", mode="before")
    @classmethod
    def _coerce_scalar_to_text(cls, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return None
        if isinstance(value, int | float):
            return str(int(value))
        return _normalize_optional_text(value)

    @field_validator("authors", mode="before")
    @classmethod
    def _normalize_authors(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list | tuple):
            return []
        authors: list[str] = []
        for raw_author in value:
            author = _normalize_optional_text(raw_author)
            if author is not None and author not in authors:
                authors.append(author)
        return authors

    def is_valid(self) -> bool:
        """Content is usable on its own only with a title, some html and a url."""
        return bool(self.title) and bool(self.html) and bool(self.url)


@dataclass(frozen=True)
class LocalizedImage:
    entry_id: int
    content_hash: str
    extension: str
    absolute_url: str
    local_path: str
    public_url: str

    @property
    def filename(self) -> str:
        return f"{self.content_hash}.{self.extension}"
