from __future__ import annotations

import io
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import unquote, urlsplit
from urllib.request import Request, urlopen

from PIL import Image

from article_ingest.models.entry_contracts import (
    IMAGE_EXTENSION_FORMATS,
    ImageFormat,
    LocalizedImage,
    image_extension_from_mime,
)
from article_ingest.repositories.image_store_repository import ImageStoreRepository, crc32_hex
from article_ingest.services.html_image_service import (
    extract_image_urls,
    rewrite_image_references,
)
from article_ingest.services.url_resolver import FETCHABLE_SCHEMES, resolve_image_url

LOGGER = logging.getLogger("article_ingest.images")

REGENERATE_PICTURES_QUALITY = 80
# PNG compression runs 0..9; derived from the same quality constant.
PNG_COMPRESS_LEVEL = math.ceil(REGENERATE_PICTURES_QUALITY / 100 * 9)
MAX_IMAGE_BYTES = 10 * 1024 * 1024
PUBLIC_IMAGES_PATH = "assets/images"

_MAGIC_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF", "gif"),
    (b"\x89PNG\r\n", "png"),
)
_DECODE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    Image.DecompressionBombError,
)


@dataclass(frozen=True)
class ImageFetchResult:
    body: bytes | None
    content_type: str | None
    http_status: int | None
    error_message: str | None


class ImageHttpClient(Protocol):
    def get(self, url: str, *, timeout_seconds: float) -> ImageFetchResult:
        ...


class UrllibImageHttpClient:
    def __init__(self, *, user_agent: str, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self._user_agent = user_agent.strip() or "article-ingest/0.1"
        self._max_bytes = max(1, max_bytes)

    def get(self, url: str, *, timeout_seconds: float) -> ImageFetchResult:
        try:
            scheme = urlsplit(url).scheme.lower()
        except ValueError:
            scheme = ""
        if scheme not in FETCHABLE_SCHEMES:
            return ImageFetchResult(
                body=None,
                content_type=None,
                http_status=None,
                error_message=f"unsupported_scheme:{scheme or 'none'}",
            )
        request = Request(
            url,
            headers={
                "Accept": "image/avif,image/webp,image/png,image/*;q=0.8,*/*;q=0.5",
                "User-Agent": self._user_agent,
            },
            method="GET",
        )
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                status = getattr(response, "status", None)
                if status is not None and not 200 <= int(status) < 300:
                    return ImageFetchResult(
                        body=None,
                        content_type=None,
                        http_status=int(status),
                        error_message=f"http_{status}",
                    )
                body = response.read(self._max_bytes + 1)
                if len(body) > self._max_bytes:
                    return ImageFetchResult(
                        body=None,
                        content_type=None,
                        http_status=status,
                        error_message="too_large",
                    )
                return ImageFetchResult(
                    body=body,
                    content_type=response.headers.get("Content-Type"),
                    http_status=status,
                    error_message=None,
                )
        except HTTPError as exc:
            return ImageFetchResult(
                body=None,
                content_type=None,
                http_status=int(exc.code),
                error_message=f"http_{exc.code}",
            )
        except (URLError, TimeoutError, OSError, ValueError) as exc:
            return ImageFetchResult(
                body=None,
                content_type=None,
                http_status=None,
                error_message=f"network_error:{type(exc).__name__}",
            )


def sniff_image_extension(data: bytes) -> str | None:
    head = data[:8]
    for signature, extension in _MAGIC_SIGNATURES:
        if head.startswith(signature):
            return extension
    return None


def determine_image_extension(
    content_type: str | None,
    image_url: str,
    data: bytes,
) -> str | None:
    """Pick the on-disk extension of a downloaded image.

    The declared content type wins. When it is missing or not an image type,
    the URL path extension is used, then the leading bytes. Only whitelisted
    raster formats are ever returned.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime.startswith("image/"):
        return image_extension_from_mime(mime)

    path_extension = _extension_from_url(image_url)
    if path_extension is not None:
        return path_extension
    return sniff_image_extension(data)


def _extension_from_url(image_url: str) -> str | None:
    try:
        path = urlsplit(image_url).path
    except ValueError:
        return None
    suffix = PurePosixPath(unquote(path)).suffix.lower().lstrip(".")
    if suffix in IMAGE_EXTENSION_FORMATS:
        return suffix
    return None


def _encode_gif(image: Image.Image, output: io.BytesIO) -> None:
    image.save(output, format="GIF", save_all=bool(getattr(image, "is_animated", False)))


def _encode_jpeg(image: Image.Image, output: io.BytesIO) -> None:
    if image.mode not in {"L", "RGB", "CMYK"}:
        image = image.convert("RGB")
    image.save(output, format="JPEG", quality=REGENERATE_PICTURES_QUALITY)


def _encode_png(image: Image.Image, output: io.BytesIO) -> None:
    if image.mode not in {"1", "I", "I;16", "L", "LA", "P", "RGB", "RGBA"}:
        has_alpha = "A" in image.getbands()
        image = image.convert("RGBA" if has_alpha else "RGB")
    image.save(output, format="PNG", compress_level=PNG_COMPRESS_LEVEL)


_ENCODERS: dict[ImageFormat, Callable[[Image.Image, io.BytesIO], None]] = {
    ImageFormat.GIF: _encode_gif,
    ImageFormat.JPEG: _encode_jpeg,
    ImageFormat.PNG: _encode_png,
}


def reencode_image(data: bytes, image_format: ImageFormat) -> bytes:
    """Decode `data` and write it back out with our own encoder.

    Re-saving drops anything the decoder does not understand as pixels,
    which is what makes a downloaded file safe to serve. Decode errors
    propagate to the caller.
    """
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        output = io.BytesIO()
        _ENCODERS[image_format](image, output)
    return output.getvalue()


class ImageDownloadService:
    def __init__(
        self,
        *,
        image_store: ImageStoreRepository,
        public_base_url: str,
        http_client: ImageHttpClient,
        fetch_timeout_seconds: float = 15.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._image_store = image_store
        self._public_base_url = public_base_url.rstrip("/")
        self._http_client = http_client
        self._fetch_timeout_seconds = max(1.0, fetch_timeout_seconds)
        self._logger = logger if logger is not None else LOGGER

    def process_html(self, entry_id: int, html: str, page_url: str) -> str:
        """Localize every image of `html` and return the rewritten document.

        Images that fail at any step keep their original reference. Distinct
        references resolving to the same absolute URL are downloaded once.
        """
        replacements: dict[str, str] = {}
        localized_by_url: dict[str, LocalizedImage | None] = {}
        for image_reference in extract_image_urls(html):
            try:
                absolute_url = self._resolve(image_reference, page_url)
                if absolute_url is None:
                    continue
                if absolute_url not in localized_by_url:
                    localized_by_url[absolute_url] = self._localize_absolute(
                        entry_id, absolute_url
                    )
                localized = localized_by_url[absolute_url]
            except Exception:
                self._logger.warning(
                    "image localization crashed, skipping entry_id=%s image=%s",
                    entry_id,
                    image_reference,
                    exc_info=True,
                )
                continue
            if localized is not None:
                replacements[image_reference] = localized.public_url

        if not replacements:
            return html
        return rewrite_image_references(html, replacements)

    def process_single_image(
        self,
        entry_id: int,
        image_path: str | None,
        page_url: str,
    ) -> str | None:
        localized = self.localize_image(entry_id, image_path, page_url)
        if localized is None:
            return None
        return localized.public_url

    def localize_image(
        self,
        entry_id: int,
        image_path: str | None,
        page_url: str,
    ) -> LocalizedImage | None:
        if not image_path or not image_path.strip():
            return None
        try:
            absolute_url = self._resolve(image_path, page_url)
            if absolute_url is None:
                return None
            return self._localize_absolute(entry_id, absolute_url)
        except Exception:
            self._logger.warning(
                "image localization crashed, skipping entry_id=%s image=%s",
                entry_id,
                image_path,
                exc_info=True,
            )
            return None

    def remove_images(self, entry_id: int) -> None:
        self._image_store.remove_all(entry_id)

    def _resolve(self, image_path: str, page_url: str) -> str | None:
        self._logger.debug("working on image image=%s base=%s", image_path, page_url)
        absolute_url = resolve_image_url(page_url, image_path)
        if not absolute_url:
            self._logger.error(
                "cannot determine the absolute url for image, skipping image=%s base=%s",
                image_path,
                page_url,
            )
            return None
        return absolute_url

    def _localize_absolute(self, entry_id: int, absolute_url: str) -> LocalizedImage | None:
        fetched = self._http_client.get(absolute_url, timeout_seconds=self._fetch_timeout_seconds)
        if fetched.body is None:
            self._logger.error(
                "cannot retrieve image, skipping url=%s error=%s http_status=%s",
                absolute_url,
                fetched.error_message,
                fetched.http_status,
            )
            return None

        extension = determine_image_extension(fetched.content_type, absolute_url, fetched.body)
        if extension is None:
            self._logger.error(
                "image has a non allowed type, skipping url=%s content_type=%s",
                absolute_url,
                fetched.content_type,
            )
            return None

        try:
            encoded = reencode_image(fetched.body, IMAGE_EXTENSION_FORMATS[extension])
        except _DECODE_ERRORS:
            self._logger.error(
                "error while regenerating image, skipping url=%s",
                absolute_url,
                exc_info=True,
            )
            return None

        content_hash = crc32_hex(absolute_url)
        filename = f"{content_hash}.{extension}"
        try:
            local_path = self._image_store.write(entry_id, filename, encoded)
        except OSError:
            self._logger.error("cannot store image, skipping url=%s", absolute_url, exc_info=True)
            return None

        relative_path = self._image_store.relative_path(entry_id)
        self._logger.debug("image stored entry_id=%s path=%s", entry_id, local_path)
        return LocalizedImage(
            entry_id=entry_id,
            content_hash=content_hash,
            extension=extension,
            absolute_url=absolute_url,
            local_path=str(local_path),
            public_url=f"{self._public_base_url}/{PUBLIC_IMAGES_PATH}/{relative_path}/{filename}",
        )

