from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import Protocol
from urllib.parse import unquote, urlsplit

from babel import Locale, UnknownLocaleError
from dateutil import parser as date_parser
from pydantic import HttpUrl, TypeAdapter, ValidationError

from article_ingest.models.entry_contracts import (
    Entry,
    FetchedContent,
    image_extension_from_mime,
)
from article_ingest.services.html_image_service import first_image_url
from article_ingest.services.text_sanitizer import (
    estimate_reading_time,
    sanitize_content_title,
)
from article_ingest.services.url_resolver import resolve_image_url

LOGGER = logging.getLogger("article_ingest.content_proxy")

SHORT_DESCRIPTION_INTRO = "<p><i>But we found a short description: </i></p>"

_LOCALE_PATTERN = re.compile(
    r"^(?P<language>[A-Za-z]{2,3})"
    r"(?:_(?P<script>[A-Za-z]{4}))?"
    r"(?:_(?P<region>[A-Za-z]{2}|\d{3}))?$"
)
_TIMESTAMP_PATTERN = re.compile(r"^[+-]?\d+$")
_HTTP_URL_ADAPTER: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)
_URL_PARTS: tuple[str, ...] = (
    "fragment",
    "host",
    "password",
    "path",
    "port",
    "query",
    "scheme",
    "user",
)


class ContentFetcher(Protocol):
    """Full-page extraction backend; the algorithm itself lives elsewhere."""

    def fetch_content(self, url: str) -> FetchedContent:
        ...

    def cleanup_html(self, html: str, url: str) -> str:
        ...


class PassthroughContentFetcher:
    """Fetcher used when no extraction backend is wired in.

    Cleanup is the identity and every fetch reports the failure sentinel.
    """

    def __init__(self, *, fetching_error_message: str) -> None:
        self._fetching_error_message = fetching_error_message

    def fetch_content(self, url: str) -> FetchedContent:
        return FetchedContent(url=url, html=self._fetching_error_message)

    def cleanup_html(self, html: str, url: str) -> str:
        _ = url
        return html


def normalize_locale(value: str) -> str | None:
    """Canonical `ll[_Ssss][_RR]` form of a locale tag, or `None` when unknown.

    A tag is known when CLDR ships locale data for it.
    """
    match = _LOCALE_PATTERN.match(value.strip())
    if match is None:
        return None
    parts = [match.group("language").lower()]
    script = match.group("script")
    if script:
        parts.append(script.title())
    region = match.group("region")
    if region:
        parts.append(region.upper())
    candidate = "_".join(parts)
    try:
        Locale.parse(candidate)
    except (ValueError, UnknownLocaleError):
        return None
    return candidate


def _assume_utc(value: datetime) -> datetime:
    # Dates without a zone are read as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _url_parts(url: str) -> dict[str, str] | None:
    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError:
        return None
    return {
        "fragment": parsed.fragment,
        "host": parsed.hostname or "",
        "password": parsed.password or "",
        "path": parsed.path,
        "port": "" if port is None else str(port),
        "query": parsed.query,
        "scheme": parsed.scheme,
        "user": parsed.username or "",
    }


class ContentProxyService:
    """Fills an entry from fetched or supplied content.

    Every derived field is validated on its own; a bad value is logged and
    left unset instead of failing the whole entry.
    """

    def __init__(
        self,
        *,
        fetcher: ContentFetcher,
        fetching_error_message: str,
        ignore_hosts: Iterable[str] = (),
        ignore_patterns: Iterable[str] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._fetching_error_message = fetching_error_message
        self._logger = logger if logger is not None else LOGGER
        self._ignore_hosts = frozenset(
            host.strip().lower() for host in ignore_hosts if host.strip()
        )
        self._ignore_patterns: list[re.Pattern[str]] = []
        for pattern in ignore_patterns:
            try:
                self._ignore_patterns.append(re.compile(pattern, re.IGNORECASE))
            except re.error:
                self._logger.warning("invalid redirect ignore pattern skipped pattern=%s", pattern)

    def update_entry(
        self,
        entry: Entry,
        url: str,
        content: FetchedContent | None = None,
        *,
        disable_content_update: bool = False,
    ) -> Entry:
        if content is not None and content.html:
            content = content.model_copy(
                update={"html": self._fetcher.cleanup_html(content.html, url)}
            )

        if (content is None or not content.is_valid()) and not disable_content_update:
            fetched = self._fetcher.fetch_content(url)
            fetched = fetched.model_copy(
                update={"title": sanitize_content_title(fetched.title, fetched.content_type)}
            )
            # A failed fetch must not wipe out content handed over by an importer.
            if content is None or fetched.html != self._fetching_error_message:
                content = fetched
            else:
                self._logger.info(
                    "content fetch failed, keeping supplied content entry_id=%s url=%s",
                    entry.entry_id,
                    url,
                )

        if content is None:
            content = FetchedContent()
        if not content.url:
            content = content.model_copy(update={"url": url})

        if not entry.url and url:
            entry.url = url

        self._stock_entry(entry, content)
        return entry

    def update_language(self, entry: Entry, value: str) -> None:
        # Tags such as fr-FR are stored with an underscore separator.
        normalized = normalize_locale(value.replace("-", "_"))
        if normalized is None:
            self._logger.warning(
                "language validation failed entry_id=%s value=%s",
                entry.entry_id,
                value,
            )
            return
        entry.language = normalized

    def update_preview_picture(self, entry: Entry, value: str) -> None:
        try:
            _HTTP_URL_ADAPTER.validate_python(value)
        except ValidationError as exc:
            self._logger.warning(
                "preview picture validation failed entry_id=%s value=%s errors=%s",
                entry.entry_id,
                value,
                exc.error_count(),
            )
            return
        entry.preview_picture = value

    def update_published_at(self, entry: Entry, value: str | int | datetime) -> None:
        if isinstance(value, datetime):
            entry.published_at = _assume_utc(value)
            return

        raw_value = str(value).strip()
        try:
            if _TIMESTAMP_PATTERN.match(raw_value):
                published_at = datetime.fromtimestamp(int(raw_value), tz=UTC)
            else:
                published_at = date_parser.parse(raw_value)
        except (ValueError, OverflowError, OSError):
            self._logger.warning(
                "error while defining date entry_id=%s url=%s date=%s",
                entry.entry_id,
                entry.url,
                value,
                exc_info=True,
            )
            return
        entry.published_at = _assume_utc(published_at)

    def set_entry_domain_name(self, entry: Entry) -> None:
        if not entry.url:
            return
        try:
            host = urlsplit(entry.url).hostname
        except ValueError:
            return
        if host:
            entry.domain_name = host

    def set_default_entry_title(self, entry: Entry) -> None:
        """Title an entry after its URL: path basename, else the host."""
        if not entry.url:
            return
        try:
            parsed = urlsplit(entry.url)
        except ValueError:
            return
        title = PurePosixPath(parsed.path).name if parsed.path else ""
        if not title:
            title = parsed.hostname or ""
        if title:
            entry.title = title

    def update_origin_url(self, entry: Entry, url: str | None) -> bool:
        """Follow a redirect from the entry URL to the content URL.

        Returns `False` when nothing redirect-worthy happened. The original
        URL is kept as `origin_url` unless it points at a known redirector or
        only differs cosmetically (trailing slash, encoding, scheme, fragment).
        """
        if not url or entry.url == url:
            return False
        if not entry.url:
            entry.url = url
            return False

        if self.is_ignored_url(entry.url):
            entry.url = url
            return False

        entry_parts = _url_parts(entry.url)
        content_parts = _url_parts(url)
        if entry_parts is None or content_parts is None:
            diff_keys = ["unparsable"]
        else:
            diff_keys = [key for key in _URL_PARTS if entry_parts[key] != content_parts[key]]

        if diff_keys == ["path"]:
            assert entry_parts is not None and content_parts is not None
            if (
                entry_parts["path"] + "/" == content_parts["path"]
                or unquote(entry_parts["path"]) == content_parts["path"]
            ):
                entry.url = url
        elif diff_keys == ["scheme"]:
            entry.url = url
        elif diff_keys == ["fragment"]:
            pass
        else:
            if not entry.origin_url:
                entry.origin_url = entry.url
            entry.url = url
        return True

    def is_ignored_url(self, url: str) -> bool:
        """Whether `url` belongs to a redirector listed in the ignore list."""
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            host = ""
        if host and any(
            host == ignored or host.endswith(f".{ignored}") for ignored in self._ignore_hosts
        ):
            return True
        return any(pattern.search(url) for pattern in self._ignore_patterns)

    def _stock_entry(self, entry: Entry, content: FetchedContent) -> None:
        self.update_origin_url(entry, content.url)
        self.set_entry_domain_name(entry)

        if content.title:
            entry.title = content.title

        html = content.html
        if not html:
            html = self._fetching_error_message
            if content.description:
                html = f"{html}{SHORT_DESCRIPTION_INTRO}{content.description}"
        entry.content = html
        entry.reading_time = estimate_reading_time(html)

        if content.status:
            entry.http_status = content.status
        if content.authors:
            entry.published_by = list(content.authors)
        if content.date:
            self.update_published_at(entry, content.date)
        if content.language:
            self.update_language(entry, content.language)

        preview_picture_url = content.preview_image or ""
        # Content that is itself an image is its own preview.
        if image_extension_from_mime(content.content_type) is not None and content.url:
            preview_picture_url = content.url
        elif not preview_picture_url:
            self._logger.debug("no preview image declared, using the first image of the content")
            first_image = first_image_url(content.html)
            if first_image is not None and content.url:
                preview_picture_url = resolve_image_url(content.url, first_image) or ""
        if preview_picture_url:
            self.update_preview_picture(entry, preview_picture_url)

        if content.content_type:
            entry.mimetype = content.content_type

        if not entry.title:
            self.set_default_entry_title(entry)
