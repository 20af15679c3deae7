from __future__ import annotations

import logging

from structlog.contextvars import bind_contextvars, reset_contextvars

from article_ingest.models.entry_contracts import Entry, FetchedContent
from article_ingest.services.content_proxy_service import ContentProxyService
from article_ingest.services.image_download_service import ImageDownloadService
from article_ingest.telemetry import TelemetryClient

LOGGER = logging.getLogger("article_ingest.pipeline")


class EntryPipelineService:
    def __init__(
        self,
        *,
        content_proxy: ContentProxyService,
        image_downloader: ImageDownloadService,
        images_enabled: bool,
        telemetry: TelemetryClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._content_proxy = content_proxy
        self._image_downloader = image_downloader
        self._images_enabled = images_enabled
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._logger = logger if logger is not None else LOGGER

    @property
    def images_enabled(self) -> bool:
        return self._images_enabled

    def ingest(
        self,
        entry: Entry,
        url: str,
        content: FetchedContent | None = None,
        *,
        disable_content_update: bool = False,
    ) -> Entry:
        """Normalize `entry` from `url`/`content`, then localize its images.

        The caller persists the returned entry.
        """
        tokens = bind_contextvars(entry_id=entry.entry_id)
        try:
            self._content_proxy.update_entry(
                entry,
                url,
                content,
                disable_content_update=disable_content_update,
            )
            return self.on_entry_saved(entry)
        finally:
            reset_contextvars(**tokens)

    def on_entry_saved(self, entry: Entry) -> Entry:
        if not self._images_enabled:
            self._logger.debug("image localization disabled entry_id=%s", entry.entry_id)
            return entry

        page_url = entry.url or ""
        with self._telemetry.timed("entry.images.localized", entry_id=entry.entry_id) as event:
            if entry.content:
                html = self._image_downloader.process_html(entry.entry_id, entry.content, page_url)
                rewritten = html != entry.content
                event["images_rewritten"] = rewritten
                if rewritten:
                    self._logger.debug("entry html updated entry_id=%s", entry.entry_id)
                    entry.content = html

            preview_localized = False
            if entry.preview_picture:
                preview_picture = self._image_downloader.process_single_image(
                    entry.entry_id,
                    entry.preview_picture,
                    page_url,
                )
                if preview_picture is not None:
                    self._logger.debug("entry preview picture updated entry_id=%s", entry.entry_id)
                    entry.preview_picture = preview_picture
                    preview_localized = True
            event["preview_localized"] = preview_localized
        return entry

    def on_entry_deleted(self, entry_id: int) -> None:
        if not self._images_enabled:
            self._logger.debug("image localization disabled entry_id=%s", entry_id)
            return
        self._image_downloader.remove_images(entry_id)
        self._telemetry.emit("entry.images.removed", entry_id=entry_id)
