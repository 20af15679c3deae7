from __future__ import annotations

from functools import lru_cache

from article_ingest.config import AppSettings, load_settings
from article_ingest.repositories.image_store_repository import ImageStoreRepository
from article_ingest.services.content_proxy_service import (
    ContentFetcher,
    ContentProxyService,
    PassthroughContentFetcher,
)
from article_ingest.services.entry_pipeline_service import EntryPipelineService
from article_ingest.services.image_download_service import (
    ImageDownloadService,
    UrllibImageHttpClient,
)
from article_ingest.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_image_download_service() -> ImageDownloadService:
    settings = get_settings()
    return ImageDownloadService(
        image_store=ImageStoreRepository(settings.base_image_folder),
        public_base_url=settings.public_base_url,
        http_client=UrllibImageHttpClient(user_agent=settings.image_user_agent),
        fetch_timeout_seconds=settings.image_fetch_timeout_seconds,
    )


def build_content_proxy_service(fetcher: ContentFetcher | None = None) -> ContentProxyService:
    settings = get_settings()
    return ContentProxyService(
        fetcher=fetcher
        if fetcher is not None
        else PassthroughContentFetcher(fetching_error_message=settings.fetching_error_message),
        fetching_error_message=settings.fetching_error_message,
        ignore_hosts=settings.redirect_ignore_hosts,
        ignore_patterns=settings.redirect_ignore_patterns,
    )


def build_entry_pipeline_service(fetcher: ContentFetcher | None = None) -> EntryPipelineService:
    settings = get_settings()
    return EntryPipelineService(
        content_proxy=build_content_proxy_service(fetcher),
        image_downloader=get_image_download_service(),
        images_enabled=settings.images_enabled,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_image_download_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
