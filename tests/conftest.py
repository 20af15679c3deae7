from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from article_ingest.dependencies import reset_cached_dependencies
from article_ingest.repositories.image_store_repository import ImageStoreRepository
from article_ingest.services.image_download_service import ImageDownloadService
from tests.fakes import PUBLIC_BASE_URL, FakeImageHttpClient


@pytest.fixture(autouse=True)
def _reset_dependencies() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()


@pytest.fixture
def image_folder(tmp_path: Path) -> Path:
    return tmp_path / "assets" / "images"


@pytest.fixture
def image_store(image_folder: Path) -> ImageStoreRepository:
    return ImageStoreRepository(image_folder)


@pytest.fixture
def http_client() -> FakeImageHttpClient:
    return FakeImageHttpClient()


@pytest.fixture
def downloader(
    image_store: ImageStoreRepository,
    http_client: FakeImageHttpClient,
) -> ImageDownloadService:
    return ImageDownloadService(
        image_store=image_store,
        public_base_url=PUBLIC_BASE_URL,
        http_client=http_client,
        fetch_timeout_seconds=5.0,
    )
