from __future__ import annotations

import logging
import os
import tempfile
import zlib
from pathlib import Path

LOGGER = logging.getLogger("article_ingest.image_store")


def crc32_hex(value: str) -> str:
    """Eight lowercase hex digits of the CRC32 of `value`."""
    return f"{zlib.crc32(value.encode('utf-8')) & 0xFFFFFFFF:08x}"


def fanout_path(entry_id: int) -> str:
    """Per-entry folder, spread over two fixed levels of 256 buckets each."""
    hashed_id = crc32_hex(str(entry_id))
    return f"{hashed_id[0:2]}/{hashed_id[2:4]}/{hashed_id}"


class ImageStoreRepository:
    def __init__(self, base_folder: Path, *, logger: logging.Logger | None = None) -> None:
        self._base_folder = base_folder
        self._logger = logger if logger is not None else LOGGER
        self.ensure_folder()

    @property
    def base_folder(self) -> Path:
        return self._base_folder

    def ensure_folder(self) -> None:
        if self._base_folder.is_dir():
            return
        self._base_folder.mkdir(parents=True, exist_ok=True)
        self._logger.debug("image base folder created path=%s", self._base_folder)

    def relative_path(self, entry_id: int) -> str:
        return fanout_path(entry_id)

    def entry_folder(self, entry_id: int) -> Path:
        return self._base_folder / self.relative_path(entry_id)

    def write(self, entry_id: int, filename: str, data: bytes) -> Path:
        """Atomically store `data` as `filename` in the entry folder.

        Either the complete file ends up in place or nothing does.
        """
        folder = self.entry_folder(entry_id)
        folder.mkdir(parents=True, exist_ok=True)
        destination = folder / filename

        file_descriptor, temp_name = tempfile.mkstemp(dir=folder, prefix=".", suffix=".part")
        try:
            with os.fdopen(file_descriptor, "wb") as handle:
                handle.write(data)
            os.replace(temp_name, destination)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return destination

    def list_files(self, entry_id: int) -> list[Path]:
        folder = self.entry_folder(entry_id)
        if not folder.is_dir():
            return []
        return sorted(
            path for path in folder.iterdir() if path.is_file() and not path.name.startswith(".")
        )

    def remove_all(self, entry_id: int) -> None:
        """Delete every stored image of an entry, then its folder.

        Safe to call repeatedly and on entries that never stored anything.
        """
        folder = self.entry_folder(entry_id)
        if not folder.is_dir():
            return

        for path in self.list_files(entry_id):
            try:
                path.unlink()
            except OSError:
                self._logger.warning("image removal failed path=%s", path, exc_info=True)

        try:
            folder.rmdir()
        except OSError:
            self._logger.warning("image folder removal failed path=%s", folder, exc_info=True)
            return
        self._logger.debug("image folder removed entry_id=%s path=%s", entry_id, folder)
