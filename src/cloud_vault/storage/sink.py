"""Client-side save targets for downloaded files and archives."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from cloud_vault.config import VaultConfig
    from cloud_vault.storage.transfer import LinkTransfer

logger = logging.getLogger(__name__)

FALLBACK_FILENAME = "download"


def safe_filename(suggested_name: str) -> str:
    """Flatten a relative path into a single file name.

    Path separators become underscores so the result never leaves the
    target directory.
    """
    flattened = suggested_name.strip("/").replace("/", "_").replace("\\", "_")
    if flattened in ("", ".", ".."):
        return FALLBACK_FILENAME
    return flattened


class SaveSink(Protocol):
    """Where downloaded content ends up."""

    async def save_link(self, url: str, suggested_name: str) -> Path: ...

    async def save_bytes(self, data: bytes, suggested_name: str) -> Path: ...


class DirectorySink:
    """Saves downloads into a local directory."""

    def __init__(self, download_dir: str, transfer: LinkTransfer) -> None:
        self._root = Path(download_dir)
        self._transfer = transfer

    def _target(self, suggested_name: str) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root / safe_filename(suggested_name)

    async def save_link(self, url: str, suggested_name: str) -> Path:
        target = self._target(suggested_name)
        written = await self._transfer.download_to(url, target)
        logger.info("[save_link] saved; path:%s;bytes:%d", target, written)
        return target

    async def save_bytes(self, data: bytes, suggested_name: str) -> Path:
        target = self._target(suggested_name)
        await asyncio.to_thread(target.write_bytes, data)
        logger.info("[save_bytes] saved; path:%s;bytes:%d", target, len(data))
        return target


def directory_sink_from_config(config: VaultConfig, transfer: LinkTransfer) -> DirectorySink:
    """Construct a DirectorySink from application configuration."""
    return DirectorySink(download_dir=config.download_dir, transfer=transfer)
