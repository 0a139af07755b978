"""Read-only vault operations: single downloads and bundled batch downloads."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterable
from typing import TYPE_CHECKING
from urllib.parse import quote

from cloud_vault.errors import TransferError, ValidationError
from cloud_vault.listing.models import FIELD_URL
from cloud_vault.operations.batch import run_batch

if TYPE_CHECKING:
    from pathlib import Path

    from cloud_vault.gateway.client import ControlPlaneClient
    from cloud_vault.results import BatchOutcome
    from cloud_vault.storage.keys import KeyCodec
    from cloud_vault.storage.sink import SaveSink
    from cloud_vault.storage.transfer import LinkTransfer

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_NAME = "download.zip"


def build_archive(contents: dict[str, bytes]) -> bytes:
    """Bundle files into an in-memory ZIP archive, one entry per relative path."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name in sorted(contents):
            archive.writestr(name, contents[name])
    return buffer.getvalue()


class RetrievalOperations:
    """Resolves time-limited links and saves their content client-side."""

    def __init__(
        self,
        gateway: ControlPlaneClient,
        codec: KeyCodec,
        transfer: LinkTransfer,
        sink: SaveSink,
        archive_name: str = DEFAULT_ARCHIVE_NAME,
        public_base_url: str = "",
    ) -> None:
        """Initialise the retrieval operations.

        Args:
            gateway: Control-plane client issuing ``get_file``.
            codec: Key codec for composing storage keys.
            transfer: Link transfer used to fetch bytes.
            sink: Where downloads are saved.
            archive_name: File name given to batch download archives.
            public_base_url: When set, links are built directly against this
                public bucket URL and the control plane is not asked.
        """
        self._gateway = gateway
        self._codec = codec
        self._transfer = transfer
        self._sink = sink
        self._archive_name = archive_name
        self._public_base_url = public_base_url.rstrip("/")

    async def resolve_link(self, user_id: str, relative_path: str) -> str:
        """Return a time-limited read link for a relative path.

        Raises:
            TransferError: If the control plane answers without a link.
        """
        key = self._codec.to_storage_key(relative_path, user_id)
        if self._public_base_url:
            return f"{self._public_base_url}/{quote(key)}"
        response = await self._gateway.request("get_file", key=key)
        url = response.get(FIELD_URL)
        if not url:
            raise TransferError(0, f"Control plane returned no download link for {relative_path}")
        return str(url)

    async def download(self, user_id: str, relative_path: str) -> Path:
        """Save one file, suggesting its relative path as the file name."""
        url = await self.resolve_link(user_id, relative_path)
        saved = await self._sink.save_link(url, relative_path)
        logger.info("[download] saved file; path:%s", relative_path)
        return saved

    async def _fetch_one(self, user_id: str, relative_path: str) -> bytes:
        url = await self.resolve_link(user_id, relative_path)
        return await self._transfer.fetch(url)

    async def download_many(
        self, user_id: str, relative_paths: Iterable[str]
    ) -> tuple[Path | None, BatchOutcome]:
        """Fetch every path concurrently and save them as one archive.

        No archive is produced unless every fetch succeeded.

        Returns:
            A tuple of (saved archive path or None, outcome).

        Raises:
            ValidationError: If no paths are given.
        """
        paths = sorted(set(relative_paths))
        if not paths:
            raise ValidationError("No files selected")

        contents, outcome = await run_batch(
            [(path, self._fetch_one(user_id, path)) for path in paths]
        )
        if not outcome.ok:
            logger.warning(
                "[download_many] batch failed, no archive written; failed:%d;total:%d",
                len(outcome.failed),
                outcome.total,
            )
            return None, outcome

        saved = await self._sink.save_bytes(build_archive(contents), self._archive_name)
        logger.info("[download_many] saved archive; file_count:%d", len(contents))
        return saved, outcome
