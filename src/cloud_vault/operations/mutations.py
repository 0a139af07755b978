"""Mutating vault operations: folders, uploads, bin moves and restores."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cloud_vault.errors import ValidationError
from cloud_vault.operations.batch import run_batch
from cloud_vault.storage.keys import folder_path, join_path
from cloud_vault.storage.transfer import DEFAULT_CONTENT_TYPE

if TYPE_CHECKING:
    from cloud_vault.gateway.client import ControlPlaneClient
    from cloud_vault.results import BatchOutcome
    from cloud_vault.storage.keys import KeyCodec
    from cloud_vault.storage.transfer import Uploader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadItem:
    """One local file queued for upload.

    Attributes:
        name: Name relative to the destination folder. May contain ``/`` to
            keep a dropped directory's structure (``"photos/2024/a.jpg"``).
        content_type: Declared MIME type, if known.
        data: In-memory content; takes precedence over ``path``.
        path: Local file read at upload time.
    """

    name: str
    content_type: str | None = None
    data: bytes | None = None
    path: Path | None = None

    @classmethod
    def from_path(cls, path: str | Path, root: str | Path | None = None) -> UploadItem:
        """Build an item for a local file.

        When ``root`` is given the item keeps its path relative to it,
        otherwise only the file name is used.
        """
        local = Path(path)
        name = local.relative_to(root).as_posix() if root is not None else local.name
        content_type, _ = mimetypes.guess_type(local.name)
        return cls(name=name, content_type=content_type, path=local)

    async def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise ValidationError(f"Nothing to upload for {self.name}")
        return await asyncio.to_thread(self.path.read_bytes)


class MutationOperations:
    """Control-plane and object-store calls that change server state.

    These calls never touch client-visible state; the session refreshes
    listings once they settle.
    """

    def __init__(self, gateway: ControlPlaneClient, codec: KeyCodec, uploader: Uploader) -> None:
        """Initialise the mutation operations.

        Args:
            gateway: Control-plane client.
            codec: Key codec for composing storage keys.
            uploader: Backend writing uploaded bytes.
        """
        self._gateway = gateway
        self._codec = codec
        self._uploader = uploader

    async def create_folder(self, user_id: str, name: str, current_path: str) -> str:
        """Create an empty folder marker inside ``current_path``.

        Whether the folder already exists is left to the control plane.

        Returns:
            Relative path of the new folder (trailing slash included).

        Raises:
            ValidationError: If the name is blank.
        """
        if not name.strip():
            raise ValidationError("Folder name cannot be empty")
        target = folder_path(current_path, name.strip())
        key = self._codec.to_storage_key(target, user_id)
        await self._gateway.request("create_folder", key=key)
        logger.info("[create_folder] created folder; path:%s", target)
        return target

    async def _upload_one(self, user_id: str, relative_path: str, item: UploadItem) -> str:
        key = self._codec.to_storage_key(relative_path, user_id)
        data = await item.read()
        content_type = item.content_type or DEFAULT_CONTENT_TYPE
        await self._uploader.upload(key, data, content_type)
        logger.debug(
            "[upload] transferred; path:%s;content_type:%s;bytes:%d",
            relative_path,
            content_type,
            len(data),
        )
        return relative_path

    async def upload(
        self, user_id: str, items: list[UploadItem], current_path: str
    ) -> BatchOutcome:
        """Upload every item concurrently into ``current_path``.

        All transfers settle before this returns; a failed transfer neither
        cancels nor rolls back the others.

        Returns:
            BatchOutcome keyed by destination relative path.

        Raises:
            ValidationError: If the batch is empty or two items share a
                destination path.
        """
        if not items:
            raise ValidationError("No files to upload")
        destinations = [join_path(current_path, item.name) for item in items]
        if len(set(destinations)) != len(destinations):
            raise ValidationError("Two files in the batch share the same name")

        _, outcome = await run_batch(
            [
                (dest, self._upload_one(user_id, dest, item))
                for dest, item in zip(destinations, items, strict=True)
            ]
        )
        logger.info(
            "[upload] batch settled; succeeded:%d;failed:%d",
            len(outcome.succeeded),
            len(outcome.failed),
        )
        return outcome

    async def move_to_bin(self, user_id: str, relative_path: str) -> None:
        """Soft-delete one file by moving its key into the bin.

        Args:
            user_id: Owner of the file.
            relative_path: User-relative path of the file.

        Raises:
            ValidationError: If the path cannot be encoded as a key.
        """
        key = self._codec.to_storage_key(relative_path, user_id)
        await self._gateway.request("move_to_bin", key=key)
        logger.info("[move_to_bin] moved; path:%s", relative_path)

    async def restore_from_bin(self, user_id: str, relative_path: str) -> None:
        """Move one file from the bin back to its original path.

        Args:
            user_id: Owner of the file.
            relative_path: Path of the file as listed in the bin.

        Raises:
            ValidationError: If the path cannot be encoded as a key.
        """
        key = self._codec.to_storage_key(relative_path, user_id, in_bin=True)
        await self._gateway.request("restore_from_bin", key=key)
        logger.info("[restore_from_bin] restored; path:%s", relative_path)
