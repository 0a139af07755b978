"""Listing service — fetches and partitions the contents of one scope."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from cloud_vault.listing.models import FIELD_FILES, DirectoryListing, Scope
from cloud_vault.storage.keys import SEPARATOR

if TYPE_CHECKING:
    from cloud_vault.gateway.client import ControlPlaneClient
    from cloud_vault.storage.keys import KeyCodec

logger = logging.getLogger(__name__)


def partition(relative_paths: Iterable[str], scope: Scope) -> DirectoryListing:
    """Split relative paths into files and direct child folders of a scope.

    An entry with no separator beyond the scope is a file. Anything deeper
    is attributed to its immediate child folder, each folder reported once
    in order of first appearance. Folder markers (trailing slash) only
    contribute their folder. The bin scope reports files only.

    Args:
        relative_paths: User-relative paths as returned by the codec.
        scope: The scope the paths were listed under.

    Returns:
        DirectoryListing with user-relative file and folder paths.
    """
    files: list[str] = []
    folders: list[str] = []
    seen_files: set[str] = set()
    seen_folders: set[str] = set()

    for path in relative_paths:
        if scope.in_bin:
            if path and not path.endswith(SEPARATOR) and path not in seen_files:
                seen_files.add(path)
                files.append(path)
            continue

        if not path.startswith(scope.path):
            continue
        remainder = path[len(scope.path) :]
        if not remainder:
            # The scope's own folder marker.
            continue

        if SEPARATOR not in remainder:
            if path not in seen_files:
                seen_files.add(path)
                files.append(path)
            continue

        folder = scope.path + remainder.split(SEPARATOR, 1)[0]
        if folder not in seen_folders:
            seen_folders.add(folder)
            folders.append(folder)

    return DirectoryListing(files=tuple(files), folders=tuple(folders))


class ListingService:
    """Lists a folder scope or the bin through the control plane."""

    def __init__(self, gateway: ControlPlaneClient, codec: KeyCodec) -> None:
        """Initialise the listing service.

        Args:
            gateway: Control-plane client issuing the list operation.
            codec: Key codec for building the prefix and decoding keys.
        """
        self._gateway = gateway
        self._codec = codec

    async def list(self, user_id: str, scope: Scope) -> DirectoryListing:
        """Fetch and partition the entries visible at ``scope``.

        Gateway errors propagate unchanged; the caller decides what to keep
        on screen.
        """
        prefix = self._codec.scope_prefix(user_id, scope.path, in_bin=scope.in_bin)
        response = await self._gateway.request("list", key=prefix, params={"user": user_id})
        keys = response.get(FIELD_FILES) or []
        if not scope.in_bin:
            # Soft-deleted keys live under the user prefix too.
            bin_prefixes = (
                self._codec.scope_prefix(user_id, in_bin=True),
                f"{self._codec.bin_segment}{SEPARATOR}",
            )
            keys = [key for key in keys if not key.startswith(bin_prefixes)]
        relative = [self._codec.to_relative_path(key, user_id) for key in keys]
        listing = partition(relative, scope)
        logger.info(
            "[list] listed scope; path:%s;in_bin:%s;file_count:%d;folder_count:%d",
            scope.path,
            scope.in_bin,
            len(listing.files),
            len(listing.folders),
        )
        return listing
