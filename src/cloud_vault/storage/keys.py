"""Mapping between user-facing relative paths and absolute storage keys."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloud_vault.errors import ValidationError

if TYPE_CHECKING:
    from cloud_vault.config import VaultConfig

SEPARATOR = "/"


def _has_control_characters(value: str) -> bool:
    return any(ord(ch) < 32 or ord(ch) == 127 for ch in value)


def normalize_folder(path: str) -> str:
    """Return a folder path with no leading slash and one trailing slash.

    The root folder is the empty string.
    """
    stripped = path.strip(SEPARATOR)
    return f"{stripped}{SEPARATOR}" if stripped else ""


def join_path(current_path: str, name: str) -> str:
    """Compose the relative path of ``name`` inside ``current_path``."""
    return f"{normalize_folder(current_path)}{name.lstrip(SEPARATOR)}"


def folder_path(current_path: str, name: str) -> str:
    """Compose the relative path of a child folder, trailing slash included."""
    return normalize_folder(join_path(current_path, name.strip(SEPARATOR)))


def parent_folder(path: str) -> str:
    """Return the folder containing ``path`` (root for top-level entries)."""
    stripped = path.rstrip(SEPARATOR)
    if SEPARATOR not in stripped:
        return ""
    return stripped.rsplit(SEPARATOR, 1)[0] + SEPARATOR


class KeyCodec:
    """Translate relative paths to storage keys and back.

    Keys have the form ``<visibility>/<user_id>/[<bin>/]<relative path>``.
    The codec holds only immutable configuration and performs no I/O.
    """

    def __init__(self, visibility: str = "protected", bin_segment: str = "bin") -> None:
        """Initialise the codec.

        Args:
            visibility: Fixed leading key segment shared by every user.
            bin_segment: Key segment that marks soft-deleted items.
        """
        self._visibility = visibility.strip(SEPARATOR)
        self._bin_segment = bin_segment.strip(SEPARATOR)

    @property
    def bin_segment(self) -> str:
        return self._bin_segment

    def user_prefix(self, user_id: str) -> str:
        """Return ``<visibility>/<user_id>/``."""
        return f"{self._visibility}{SEPARATOR}{user_id}{SEPARATOR}"

    def scope_prefix(self, user_id: str, path: str = "", in_bin: bool = False) -> str:
        """Return the key prefix bounding a listing of ``path`` (or of the bin)."""
        prefix = self.user_prefix(user_id)
        if in_bin:
            prefix += f"{self._bin_segment}{SEPARATOR}"
        return prefix + normalize_folder(path)

    def to_storage_key(self, relative_path: str, user_id: str, in_bin: bool = False) -> str:
        """Build the absolute storage key for a relative path.

        Args:
            relative_path: User-facing path, e.g. ``"docs/report.pdf"`` or ``"docs/"``.
            user_id: Identifier of the owning user.
            in_bin: Whether to address the soft-deleted copy.

        Returns:
            The fully-qualified storage key.

        Raises:
            ValidationError: If the path is empty, has a leading slash,
                contains control characters, or starts with the bin segment
                (which would make the key ambiguous).
        """
        if not relative_path or not relative_path.strip():
            raise ValidationError("Path cannot be empty")
        if _has_control_characters(relative_path):
            raise ValidationError(f"Path contains control characters: {relative_path!r}")
        if relative_path.startswith(SEPARATOR):
            raise ValidationError(f"Path must be relative: {relative_path}")
        if relative_path.split(SEPARATOR, 1)[0] == self._bin_segment:
            raise ValidationError(f"'{self._bin_segment}' is reserved: {relative_path}")
        return self.scope_prefix(user_id, in_bin=in_bin) + relative_path

    def to_relative_path(self, storage_key: str, user_id: str) -> str:
        """Strip the user (and bin) prefix from a storage key.

        A key that does not start with the expected user prefix is returned
        unchanged.
        """
        prefix = self.user_prefix(user_id)
        if not storage_key.startswith(prefix):
            return storage_key
        remainder = storage_key[len(prefix) :]
        bin_prefix = f"{self._bin_segment}{SEPARATOR}"
        if remainder.startswith(bin_prefix):
            remainder = remainder[len(bin_prefix) :]
        return remainder


def key_codec_from_config(config: VaultConfig) -> KeyCodec:
    """Construct a KeyCodec from application configuration."""
    return KeyCodec(visibility=config.visibility, bin_segment=config.bin_segment)
