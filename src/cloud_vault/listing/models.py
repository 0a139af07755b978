"""Data models for listing scopes and directory listings."""

from dataclasses import dataclass

from cloud_vault.storage.keys import normalize_folder

# Control-plane JSON field names
FIELD_FILES = "files"
FIELD_URL = "url"
FIELD_MESSAGE = "message"
FIELD_ERROR = "error"


@dataclass(frozen=True)
class Scope:
    """A folder path, or the bin namespace, bounding one listing query."""

    path: str = ""
    in_bin: bool = False

    @classmethod
    def folder(cls, path: str = "") -> "Scope":
        return cls(path=normalize_folder(path), in_bin=False)

    @classmethod
    def bin(cls) -> "Scope":
        return cls(path="", in_bin=True)


@dataclass(frozen=True)
class DirectoryListing:
    """Files and direct child folders visible at one scope.

    Both sequences hold user-relative paths. Folder entries carry no
    trailing slash; the bin scope never reports folders.
    """

    files: tuple[str, ...] = ()
    folders: tuple[str, ...] = ()
