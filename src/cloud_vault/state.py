"""Navigation and selection state mirrored for the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass, field

from cloud_vault.errors import ValidationError
from cloud_vault.listing.models import DirectoryListing
from cloud_vault.storage.keys import folder_path, normalize_folder, parent_folder


@dataclass
class VaultState:
    """Client-visible mirror of the vault for one session.

    ``listing_path`` records which folder ``files`` and ``folders`` were
    fetched for. After a failed refresh it can lag behind ``current_path``,
    since a failed fetch never replaces the last good listing.

    Navigation clears the selection: a download started from a new folder
    only ever sees files picked there.
    """

    current_path: str = ""
    listing_path: str | None = None
    files: tuple[str, ...] = ()
    folders: tuple[str, ...] = ()
    bin_files: tuple[str, ...] = ()
    selection: set[str] = field(default_factory=set)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def navigate(self, path: str) -> None:
        """Make ``path`` the current folder and clear the selection.

        Args:
            path: Folder path, with or without a trailing slash.
        """
        self.current_path = normalize_folder(path)
        self.selection.clear()

    def open_folder(self, name: str) -> None:
        """Descend into a child folder of the current path."""
        self.navigate(folder_path(self.current_path, name))

    def go_up(self) -> None:
        """Move to the parent of the current folder (root stays at root)."""
        self.navigate(parent_folder(self.current_path))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, path: str) -> None:
        """Add a file from the current listing to the selection.

        Raises:
            ValidationError: If ``path`` is not one of the listed files.
        """
        if path not in self.files:
            raise ValidationError(f"Not in the current listing: {path}")
        self.selection.add(path)

    def deselect(self, path: str) -> None:
        """Remove ``path`` from the selection if present."""
        self.selection.discard(path)

    def toggle(self, path: str) -> None:
        """Flip the selection state of one listed file."""
        if path in self.selection:
            self.deselect(path)
        else:
            self.select(path)

    def clear_selection(self) -> None:
        self.selection.clear()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def apply_listing(self, path: str, listing: DirectoryListing) -> None:
        """Replace the folder listing and drop selections that disappeared."""
        self.listing_path = normalize_folder(path)
        self.files = listing.files
        self.folders = listing.folders
        self.selection.intersection_update(listing.files)

    def apply_bin(self, listing: DirectoryListing) -> None:
        """Replace the bin listing."""
        self.bin_files = listing.files
