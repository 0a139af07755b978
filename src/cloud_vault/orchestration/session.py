"""Vault session — runs user operations and reconciles client-visible state."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from cloud_vault.errors import AuthNotReady, VaultError
from cloud_vault.gateway.client import control_plane_client_from_config
from cloud_vault.identity.provider import identity_provider_from_config
from cloud_vault.listing.models import Scope
from cloud_vault.listing.service import ListingService
from cloud_vault.operations.mutations import MutationOperations, UploadItem
from cloud_vault.operations.retrieval import RetrievalOperations
from cloud_vault.results import NotificationChannel, OperationResult
from cloud_vault.state import VaultState
from cloud_vault.storage.keys import key_codec_from_config
from cloud_vault.storage.sink import directory_sink_from_config
from cloud_vault.storage.transfer import LinkTransfer, uploader_from_config

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloud_vault.config import VaultConfig
    from cloud_vault.gateway.client import ControlPlaneClient
    from cloud_vault.identity.provider import IdentityProvider
    from cloud_vault.storage.transfer import Uploader

logger = logging.getLogger(__name__)


class VaultSession:
    """Drives every user-level vault operation for one signed-in user.

    Each public operation returns an OperationResult and publishes its
    message on the notification channel; VaultError is never raised to the
    caller. The session is the only writer of ``state``, and it replaces
    listings only after a fetch succeeds.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        listing: ListingService,
        mutations: MutationOperations,
        retrieval: RetrievalOperations,
        state: VaultState | None = None,
        notifications: NotificationChannel | None = None,
        archive_name: str = "download.zip",
    ) -> None:
        """Initialise the session.

        Args:
            identity: Provider of the current identity.
            listing: Listing service for folder and bin scopes.
            mutations: Operations that change server state.
            retrieval: Download operations.
            state: Initial client state (root folder, empty listings by default).
            notifications: Channel user-facing messages are published on.
            archive_name: Archive file name reported after batch downloads.
        """
        self._identity = identity
        self._listing = listing
        self._mutations = mutations
        self._retrieval = retrieval
        self.state = state or VaultState()
        self.notifications = notifications or NotificationChannel()
        self._archive_name = archive_name
        self._closers: list[object] = []

    def own(self, *resources: object) -> None:
        """Register resources whose ``aclose`` runs when the session closes."""
        self._closers.extend(resources)

    async def aclose(self) -> None:
        for resource in self._closers:
            await resource.aclose()  # type: ignore[attr-defined]
        self._closers.clear()

    async def __aenter__(self) -> VaultSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _user_id(self) -> str:
        identity = await self._identity.current_identity()
        if identity is None:
            raise AuthNotReady("Not signed in")
        return identity.user_id

    def _publish(self, result: OperationResult) -> OperationResult:
        self.notifications.publish(result.message)
        return result

    def _fail(self, prefix: str, error: VaultError, payload: object = None) -> OperationResult:
        logger.warning("[%s] operation failed; kind:%s;error:%s", prefix, error.kind, error)
        return self._publish(OperationResult.failure(f"{prefix}: {error}", error, payload))

    # ------------------------------------------------------------------
    # Listings and navigation
    # ------------------------------------------------------------------

    async def refresh(self) -> OperationResult:
        """Re-fetch the current folder; a failure keeps the previous listing."""
        path = self.state.current_path
        try:
            user_id = await self._user_id()
            listing = await self._listing.list(user_id, Scope.folder(path))
        except VaultError as exc:
            return self._fail("Failed to fetch files", exc)
        self.state.apply_listing(path, listing)
        return OperationResult.success(
            f"{len(listing.files)} file(s), {len(listing.folders)} folder(s)", listing
        )

    async def refresh_bin(self) -> OperationResult:
        """Re-fetch the bin; a failure keeps the previous bin listing."""
        try:
            user_id = await self._user_id()
            listing = await self._listing.list(user_id, Scope.bin())
        except VaultError as exc:
            return self._fail("Failed to fetch bin", exc)
        self.state.apply_bin(listing)
        return OperationResult.success(f"{len(listing.files)} file(s) in bin", listing)

    async def refresh_all(self) -> tuple[OperationResult, OperationResult]:
        """Refresh the current folder and the bin concurrently."""
        files, bin_files = await asyncio.gather(self.refresh(), self.refresh_bin())
        return files, bin_files

    async def navigate(self, path: str) -> OperationResult:
        """Move to ``path`` (clearing the selection) and list it."""
        self.state.navigate(path)
        return await self.refresh()

    async def open_folder(self, name: str) -> OperationResult:
        """Descend into a child folder of the current path and list it."""
        self.state.open_folder(name)
        return await self.refresh()

    async def go_up(self) -> OperationResult:
        """Move to the parent folder and list it."""
        self.state.go_up()
        return await self.refresh()

    def select(self, relative_path: str) -> OperationResult:
        """Add a file from the current listing to the selection."""
        try:
            self.state.select(relative_path)
        except VaultError as exc:
            return self._fail("Selection failed", exc)
        return OperationResult.success(f"{len(self.state.selection)} file(s) selected")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_folder(self, name: str) -> OperationResult:
        """Create ``name`` under the current path, refreshing on success."""
        try:
            user_id = await self._user_id()
            created = await self._mutations.create_folder(
                user_id, name, self.state.current_path
            )
        except VaultError as exc:
            return self._fail("Folder creation failed", exc)
        result = self._publish(OperationResult.success(f'Folder "{name.strip()}" created', created))
        await self.refresh()
        return result

    async def upload(self, items: list[UploadItem]) -> OperationResult:
        """Upload a batch, then refresh the current folder exactly once.

        The batch is reported as failed if any single transfer failed; the
        per-file BatchOutcome is attached as the payload either way.
        """
        try:
            user_id = await self._user_id()
            outcome = await self._mutations.upload(user_id, items, self.state.current_path)
        except VaultError as exc:
            return self._fail("Upload failed", exc)

        if outcome.ok:
            result = self._publish(
                OperationResult.success(f"Uploaded {len(outcome.succeeded)} file(s)", outcome)
            )
        else:
            error = outcome.first_error()
            wrapped = error if isinstance(error, VaultError) else VaultError(str(error))
            result = self._fail("Upload failed", wrapped, outcome)
        await self.refresh()
        return result

    async def move_to_bin(self, relative_path: str) -> OperationResult:
        """Soft-delete a file, then refresh the folder and the bin."""
        try:
            user_id = await self._user_id()
            await self._mutations.move_to_bin(user_id, relative_path)
        except VaultError as exc:
            return self._fail("Move failed", exc)
        result = self._publish(OperationResult.success(f'Moved "{relative_path}" to bin'))
        await self.refresh_all()
        return result

    async def restore_from_bin(self, relative_path: str) -> OperationResult:
        """Restore a file from the bin, then refresh the folder and the bin."""
        try:
            user_id = await self._user_id()
            await self._mutations.restore_from_bin(user_id, relative_path)
        except VaultError as exc:
            return self._fail("Restore failed", exc)
        result = self._publish(OperationResult.success(f'Restored "{relative_path}"'))
        await self.refresh_all()
        return result

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def download(self, relative_path: str) -> OperationResult:
        """Save one file through the sink; no listing is refreshed."""
        try:
            user_id = await self._user_id()
            saved = await self._retrieval.download(user_id, relative_path)
        except VaultError as exc:
            return self._fail("Download failed", exc)
        return self._publish(OperationResult.success(f'Downloaded "{relative_path}"', saved))

    async def download_selected(self) -> OperationResult:
        """Bundle the selected files into one archive.

        The selection is cleared only when the archive was saved.
        """
        try:
            user_id = await self._user_id()
            saved, outcome = await self._retrieval.download_many(user_id, self.state.selection)
        except VaultError as exc:
            return self._fail("Download failed", exc)

        if saved is None:
            error = outcome.first_error()
            wrapped = error if isinstance(error, VaultError) else VaultError(str(error))
            return self._fail("Download failed", wrapped, outcome)

        self.state.clear_selection()
        return self._publish(
            OperationResult.success(
                f"Downloaded {len(outcome.succeeded)} file(s) as {self._archive_name}", saved
            )
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def sign_in(self, prompt: Callable[[str], None]) -> OperationResult:
        """Sign in, then load the root folder and the bin for the new user.

        Args:
            prompt: Receives the instructions the user follows to sign in.

        Returns:
            OperationResult whose payload is the signed-in Identity.
        """
        try:
            identity = await self._identity.sign_in(prompt)
        except VaultError as exc:
            return self._fail("Sign-in failed", exc)
        self.state = VaultState()
        name = identity.username or identity.user_id
        result = self._publish(OperationResult.success(f"Signed in as {name}", identity))
        await self.refresh_all()
        return result

    async def sign_out(self) -> OperationResult:
        """Forget the cached account and reset the client state."""
        await self._identity.sign_out()
        self.state = VaultState()
        return self._publish(OperationResult.success("Signed out"))


def vault_session_from_config(config: VaultConfig) -> VaultSession:
    """Construct a VaultSession from application configuration.

    Creates the identity provider, control-plane client, key codec, link
    transfer, upload backend and save sink from the config, then wires them
    into a session that owns (and closes) the network resources.

    Args:
        config: Application configuration instance.

    Returns:
        Configured VaultSession instance.
    """
    identity = identity_provider_from_config(config)
    gateway: ControlPlaneClient = control_plane_client_from_config(config, identity)
    codec = key_codec_from_config(config)
    transfer = LinkTransfer()
    uploader: Uploader = uploader_from_config(config, gateway, transfer)
    sink = directory_sink_from_config(config, transfer)

    session = VaultSession(
        identity=identity,
        listing=ListingService(gateway=gateway, codec=codec),
        mutations=MutationOperations(gateway=gateway, codec=codec, uploader=uploader),
        retrieval=RetrievalOperations(
            gateway=gateway,
            codec=codec,
            transfer=transfer,
            sink=sink,
            archive_name=config.archive_name,
            public_base_url=config.public_base_url,
        ),
        archive_name=config.archive_name,
    )
    session.own(uploader, transfer, gateway)
    return session
