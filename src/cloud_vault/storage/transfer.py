"""Object-store byte transfers: time-limited links and direct blob writes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx
from azure.core.exceptions import AzureError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from cloud_vault.config import UPLOAD_MODE_DIRECT
from cloud_vault.errors import TransferError
from cloud_vault.listing.models import FIELD_URL

if TYPE_CHECKING:
    from pathlib import Path

    from cloud_vault.config import VaultConfig
    from cloud_vault.gateway.client import ControlPlaneClient

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
STREAM_CHUNK_BYTES = 64 * 1024
PARTIAL_SUFFIX = ".part"


class LinkTransfer:
    """Reads and writes bytes through time-limited object-store links.

    Links carry their own authorization, so no bearer token is attached.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http = http_client or httpx.AsyncClient(follow_redirects=True)

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            logger.warning(
                "[link_transfer] %s rejected; status:%d", action, response.status_code
            )
            raise TransferError(response.status_code, response.reason_phrase or action)

    async def fetch(self, url: str) -> bytes:
        """GET the object behind a link and return its bytes.

        Raises:
            TransferError: On a transport failure or a status >= 400.
        """
        try:
            response = await self._http.get(url)
        except httpx.TransportError as exc:
            raise TransferError(0, f"Could not reach object store: {exc}") from exc
        self._check(response, "read")
        return response.content

    async def download_to(self, url: str, destination: Path) -> int:
        """Stream the object behind a link into a local file.

        Bytes land in a ``.part`` sibling that replaces ``destination`` only
        once the stream completes; an existing file survives a failed transfer.

        Returns:
            Number of bytes written.

        Raises:
            TransferError: On a transport failure or a status >= 400.
        """
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        written = 0
        try:
            async with self._http.stream("GET", url) as response:
                self._check(response, "read")
                with open(partial, "wb") as fh:
                    async for chunk in response.aiter_bytes(STREAM_CHUNK_BYTES):
                        fh.write(chunk)
                        written += len(chunk)
        except httpx.TransportError as exc:
            partial.unlink(missing_ok=True)
            logger.warning("[download_to] stream interrupted; destination:%s", destination)
            raise TransferError(0, f"Could not reach object store: {exc}") from exc
        except TransferError:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(destination)
        return written

    async def put(self, url: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        """PUT bytes to an upload link with the given content type.

        Raises:
            TransferError: On a transport failure or a status >= 400.
        """
        try:
            response = await self._http.put(
                url, content=data, headers={"Content-Type": content_type}
            )
        except httpx.TransportError as exc:
            raise TransferError(0, f"Could not reach object store: {exc}") from exc
        self._check(response, "write")


class Uploader(Protocol):
    """Writes one object's bytes under a storage key."""

    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...

    async def aclose(self) -> None: ...


class BrokeredUploader:
    """Asks the control plane for an upload link, then PUTs the bytes to it."""

    def __init__(self, gateway: ControlPlaneClient, transfer: LinkTransfer) -> None:
        self._gateway = gateway
        self._transfer = transfer

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        response = await self._gateway.request(
            "generate_upload_url", key=key, body={"content_type": content_type}
        )
        url = response.get(FIELD_URL)
        if not url:
            raise TransferError(0, f"Control plane returned no upload link for {key}")
        await self._transfer.put(url, data, content_type)
        logger.debug("[upload] wrote via link; key:%s;bytes:%d", key, len(data))

    async def aclose(self) -> None:
        # The gateway and link transfer are owned by the session.
        return None


class DirectBlobUploader:
    """Writes bytes straight into a blob container."""

    def __init__(self, storage_connection_string: str, container: str) -> None:
        """Initialise the uploader.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container that holds the vault keys.
        """
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        blob_client = self._blob_service.get_blob_client(container=self._container, blob=key)
        try:
            await blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            logger.warning("[upload] direct blob write failed; key:%s;error:%s", key, exc)
            raise TransferError(getattr(exc, "status_code", None) or 0, str(exc)) from exc
        logger.debug("[upload] wrote blob; container:%s;key:%s", self._container, key)

    async def aclose(self) -> None:
        await self._blob_service.close()


def uploader_from_config(
    config: VaultConfig, gateway: ControlPlaneClient, transfer: LinkTransfer
) -> Uploader:
    """Pick the upload backend named by ``config.upload_mode``.

    Args:
        config: Application configuration instance.
        gateway: Control-plane client used to request upload links.
        transfer: Link transfer used to PUT bytes.

    Returns:
        A DirectBlobUploader in direct mode, otherwise a BrokeredUploader.
    """
    if config.upload_mode == UPLOAD_MODE_DIRECT:
        return DirectBlobUploader(
            storage_connection_string=config.storage_connection_string,
            container=config.storage_container,
        )
    return BrokeredUploader(gateway=gateway, transfer=transfer)
