"""Control-plane API client with bounded wait for the bearer token."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from cloud_vault.errors import AuthNotReady, NetworkError, RequestRejected
from cloud_vault.listing.models import FIELD_ERROR, FIELD_MESSAGE

if TYPE_CHECKING:
    from cloud_vault.config import VaultConfig
    from cloud_vault.identity.provider import IdentityProvider

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_RETRIES = 2
DEFAULT_TOKEN_BACKOFF_SECONDS = 1.0

# Logical operation name -> (HTTP method, resource path)
OPERATIONS: dict[str, tuple[str, str]] = {
    "list": ("GET", "/file"),
    "create_folder": ("POST", "/file"),
    "generate_upload_url": ("POST", "/file"),
    "get_file": ("GET", "/file"),
    "move_to_bin": ("POST", "/bin"),
    "restore_from_bin": ("POST", "/bin"),
}

NETWORK_GUIDANCE = (
    "the control-plane endpoint may be unreachable or not configured to accept "
    "cross-origin requests from this client"
)


def _error_detail(response: httpx.Response) -> str:
    """Pull the server-supplied message out of an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        detail = data.get(FIELD_MESSAGE) or data.get(FIELD_ERROR)
        if isinstance(detail, dict):
            detail = detail.get(FIELD_MESSAGE)
        if detail:
            return str(detail)
    return response.reason_phrase


class ControlPlaneClient:
    """Authenticated client for the vault control-plane API.

    Holds no mutable state besides the shared HTTP connection pool, so any
    number of requests may be in flight at once.
    """

    def __init__(
        self,
        api_endpoint: str,
        identity: IdentityProvider,
        token_retries: int = DEFAULT_TOKEN_RETRIES,
        token_backoff_seconds: float = DEFAULT_TOKEN_BACKOFF_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            api_endpoint: Base URL of the control plane.
            identity: Provider of the bearer token.
            token_retries: How many times to wait for a missing token before
                giving up with AuthNotReady.
            token_backoff_seconds: Sleep between token attempts.
            http_client: Optional preconfigured httpx client (tests inject a
                mock transport here). Created on demand when omitted.
        """
        self._identity = identity
        self._token_retries = token_retries
        self._token_backoff = token_backoff_seconds
        self._http = http_client or httpx.AsyncClient(base_url=api_endpoint)

    async def __aenter__(self) -> ControlPlaneClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _acquire_token(self, retries: int) -> str:
        """Return a bearer token, waiting up to ``retries`` times for one.

        Raises:
            AuthNotReady: If the provider still has no token after the last retry.
        """
        remaining = retries
        while True:
            token = await self._identity.get_token()
            if token:
                return token
            if remaining <= 0:
                logger.error("[_acquire_token] no token after retries; retries:%d", retries)
                raise AuthNotReady("Session is not ready; wait a moment or sign in again")
            remaining -= 1
            logger.info("[_acquire_token] token not ready, backing off; remaining:%d", remaining)
            await asyncio.sleep(self._token_backoff)

    async def request(
        self,
        operation: str,
        key: str | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        retries: int | None = None,
    ) -> dict[str, Any]:
        """Issue one logical control-plane operation.

        Args:
            operation: One of the names in OPERATIONS.
            key: Target storage key; sent as ``prefix`` for ``list`` and as
                ``file`` for every other operation.
            body: Optional JSON request body.
            params: Extra query parameters.
            retries: Token wait retries for this call (defaults to the client's).

        Returns:
            Parsed JSON response body (empty dict for an empty body).

        Raises:
            ValueError: If the operation name is unknown.
            AuthNotReady: If no token becomes available.
            NetworkError: If the endpoint cannot be reached.
            RequestRejected: If the API answers with status >= 400, or with a
                body that is not a JSON object.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown control-plane operation: {operation}")
        method, path = OPERATIONS[operation]

        token = await self._acquire_token(self._token_retries if retries is None else retries)

        query: dict[str, str] = {"action": operation}
        if key is not None:
            query["prefix" if operation == "list" else "file"] = key
        if params:
            query.update(params)

        try:
            response = await self._http.request(
                method,
                path,
                params=query,
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TransportError as exc:
            logger.error("[request] transport failure; operation:%s;error:%s", operation, exc)
            raise NetworkError(f"Network error during {operation}: {NETWORK_GUIDANCE}") from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning(
                "[request] request rejected; operation:%s;status:%d;detail:%s",
                operation,
                response.status_code,
                detail,
            )
            raise RequestRejected(response.status_code, detail)

        logger.debug("[request] ok; operation:%s;status:%d", operation, response.status_code)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning(
                "[request] response body is not JSON; operation:%s;content_type:%s",
                operation,
                response.headers.get("content-type", ""),
            )
            raise RequestRejected(response.status_code, "invalid JSON response") from exc
        if not isinstance(payload, dict):
            logger.warning(
                "[request] response body is not an object; operation:%s;type:%s",
                operation,
                type(payload).__name__,
            )
            raise RequestRejected(response.status_code, "invalid JSON response")
        return payload


def control_plane_client_from_config(
    config: VaultConfig, identity: IdentityProvider
) -> ControlPlaneClient:
    """Construct a ControlPlaneClient from application configuration.

    Args:
        config: Application configuration instance.
        identity: Identity provider supplying bearer tokens.

    Returns:
        Configured ControlPlaneClient instance.
    """
    return ControlPlaneClient(
        api_endpoint=config.api_endpoint,
        identity=identity,
        token_retries=config.token_retries,
        token_backoff_seconds=config.token_backoff_seconds,
    )
