"""Identity provider interface and its MSAL-backed implementation."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import msal

from cloud_vault.errors import AuthNotReady

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloud_vault.config import VaultConfig

logger = logging.getLogger(__name__)

# MSAL account dict keys
ACCOUNT_LOCAL_ID = "local_account_id"
ACCOUNT_USERNAME = "username"

# MSAL token result keys
RESULT_ID_TOKEN_CLAIMS = "id_token_claims"
CLAIM_OBJECT_ID = "oid"
CLAIM_USERNAME = "preferred_username"


@dataclass(frozen=True)
class Identity:
    """The signed-in user as seen by the vault."""

    user_id: str
    username: str = ""


class IdentityProvider(Protocol):
    """Source of the current identity and its bearer token."""

    async def sign_in(self, prompt: Callable[[str], None]) -> Identity: ...

    async def current_identity(self) -> Identity | None: ...

    async def get_token(self) -> str | None: ...

    async def sign_out(self) -> None: ...


def _identity_from_account(account: dict[str, Any]) -> Identity:
    username = account.get(ACCOUNT_USERNAME, "")
    return Identity(user_id=account.get(ACCOUNT_LOCAL_ID) or username, username=username)


class MsalIdentityProvider:
    """Signs the user in with the MSAL device-code flow and serves their tokens.

    After sign-in every token comes from silent acquisition (which may
    refresh an expired access token) against the account held in the cache.
    """

    def __init__(
        self,
        client_id: str,
        authority: str,
        scopes: tuple[str, ...] = (),
        token_cache_path: str = "",
    ) -> None:
        """Initialise the MSAL public client application.

        Args:
            client_id: Application (client) ID registered with the provider.
            authority: Authority URL of the provider.
            scopes: Scopes requested with each token.
            token_cache_path: Path of a serialized MSAL token cache. When empty
                an in-memory cache is used.
        """
        self._scopes = list(scopes)
        self._cache_path = token_cache_path
        self._cache = msal.SerializableTokenCache()
        if token_cache_path and os.path.exists(token_cache_path):
            with open(token_cache_path, encoding="utf-8") as fh:
                self._cache.deserialize(fh.read())
        self._app = msal.PublicClientApplication(
            client_id=client_id,
            authority=authority,
            token_cache=self._cache,
        )

    def _account(self) -> dict[str, Any] | None:
        accounts = self._app.get_accounts()
        return accounts[0] if accounts else None

    def _persist_cache(self) -> None:
        if self._cache_path and self._cache.has_state_changed:
            with open(self._cache_path, "w", encoding="utf-8") as fh:
                fh.write(self._cache.serialize())

    def _acquire_token_silent(self) -> str | None:
        account = self._account()
        if account is None:
            logger.info("[get_token] no signed-in account in token cache")
            return None
        result = self._app.acquire_token_silent(self._scopes, account=account)
        self._persist_cache()
        if not result or "access_token" not in result:
            error = (result or {}).get("error", "no_cached_token")
            logger.warning("[get_token] silent token acquisition returned no token; error:%s", error)
            return None
        return str(result["access_token"])

    def _sign_in_device_flow(self, prompt: Callable[[str], None]) -> Identity:
        flow = self._app.initiate_device_flow(scopes=self._scopes)
        if "user_code" not in flow:
            detail = flow.get("error_description") or flow.get("error", "unknown error")
            logger.warning("[sign_in] could not start device flow; error:%s", detail)
            raise AuthNotReady(f"Could not start device flow: {detail}")
        prompt(flow["message"])

        result = self._app.acquire_token_by_device_flow(flow)
        self._persist_cache()
        if "access_token" not in result:
            detail = result.get("error_description") or result.get("error", "unknown error")
            logger.warning("[sign_in] device flow returned no token; error:%s", detail)
            raise AuthNotReady(f"Device flow returned no token: {detail}")

        account = self._account()
        if account is not None:
            return _identity_from_account(account)
        claims = result.get(RESULT_ID_TOKEN_CLAIMS) or {}
        username = claims.get(CLAIM_USERNAME, "")
        return Identity(user_id=claims.get(CLAIM_OBJECT_ID) or username, username=username)

    async def sign_in(self, prompt: Callable[[str], None]) -> Identity:
        """Sign the user in with the device-code flow and cache their account.

        Args:
            prompt: Called once with the instructions (verification URL and
                user code) the user must follow on another device.

        Returns:
            Identity of the account that signed in.

        Raises:
            AuthNotReady: If the flow cannot start or ends without a token.
        """
        identity = await asyncio.to_thread(self._sign_in_device_flow, prompt)
        logger.info("[sign_in] signed in; user_id:%s", identity.user_id)
        return identity

    async def current_identity(self) -> Identity | None:
        """Return the cached account's identity, or None when signed out."""
        account = await asyncio.to_thread(self._account)
        if account is None:
            return None
        return _identity_from_account(account)

    async def get_token(self) -> str | None:
        """Return a valid access token, or None when none is available yet."""
        return await asyncio.to_thread(self._acquire_token_silent)

    async def sign_out(self) -> None:
        """Remove every cached account."""

        def _remove_all() -> None:
            for account in self._app.get_accounts():
                self._app.remove_account(account)
            self._persist_cache()

        await asyncio.to_thread(_remove_all)
        logger.info("[sign_out] removed cached accounts")


def identity_provider_from_config(config: VaultConfig) -> MsalIdentityProvider:
    """Construct an MsalIdentityProvider from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured MsalIdentityProvider instance.
    """
    return MsalIdentityProvider(
        client_id=config.client_id,
        authority=config.authority,
        scopes=config.scopes,
        token_cache_path=config.token_cache_path,
    )
