"""Unit tests for identity/provider.py — MSAL-backed identity provider."""

from pathlib import Path
from unittest.mock import patch

import pytest

from cloud_vault.config import VaultConfig
from cloud_vault.errors import AuthNotReady
from cloud_vault.identity.provider import (
    Identity,
    MsalIdentityProvider,
    identity_provider_from_config,
)

ACCOUNT = {"local_account_id": "oid-42", "username": "alice@example.test"}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_provider(**kwargs: object) -> MsalIdentityProvider:
    """Return a provider with a mocked MSAL app."""
    with patch("cloud_vault.identity.provider.msal.PublicClientApplication"):
        provider = MsalIdentityProvider(
            client_id="test-client-id",
            authority="https://login.example.test/tenant",
            scopes=("api://vault/files",),
            **kwargs,  # type: ignore[arg-type]
        )
    return provider


# ---------------------------------------------------------------------------
# Constructor tests
# ---------------------------------------------------------------------------


class TestInit:
    def test_msal_app_created_with_client_and_authority(self) -> None:
        with patch("cloud_vault.identity.provider.msal.PublicClientApplication") as mock_msal:
            MsalIdentityProvider("cid", "https://login.example.test/t")
        kwargs = mock_msal.call_args.kwargs
        assert kwargs["client_id"] == "cid"
        assert kwargs["authority"] == "https://login.example.test/t"

    def test_loads_serialized_cache_when_present(self, tmp_path: Path) -> None:
        cache_file = tmp_path / "cache.json"
        cache_file.write_text('{"Account": {}}', encoding="utf-8")
        with patch("cloud_vault.identity.provider.msal.SerializableTokenCache") as mock_cache:
            _make_provider(token_cache_path=str(cache_file))
        mock_cache.return_value.deserialize.assert_called_once_with('{"Account": {}}')


# ---------------------------------------------------------------------------
# current_identity tests
# ---------------------------------------------------------------------------


class TestCurrentIdentity:
    @pytest.mark.asyncio
    async def test_returns_none_when_not_signed_in(self) -> None:
        provider = _make_provider()
        provider._app.get_accounts.return_value = []  # type: ignore[attr-defined]
        assert await provider.current_identity() is None

    @pytest.mark.asyncio
    async def test_maps_cached_account(self) -> None:
        provider = _make_provider()
        provider._app.get_accounts.return_value = [ACCOUNT]  # type: ignore[attr-defined]
        assert await provider.current_identity() == Identity(
            user_id="oid-42", username="alice@example.test"
        )


# ---------------------------------------------------------------------------
# get_token tests
# ---------------------------------------------------------------------------


class TestGetToken:
    @pytest.mark.asyncio
    async def test_returns_access_token_from_silent_acquisition(self) -> None:
        provider = _make_provider()
        provider._app.get_accounts.return_value = [ACCOUNT]  # type: ignore[attr-defined]
        provider._app.acquire_token_silent.return_value = {  # type: ignore[attr-defined]
            "access_token": "fake-token-abc"
        }

        assert await provider.get_token() == "fake-token-abc"
        provider._app.acquire_token_silent.assert_called_once_with(  # type: ignore[attr-defined]
            ["api://vault/files"], account=ACCOUNT
        )

    @pytest.mark.asyncio
    async def test_returns_none_without_account(self) -> None:
        provider = _make_provider()
        provider._app.get_accounts.return_value = []  # type: ignore[attr-defined]
        assert await provider.get_token() is None
        provider._app.acquire_token_silent.assert_not_called()  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [None, {"error": "invalid_grant"}])
    async def test_returns_none_when_no_token_available(self, result: object) -> None:
        provider = _make_provider()
        provider._app.get_accounts.return_value = [ACCOUNT]  # type: ignore[attr-defined]
        provider._app.acquire_token_silent.return_value = result  # type: ignore[attr-defined]
        assert await provider.get_token() is None

    @pytest.mark.asyncio
    async def test_persists_changed_cache(self, tmp_path: Path) -> None:
        cache_file = tmp_path / "cache.json"
        with patch("cloud_vault.identity.provider.msal.SerializableTokenCache") as mock_cache:
            provider = _make_provider(token_cache_path=str(cache_file))
        cache = mock_cache.return_value
        cache.has_state_changed = True
        cache.serialize.return_value = '{"AccessToken": {}}'
        provider._app.get_accounts.return_value = [ACCOUNT]  # type: ignore[attr-defined]
        provider._app.acquire_token_silent.return_value = {  # type: ignore[attr-defined]
            "access_token": "t"
        }

        await provider.get_token()

        assert cache_file.read_text(encoding="utf-8") == '{"AccessToken": {}}'


# ---------------------------------------------------------------------------
# sign_in tests
# ---------------------------------------------------------------------------

DEVICE_FLOW = {
    "user_code": "ABCD-1234",
    "message": "Open https://login.example.test/device and enter ABCD-1234",
}


class TestSignIn:
    @pytest.mark.asyncio
    async def test_device_flow_prompts_and_returns_cached_account(self, tmp_path: Path) -> None:
        cache_file = tmp_path / "cache.json"
        with patch("cloud_vault.identity.provider.msal.SerializableTokenCache") as mock_cache:
            provider = _make_provider(token_cache_path=str(cache_file))
        cache = mock_cache.return_value
        cache.has_state_changed = True
        cache.serialize.return_value = '{"Account": {"a": {}}}'
        app = provider._app  # type: ignore[attr-defined]
        app.initiate_device_flow.return_value = DEVICE_FLOW
        app.acquire_token_by_device_flow.return_value = {"access_token": "fresh"}
        app.get_accounts.return_value = [ACCOUNT]
        prompts: list[str] = []

        identity = await provider.sign_in(prompts.append)

        assert identity == Identity(user_id="oid-42", username="alice@example.test")
        assert prompts == [DEVICE_FLOW["message"]]
        app.initiate_device_flow.assert_called_once_with(scopes=["api://vault/files"])
        app.acquire_token_by_device_flow.assert_called_once_with(DEVICE_FLOW)
        assert cache_file.read_text(encoding="utf-8") == '{"Account": {"a": {}}}'

    @pytest.mark.asyncio
    async def test_falls_back_to_id_token_claims(self) -> None:
        provider = _make_provider()
        app = provider._app  # type: ignore[attr-defined]
        app.initiate_device_flow.return_value = DEVICE_FLOW
        app.acquire_token_by_device_flow.return_value = {
            "access_token": "fresh",
            "id_token_claims": {"oid": "oid-9", "preferred_username": "dana@example.test"},
        }
        app.get_accounts.return_value = []

        identity = await provider.sign_in(lambda message: None)

        assert identity == Identity(user_id="oid-9", username="dana@example.test")

    @pytest.mark.asyncio
    async def test_flow_that_cannot_start_raises_auth_not_ready(self) -> None:
        provider = _make_provider()
        app = provider._app  # type: ignore[attr-defined]
        app.initiate_device_flow.return_value = {
            "error": "invalid_client",
            "error_description": "Unknown client",
        }
        prompts: list[str] = []

        with pytest.raises(AuthNotReady, match="Unknown client"):
            await provider.sign_in(prompts.append)

        assert prompts == []
        app.acquire_token_by_device_flow.assert_not_called()

    @pytest.mark.asyncio
    async def test_flow_without_token_raises_auth_not_ready(self) -> None:
        provider = _make_provider()
        app = provider._app  # type: ignore[attr-defined]
        app.initiate_device_flow.return_value = DEVICE_FLOW
        app.acquire_token_by_device_flow.return_value = {"error": "expired_token"}

        with pytest.raises(AuthNotReady, match="no token: expired_token"):
            await provider.sign_in(lambda message: None)


# ---------------------------------------------------------------------------
# sign_out / factory tests
# ---------------------------------------------------------------------------


class TestSignOut:
    @pytest.mark.asyncio
    async def test_removes_every_account(self) -> None:
        provider = _make_provider()
        other = {"local_account_id": "oid-7", "username": "bob@example.test"}
        provider._app.get_accounts.return_value = [ACCOUNT, other]  # type: ignore[attr-defined]

        await provider.sign_out()

        removed = [c.args[0] for c in provider._app.remove_account.call_args_list]  # type: ignore[attr-defined]
        assert removed == [ACCOUNT, other]


def test_factory_passes_config() -> None:
    config = VaultConfig(
        api_endpoint="https://api",
        client_id="cid",
        authority="https://login.example.test/t",
        scopes=("a", "b"),
    )
    with patch("cloud_vault.identity.provider.MsalIdentityProvider") as mock_provider:
        identity_provider_from_config(config)
    mock_provider.assert_called_once_with(
        client_id="cid",
        authority="https://login.example.test/t",
        scopes=("a", "b"),
        token_cache_path="",
    )


@pytest.mark.asyncio
async def test_account_without_local_id_falls_back_to_username() -> None:
    provider = _make_provider()
    provider._app.get_accounts.return_value = [{"username": "carol"}]  # type: ignore[attr-defined]
    assert await provider.current_identity() == Identity(user_id="carol", username="carol")
