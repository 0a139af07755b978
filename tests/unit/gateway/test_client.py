"""Unit tests for gateway/client.py — token wait, request shape and errors."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from cloud_vault.config import VaultConfig
from cloud_vault.errors import AuthNotReady, NetworkError, RequestRejected
from cloud_vault.gateway.client import ControlPlaneClient, control_plane_client_from_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _identity(token: str | None = "fake-token-abc") -> AsyncMock:
    identity = AsyncMock()
    identity.get_token.return_value = token
    return identity


def _make_client(
    handler, identity: AsyncMock | None = None, token_retries: int = 2
) -> tuple[ControlPlaneClient, AsyncMock]:
    identity = identity or _identity()
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.test"
    )
    client = ControlPlaneClient(
        api_endpoint="https://api.example.test",
        identity=identity,
        token_retries=token_retries,
        token_backoff_seconds=0.01,
        http_client=http,
    )
    return client, identity


# ---------------------------------------------------------------------------
# Token wait tests
# ---------------------------------------------------------------------------


class TestTokenWait:
    @pytest.mark.asyncio
    async def test_fails_with_auth_not_ready_after_exactly_configured_retries(self) -> None:
        handler_calls: list[httpx.Request] = []
        client, identity = _make_client(
            lambda req: handler_calls.append(req) or httpx.Response(200, json={}),
            identity=_identity(None),
            token_retries=2,
        )

        with (
            patch("cloud_vault.gateway.client.asyncio.sleep", new_callable=AsyncMock) as sleep,
            pytest.raises(AuthNotReady),
        ):
            await client.request("list", key="protected/u/")

        assert identity.get_token.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.01)
        assert handler_calls == []

    @pytest.mark.asyncio
    async def test_per_call_retries_override_default(self) -> None:
        client, identity = _make_client(
            lambda req: httpx.Response(200, json={}), identity=_identity(None)
        )

        with (
            patch("cloud_vault.gateway.client.asyncio.sleep", new_callable=AsyncMock) as sleep,
            pytest.raises(AuthNotReady),
        ):
            await client.request("list", retries=0)

        assert identity.get_token.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_succeeds_once_token_appears(self) -> None:
        identity = AsyncMock()
        identity.get_token.side_effect = [None, "late-token"]
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"files": []})

        client, _ = _make_client(handler, identity=identity)

        with patch("cloud_vault.gateway.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await client.request("list", key="protected/u/")

        assert result == {"files": []}
        assert seen == ["Bearer late-token"]
        assert sleep.await_count == 1


# ---------------------------------------------------------------------------
# Request shape tests
# ---------------------------------------------------------------------------


class TestRequestShape:
    @pytest.mark.asyncio
    async def test_list_sends_prefix_user_and_headers(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"files": ["protected/u/a.txt"]})

        client, _ = _make_client(handler)
        result = await client.request("list", key="protected/u/", params={"user": "u"})

        assert result == {"files": ["protected/u/a.txt"]}
        req = captured[0]
        assert req.method == "GET"
        assert req.url.path == "/file"
        assert req.url.params["action"] == "list"
        assert req.url.params["prefix"] == "protected/u/"
        assert req.url.params["user"] == "u"
        assert req.headers["Authorization"] == "Bearer fake-token-abc"
        assert req.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("operation", "method", "path"),
        [
            ("create_folder", "POST", "/file"),
            ("generate_upload_url", "POST", "/file"),
            ("get_file", "GET", "/file"),
            ("move_to_bin", "POST", "/bin"),
            ("restore_from_bin", "POST", "/bin"),
        ],
    )
    async def test_operations_map_to_method_and_resource(
        self, operation: str, method: str, path: str
    ) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True})

        client, _ = _make_client(handler)
        await client.request(operation, key="protected/u/a.txt")

        req = captured[0]
        assert req.method == method
        assert req.url.path == path
        assert req.url.params["action"] == operation
        assert req.url.params["file"] == "protected/u/a.txt"

    @pytest.mark.asyncio
    async def test_body_is_sent_as_json(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"url": "https://upload"})

        client, _ = _make_client(handler)
        await client.request(
            "generate_upload_url", key="k", body={"content_type": "text/plain"}
        )

        assert json.loads(captured[0].content) == {"content_type": "text/plain"}

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self) -> None:
        client, _ = _make_client(lambda req: httpx.Response(204))
        assert await client.request("move_to_bin", key="k") == {}

    @pytest.mark.asyncio
    async def test_unknown_operation_raises_value_error(self) -> None:
        client, identity = _make_client(lambda req: httpx.Response(200))
        with pytest.raises(ValueError, match="Unknown"):
            await client.request("delete_everything")
        identity.get_token.assert_not_awaited()


# ---------------------------------------------------------------------------
# Error normalisation tests
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.asyncio
    async def test_transport_failure_raises_network_error_with_guidance(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _make_client(handler)
        with pytest.raises(NetworkError, match="cross-origin"):
            await client.request("list")

    @pytest.mark.asyncio
    async def test_error_status_raises_request_rejected_with_server_message(self) -> None:
        client, _ = _make_client(
            lambda req: httpx.Response(403, json={"message": "Access denied"})
        )
        with pytest.raises(RequestRejected) as exc_info:
            await client.request("get_file", key="k")

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Access denied"
        assert "403" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_nested_error_message_is_extracted(self) -> None:
        client, _ = _make_client(
            lambda req: httpx.Response(404, json={"error": {"message": "No such key"}})
        )
        with pytest.raises(RequestRejected) as exc_info:
            await client.request("get_file", key="k")
        assert exc_info.value.message == "No such key"

    @pytest.mark.asyncio
    async def test_non_json_error_body_falls_back_to_text(self) -> None:
        client, _ = _make_client(lambda req: httpx.Response(502, text="Bad gateway upstream"))
        with pytest.raises(RequestRejected) as exc_info:
            await client.request("list")
        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Bad gateway upstream"

    @pytest.mark.asyncio
    async def test_error_without_message_uses_reason_phrase(self) -> None:
        client, _ = _make_client(lambda req: httpx.Response(500, json={}))
        with pytest.raises(RequestRejected) as exc_info:
            await client.request("list")
        assert exc_info.value.message == "Internal Server Error"

    @pytest.mark.asyncio
    async def test_success_with_html_body_raises_request_rejected(self) -> None:
        client, _ = _make_client(
            lambda req: httpx.Response(
                200, text="<html>gateway</html>", headers={"Content-Type": "text/html"}
            )
        )
        with pytest.raises(RequestRejected) as exc_info:
            await client.request("list")
        assert exc_info.value.status_code == 200
        assert exc_info.value.message == "invalid JSON response"

    @pytest.mark.asyncio
    async def test_success_with_non_object_json_raises_request_rejected(self) -> None:
        client, _ = _make_client(lambda req: httpx.Response(200, json=["a.txt"]))
        with pytest.raises(RequestRejected, match="invalid JSON response"):
            await client.request("list")


# ---------------------------------------------------------------------------
# Factory tests
# ---------------------------------------------------------------------------


class TestFactory:
    @pytest.mark.asyncio
    async def test_uses_config_retry_settings(self) -> None:
        config = VaultConfig(
            api_endpoint="https://api.example.test",
            client_id="cid",
            authority="https://login",
            token_retries=5,
            token_backoff_seconds=0.5,
        )
        client = control_plane_client_from_config(config, _identity())
        try:
            assert client._token_retries == 5
            assert client._token_backoff == 0.5
        finally:
            await client.aclose()
