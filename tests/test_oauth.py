"""
Tests for authorization URL construction and code exchange.
"""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from whoop.errors import ErrorKind, WhoopError
from whoop.token_manager import TokenManager


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestAuthorizationUrl:
    def test_points_at_whoop_auth_endpoint(self, token_manager):
        url = token_manager.get_authorization_url()
        assert url.startswith("https://api.prod.whoop.com/oauth/oauth2/auth?")

    def test_carries_required_params(self, token_manager):
        query = _query(token_manager.get_authorization_url())

        assert query["client_id"] == "test-client-id"
        assert query["redirect_uri"] == "http://localhost:3000/callback"
        assert query["response_type"] == "code"
        assert "offline" in query["scope"].split(" ")
        assert "read:recovery" in query["scope"].split(" ")
        assert len(query["state"]) >= 8

    def test_explicit_arguments_override_settings(self, token_manager):
        query = _query(
            token_manager.get_authorization_url(
                client_id="other-client",
                redirect_uri="https://example.test/cb",
                scopes=["read:sleep", "offline"],
            )
        )
        assert query["client_id"] == "other-client"
        assert query["redirect_uri"] == "https://example.test/cb"
        assert query["scope"] == "read:sleep offline"

    def test_fresh_state_per_call(self, token_manager):
        first = _query(token_manager.get_authorization_url())["state"]
        second = _query(token_manager.get_authorization_url())["state"]
        assert first != second

    def test_missing_client_id_raises(self, settings, store):
        tm = TokenManager(settings.model_copy(update={"whoop_client_id": ""}), store)
        with pytest.raises(ValueError, match="WHOOP_CLIENT_ID"):
            tm.get_authorization_url()

    def test_verify_state_is_single_use(self, token_manager):
        state = _query(token_manager.get_authorization_url())["state"]

        assert token_manager.verify_state("forged") is False
        assert token_manager.verify_state(state) is True
        assert token_manager.verify_state(state) is False

    def test_verify_state_without_pending_request(self, token_manager):
        assert token_manager.verify_state("anything") is False


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_saves_tokens_after_successful_exchange(self, token_manager, store, fake_whoop):
        fake_whoop.token_responses.append(
            httpx.Response(
                200,
                json={
                    "access_token": "new-access-token",
                    "refresh_token": "new-refresh-token",
                    "expires_in": 3600,
                    "token_type": "Bearer",
                },
            )
        )

        credential = await token_manager.exchange_code("auth-code-from-whoop")

        stored = await store.load_credential()
        assert stored == credential
        assert stored.access_token == "new-access-token"
        assert stored.refresh_token == "new-refresh-token"
        assert not stored.expires_within(0)

    @pytest.mark.asyncio
    async def test_posts_form_encoded_authorization_code_grant(self, token_manager, fake_whoop):
        await token_manager.exchange_code("my-code")

        request = fake_whoop.token_calls[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.prod.whoop.com/oauth/oauth2/token"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form == {
            "grant_type": "authorization_code",
            "code": "my-code",
            "client_id": "test-client-id",
            "client_secret": "test-client-secret",
            "redirect_uri": "http://localhost:3000/callback",
        }

    @pytest.mark.parametrize("status", [400, 401, 500])
    @pytest.mark.asyncio
    async def test_non_2xx_raises_exchange_failed(self, token_manager, store, fake_whoop, status):
        fake_whoop.token_responses.append(httpx.Response(status, json={"error": "invalid_grant"}))

        with pytest.raises(WhoopError) as excinfo:
            await token_manager.exchange_code("bad-code")

        assert excinfo.value.kind is ErrorKind.EXCHANGE_FAILED
        assert excinfo.value.status == status
        assert await store.load_credential() is None

    @pytest.mark.asyncio
    async def test_success_without_access_token_is_a_failure(self, token_manager, store, fake_whoop):
        fake_whoop.token_responses.append(httpx.Response(200, json={"token_type": "Bearer"}))

        with pytest.raises(WhoopError) as excinfo:
            await token_manager.exchange_code("code")

        assert excinfo.value.kind is ErrorKind.EXCHANGE_FAILED
        assert await store.load_credential() is None

    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": 12345},
            {"access_token": ["a", "b"]},
            {"access_token": "ok", "refresh_token": {"nested": True}},
        ],
    )
    @pytest.mark.asyncio
    async def test_wrongly_typed_fields_raise_exchange_failed(self, token_manager, store, fake_whoop, body):
        fake_whoop.token_responses.append(httpx.Response(200, json=body))

        with pytest.raises(WhoopError) as excinfo:
            await token_manager.exchange_code("code")

        assert excinfo.value.kind is ErrorKind.EXCHANGE_FAILED
        assert excinfo.value.status == 200
        assert await store.load_credential() is None

    @pytest.mark.parametrize("expires_in", [1e20, 10 * 365 * 24 * 3600, -5, 0, "soon", None])
    @pytest.mark.asyncio
    async def test_out_of_range_expires_in_falls_back_to_an_hour(self, token_manager, fake_whoop, expires_in):
        fake_whoop.token_responses.append(
            httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": expires_in})
        )

        credential = await token_manager.exchange_code("code")

        assert not credential.expires_within(3500)
        assert credential.expires_within(3700)

    @pytest.mark.asyncio
    async def test_malformed_refresh_response_raises_refresh_failed(self, token_manager, store, credential_factory, fake_whoop):
        await store.save_credential(credential_factory("keep_me"))
        fake_whoop.token_responses.append(httpx.Response(200, json={"access_token": 12345}))

        with pytest.raises(WhoopError) as excinfo:
            await token_manager.refresh_access_token()

        assert excinfo.value.kind is ErrorKind.REFRESH_FAILED
        assert (await store.load_credential()).access_token == "keep_me"

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(self, token_manager, fake_whoop):
        fake_whoop.token_responses.append(httpx.ReadTimeout("timed out"))

        with pytest.raises(WhoopError) as excinfo:
            await token_manager.exchange_code("code")
        assert excinfo.value.kind is ErrorKind.NETWORK_ERROR
