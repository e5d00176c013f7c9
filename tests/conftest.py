"""
Shared fixtures: isolated settings, a scripted fake Whoop server, and
pre-wired store / token manager / client instances.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Union

import httpx
import pytest

from config.settings import Settings
from utils.schemas import Credential
from whoop.client import WhoopClient
from whoop.credential_store import CredentialStore
from whoop.token_manager import TokenManager

Scripted = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class FakeWhoop:
    """
    Stands in for both the OAuth token endpoint and the resource API.

    Queue responses (or exceptions to raise) on ``token_responses`` /
    ``api_responses``; when a queue is empty a default success is served.
    Every request is recorded.
    """

    def __init__(self):
        self.token_calls: List[httpx.Request] = []
        self.api_calls: List[httpx.Request] = []
        self.token_responses: List[Scripted] = []
        self.api_responses: List[Scripted] = []
        self.issued = 0

    def default_token_response(self, request: httpx.Request) -> httpx.Response:
        self.issued += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"fresh_access_{self.issued}",
                "refresh_token": f"fresh_refresh_{self.issued}",
                "expires_in": 3600,
                "token_type": "bearer",
            },
        )

    @staticmethod
    def default_api_response(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"records": [], "next_token": None})

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth2/token"):
            self.token_calls.append(request)
            queue, default = self.token_responses, self.default_token_response
        else:
            self.api_calls.append(request)
            queue, default = self.api_responses, self.default_api_response

        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return item(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        whoop_client_id="test-client-id",
        whoop_client_secret="test-client-secret",
        whoop_redirect_uri="http://localhost:3000/callback",
        whoop_access_token="",
        storage_dir=tmp_path / "storage",
    )


@pytest.fixture
def fake_whoop() -> FakeWhoop:
    return FakeWhoop()


@pytest.fixture
def store(settings) -> CredentialStore:
    return CredentialStore(settings)


@pytest.fixture
def token_manager(settings, store, fake_whoop) -> TokenManager:
    return TokenManager(settings, store, transport=fake_whoop.transport)


@pytest.fixture
def client(settings, token_manager, fake_whoop) -> WhoopClient:
    return WhoopClient(settings, token_manager, transport=fake_whoop.transport)


def make_credential(
    access_token: str = "access-abc",
    refresh_token: str = "refresh-xyz",
    expires_in: float = 3600,
) -> Credential:
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )


@pytest.fixture
def credential_factory():
    return make_credential
