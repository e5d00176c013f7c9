"""
Token manager — OAuth2 authorization-code and refresh-token flows for Whoop.

This is the single interface the client uses to get an access token.

Token precedence:
  1. ``WHOOP_ACCESS_TOKEN`` (operator override, never expiry-checked)
  2. the encrypted credential in ``CredentialStore``

Stored tokens that expire within ``expiry_buffer_seconds`` (60s) are
refreshed before use.  Concurrent refreshes share one in-flight call to
the token endpoint.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import math
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from config.settings import Settings
from utils.schemas import ConnectionStatus, Credential
from whoop.credential_store import CredentialStore
from whoop.errors import ErrorKind, WhoopError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
MAX_EXPIRES_IN = 365 * 24 * 3600


def _expires_in(token_data: Dict[str, Any]) -> float:
    """
    Seconds until expiry from a token response, defaulting to one hour
    when the value is missing, non-numeric or outside (0, one year].
    """
    try:
        seconds = float(token_data.get("expires_in"))
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN
    if not math.isfinite(seconds) or not 0 < seconds <= MAX_EXPIRES_IN:
        return DEFAULT_EXPIRES_IN
    return seconds


class TokenManager:
    """Owns the credential lifecycle for the single installed user."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[CredentialStore] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self.store = store or CredentialStore(settings)
        self._transport = transport
        self._refresh_task: Optional[asyncio.Future] = None
        self._pending_state: Optional[str] = None

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            transport=self._transport,
        )

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_access_token(self) -> str:
        """
        Return the current access token without refreshing.

        Raises
        ------
        WhoopError(AUTH_MISSING)
            Neither an override token nor a stored credential is available.
        """
        override = self._settings.override_token()
        if override:
            return override

        credential = await self.store.load_credential()
        if credential is None:
            raise WhoopError(ErrorKind.AUTH_MISSING)
        return credential.access_token

    async def get_valid_access_token(self) -> str:
        """
        Return an access token that is good for at least the expiry buffer,
        refreshing the stored credential first when it is about to lapse.
        """
        override = self._settings.override_token()
        if override:
            return override

        credential = await self.store.load_credential()
        if credential is None:
            raise WhoopError(ErrorKind.AUTH_MISSING)

        if credential.expires_within(self._settings.expiry_buffer_seconds):
            logger.info(
                "Access token expires within %ds — refreshing",
                self._settings.expiry_buffer_seconds,
            )
            return await self.refresh_access_token()

        return credential.access_token

    async def get_status(self) -> ConnectionStatus:
        if self._settings.override_token():
            return ConnectionStatus(authenticated=True, token_source="env")

        credential = await self.store.load_credential()
        if credential is None:
            return ConnectionStatus()
        return ConnectionStatus(
            authenticated=True,
            token_source="stored",
            token_expires_at=credential.expires_at,
        )

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_authorization_url(
        self,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> str:
        """
        Build the Whoop authorization URL the user must open in a browser.

        Parameters
        ----------
        client_id, redirect_uri, scopes
            Default to the configured values.

        Returns
        -------
        The full URL, carrying a freshly generated ``state`` value.
        """
        client_id = client_id or self._settings.whoop_client_id
        if not client_id:
            raise ValueError("WHOOP_CLIENT_ID is not set — cannot build the authorization URL.")

        state = secrets.token_urlsafe(16)
        self._pending_state = state

        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri or self._settings.whoop_redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes if scopes is not None else self._settings.whoop_scopes),
            "state": state,
        }
        return f"{self._settings.whoop_auth_url}?{urlencode(params)}"

    def verify_state(self, state: Optional[str]) -> bool:
        """Check a redirect's ``state`` against the last generated one (single use)."""
        expected = self._pending_state
        if not expected or not state:
            return False
        if not hmac.compare_digest(expected, state):
            return False
        self._pending_state = None
        return True

    async def exchange_code(self, code: str) -> Credential:
        """Exchange the authorization code for tokens and persist them."""
        if not self._settings.whoop_client_id:
            raise ValueError("WHOOP_CLIENT_ID is not set — cannot exchange the authorization code.")

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._settings.whoop_client_id,
            "client_secret": self._settings.whoop_client_secret,
            "redirect_uri": self._settings.whoop_redirect_uri,
        }
        credential = await self._request_token(form, ErrorKind.EXCHANGE_FAILED)
        logger.info("Authorization code exchanged; token expires at %s", credential.expires_at.isoformat())
        return credential

    async def refresh_access_token(self) -> str:
        """
        Refresh using the stored refresh token and return the new access token.

        Callers arriving while a refresh is in flight await that same
        refresh instead of starting another.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh())
        credential = await asyncio.shield(self._refresh_task)
        return credential.access_token

    async def _refresh(self) -> Credential:
        stored = await self.store.load_credential()
        if stored is None or not stored.refresh_token:
            raise WhoopError(ErrorKind.NO_REFRESH_TOKEN)

        form = {
            "grant_type": "refresh_token",
            "refresh_token": stored.refresh_token,
            "client_id": self._settings.whoop_client_id,
            "client_secret": self._settings.whoop_client_secret,
            "scope": "offline",
        }
        logger.info("Refreshing Whoop access token…")
        credential = await self._request_token(
            form,
            ErrorKind.REFRESH_FAILED,
            previous_refresh_token=stored.refresh_token,
        )
        logger.info("Token refresh successful; expires at %s", credential.expires_at.isoformat())
        return credential

    async def _request_token(
        self,
        form: Dict[str, str],
        failure_kind: ErrorKind,
        previous_refresh_token: str = "",
    ) -> Credential:
        """
        POST a grant to the token endpoint and persist the resulting Credential.

        The new record replaces the old one wholesale.  Providers that do not
        rotate refresh tokens omit ``refresh_token``; the previous one is
        then carried into the new record.
        """
        try:
            async with self._http_client() as client:
                resp = await client.post(
                    self._settings.whoop_token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            logger.warning("Token endpoint unreachable (%s)", type(exc).__name__)
            raise WhoopError(ErrorKind.NETWORK_ERROR) from exc

        if not resp.is_success:
            logger.warning("Token endpoint returned %d for grant_type=%s", resp.status_code, form["grant_type"])
            raise WhoopError(failure_kind, status=resp.status_code)

        try:
            token_data = resp.json()
        except ValueError as exc:
            raise WhoopError(failure_kind, "Token endpoint returned a non-JSON body", status=resp.status_code) from exc

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise WhoopError(failure_kind, "Token endpoint response has no access_token", status=resp.status_code)

        try:
            credential = Credential(
                access_token=token_data["access_token"],
                refresh_token=token_data.get("refresh_token") or previous_refresh_token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=_expires_in(token_data)),
            )
        except ValidationError as exc:
            raise WhoopError(failure_kind, "Token endpoint response is malformed", status=resp.status_code) from exc

        await self.store.save_credential(credential)
        return credential
