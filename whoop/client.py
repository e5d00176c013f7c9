"""
WhoopClient — authenticated, cached GET access to the Whoop developer API.

Request algorithm:
  1. Serve from the response cache while the entry is fresh.
  2. Otherwise fetch with a token from ``TokenManager.get_valid_access_token``.
  3. On 401, refresh once and retry once; a second 401 means the user must
     re-authorize.
  4. Classify every other failure as a ``WhoopError`` (rate limit, API
     status, transport) and never retry it.

All network calls are natively async via httpx.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import httpx

from config.settings import Settings
from utils.schemas import ConnectionStatus
from whoop.cache import ResponseCache, canonical_params, make_cache_key
from whoop.errors import ErrorKind, WhoopError, parse_retry_after
from whoop.token_manager import TokenManager

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 25
_MISS = object()


class WhoopClient:
    """Client for the Whoop REST API (v2)."""

    def __init__(
        self,
        settings: Settings,
        token_manager: TokenManager,
        *,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self.token_manager = token_manager
        self._cache = cache if cache is not None else ResponseCache()
        self._transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.whoop_base_url,
            timeout=self._settings.request_timeout_seconds,
            transport=self._transport,
        )

    # ── Core request ────────────────────────────────────────────────────

    async def request(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        GET ``path`` with ``params`` and return the decoded JSON payload.

        Parameters
        ----------
        path : str
            Resource path relative to the API base, e.g. ``"/recovery"``.
        params : mapping, optional
            Scalar query parameters.  Order does not matter for caching.
        ttl : float, optional
            Cache lifetime in seconds; defaults to ``cache_ttl_seconds``.

        Raises
        ------
        WhoopError
            AUTH_MISSING, AUTH_ERROR, RATE_LIMITED, API_ERROR, NETWORK_ERROR
            (or REFRESH_FAILED / NETWORK_ERROR from a proactive refresh).
        """
        key = make_cache_key(path, params)
        cached = self._cache.get(key, _MISS)
        if cached is not _MISS:
            logger.debug("cache hit → %s", key)
            return cached

        query = canonical_params(params)
        token = await self.token_manager.get_valid_access_token()
        resp = await self._get(path, query, token)

        if resp.status_code == 401:
            logger.info("Whoop API returned 401 for %s — refreshing token and retrying once", path)
            try:
                token = await self.token_manager.refresh_access_token()
            except WhoopError as exc:
                if exc.kind in (ErrorKind.NO_REFRESH_TOKEN, ErrorKind.REFRESH_FAILED):
                    raise WhoopError(ErrorKind.AUTH_ERROR) from exc
                raise
            resp = await self._get(path, query, token)
            if resp.status_code == 401:
                raise WhoopError(ErrorKind.AUTH_ERROR)

        payload = self._decode(path, resp)
        self._cache.set(key, payload, self._settings.cache_ttl_seconds if ttl is None else ttl)
        return payload

    async def _get(
        self,
        path: str,
        query: Sequence[Tuple[str, str]],
        token: str,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with self._http_client() as client:
                return await client.get(path, params=list(query), headers=headers)
        except httpx.RequestError as exc:
            logger.warning("GET %s failed at transport level (%s)", path, type(exc).__name__)
            raise WhoopError(ErrorKind.NETWORK_ERROR) from exc

    @staticmethod
    def _decode(path: str, resp: httpx.Response) -> Any:
        if resp.status_code == 429:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            logger.warning("Rate limited on %s; retry in %ds", path, retry_after)
            raise WhoopError(ErrorKind.RATE_LIMITED, retry_after_seconds=retry_after)

        if not resp.is_success:
            logger.warning("Whoop API returned %d for %s", resp.status_code, path)
            raise WhoopError(ErrorKind.API_ERROR, status=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise WhoopError(
                ErrorKind.API_ERROR,
                "Whoop API returned a non-JSON body",
                status=resp.status_code,
            ) from exc

    # ── Cache management ────────────────────────────────────────────────

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Response cache cleared")

    def get_cache_size(self) -> int:
        return len(self._cache)

    async def get_status(self) -> ConnectionStatus:
        """Token source/expiry plus the current cache size."""
        status = await self.token_manager.get_status()
        return status.model_copy(update={"cache_size": self.get_cache_size()})

    # ── Resources ───────────────────────────────────────────────────────

    @staticmethod
    def _collection_params(
        start: str,
        end: str,
        limit: int,
        next_token: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "start": start,
            "end": end,
            "limit": max(1, min(int(limit), MAX_PAGE_SIZE)),
            "nextToken": next_token,
        }

    async def get_recovery_collection(
        self, start: str, end: str, limit: int = MAX_PAGE_SIZE, next_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Recovery records between ``start`` and ``end`` (ISO-8601).

        Returns ``{"records": [...], "next_token": ...}``.
        """
        return await self.request("/recovery", self._collection_params(start, end, limit, next_token))

    async def get_cycle_collection(
        self, start: str, end: str, limit: int = MAX_PAGE_SIZE, next_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Physiological cycles (day strain, heart rate, kilojoules)."""
        return await self.request("/cycle", self._collection_params(start, end, limit, next_token))

    async def get_sleep_collection(
        self, start: str, end: str, limit: int = MAX_PAGE_SIZE, next_token: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.request("/activity/sleep", self._collection_params(start, end, limit, next_token))

    async def get_workout_collection(
        self, start: str, end: str, limit: int = MAX_PAGE_SIZE, next_token: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.request("/activity/workout", self._collection_params(start, end, limit, next_token))

    async def get_body_measurement(self) -> Dict[str, Any]:
        """Height, weight and max heart rate; cached for a day."""
        return await self.request(
            "/user/measurement/body",
            ttl=self._settings.body_cache_ttl_seconds,
        )

    async def get_profile(self) -> Dict[str, Any]:
        return await self.request(
            "/user/profile/basic",
            ttl=self._settings.body_cache_ttl_seconds,
        )
