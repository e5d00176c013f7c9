"""
Pydantic schemas for credentials, their encrypted envelope, and cache entries.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


class Credential(BaseModel):
    """
    The access/refresh token pair plus absolute expiry.

    Replaced wholesale on every successful exchange or refresh; never
    mutated in place.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = ""
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # naive values are local time
        return value.astimezone(timezone.utc)

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """True when ``expires_at`` is at most ``seconds`` away (or already past)."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now + timedelta(seconds=seconds)


class Envelope(BaseModel):
    """
    Encrypted-at-rest form of a Credential.

    ``ciphertext`` holds the AES-GCM output with its tag appended.
    """

    model_config = ConfigDict(frozen=True)

    iv: bytes
    ciphertext: bytes

    def to_file_dict(self) -> Dict[str, str]:
        return {"iv": self.iv.hex(), "data": self.ciphertext.hex()}

    @classmethod
    def from_file_dict(cls, raw: Dict[str, Any]) -> "Envelope":
        """
        Parse the on-disk ``{"iv": hex, "data": hex}`` form.

        Raises ValueError/KeyError/TypeError on malformed input; callers
        treat any of these as "no credential".
        """
        return cls(iv=bytes.fromhex(raw["iv"]), ciphertext=bytes.fromhex(raw["data"]))


# ═══════════════════════════════════════════════════════════════════════════════
# Cache
# ═══════════════════════════════════════════════════════════════════════════════


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    payload: Any = None
    expires_at: float  # clock seconds, see ResponseCache

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


# ═══════════════════════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectionStatus(BaseModel):
    """Snapshot of where the current token comes from and how long it lives."""

    authenticated: bool = False
    token_source: Literal["env", "stored", "none"] = "none"
    token_expires_at: Optional[datetime] = None
    cache_size: int = Field(default=0, ge=0)
