"""
Application settings loaded from environment variables.

A ``Settings`` value is built once by the entry point and handed to the
credential store, token manager and client constructors.
"""

from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


# Values an operator might leave in a copied .env that must not count as a token.
PLACEHOLDER_TOKENS = frozenset({"", "xxx", "your_access_token_here"})

DEFAULT_SCOPES = [
    "read:recovery",
    "read:cycles",
    "read:sleep",
    "read:workout",
    "read:body_measurement",
    "read:profile",
    "offline",                      # required for a refresh_token
]


class Settings(BaseSettings):
    # ── Whoop OAuth2 ────────────────────────────────────────────────────
    whoop_client_id: str = ""
    whoop_client_secret: str = ""
    whoop_redirect_uri: str = "http://localhost:3000/callback"
    whoop_scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    whoop_access_token: str = ""        # operator override, bypasses stored credentials

    # ── Endpoints ───────────────────────────────────────────────────────
    whoop_base_url: str = "https://api.prod.whoop.com/developer/v2"
    whoop_auth_url: str = "https://api.prod.whoop.com/oauth/oauth2/auth"
    whoop_token_url: str = "https://api.prod.whoop.com/oauth/oauth2/token"

    # ── Credential storage ──────────────────────────────────────────────
    storage_dir: Path = Path("storage")
    token_file_name: str = "tokens.json"
    key_file_name: str = ".encryption_key"

    # ── Client behaviour ────────────────────────────────────────────────
    cache_ttl_seconds: float = 300.0            # recovery, sleep, cycles, workouts
    body_cache_ttl_seconds: float = 86400.0     # body measurement, profile
    request_timeout_seconds: float = 30.0
    expiry_buffer_seconds: int = 60

    debug: bool = False

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def token_path(self) -> Path:
        return self.storage_dir / self.token_file_name

    @property
    def key_path(self) -> Path:
        return self.storage_dir / self.key_file_name

    def override_token(self) -> str:
        """
        Return the operator-supplied access token, or "" when it is unset
        or one of the known placeholder values.
        """
        token = (self.whoop_access_token or "").strip()
        if token in PLACEHOLDER_TOKENS:
            return ""
        return token
