"""
whoop — credential lifecycle and cached API access for the Whoop developer API.

Provides:
  • OAuth2 auth-URL generation and code → token exchange
  • Encrypted (AES-256-GCM) credential storage with 0600 files
  • Expiry-aware token access with single-flight refresh
  • A cached GET client with one-shot 401 → refresh → retry recovery
  • A single tagged error type (WhoopError / ErrorKind)
"""

from whoop.cache import ResponseCache, make_cache_key
from whoop.client import WhoopClient
from whoop.credential_store import CredentialStore
from whoop.errors import ErrorKind, WhoopError
from whoop.token_manager import TokenManager

__all__ = [
    "CredentialStore",
    "ErrorKind",
    "ResponseCache",
    "TokenManager",
    "WhoopClient",
    "WhoopError",
    "make_cache_key",
]
