"""
Credential redaction utilities.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token, id_token)
- ALLOWED in logs: orgid, status, expiry timestamps
- When a token must be correlated across log lines, log its fingerprint

Usage:
    from multilang.credentials.redaction import redact_credential_data, token_fingerprint

    logger.info("Received webhook", extra={"payload": redact_credential_data(payload)})
"""

import hashlib
from typing import Any, Optional

REDACTED_VALUE = "[REDACTED]"

# Maximum recursion depth for nested redaction
MAX_DEPTH = 10

SECRET_KEY_PATTERNS = (
    "token", "secret", "password", "authorization", "api_key", "apikey", "code",
)


def is_secret_key(key: str) -> bool:
    """Check if a key name indicates a secret value."""
    key_lower = key.lower()
    if key_lower in ("token_expires_at", "orgid"):
        return False
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def token_fingerprint(token: Optional[str]) -> Optional[str]:
    """Short, non-reversible identifier for a token."""
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from a data structure.

    Dict values under secret-looking keys are replaced with REDACTED_VALUE.
    Lists and nested dicts are walked up to MAX_DEPTH.
    """
    if _depth > MAX_DEPTH:
        return REDACTED_VALUE

    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            if isinstance(key, str) and is_secret_key(key) and value is not None:
                redacted[key] = REDACTED_VALUE
            else:
                redacted[key] = redact_credential_data(value, _depth + 1)
        return redacted

    if isinstance(data, (list, tuple)):
        return [redact_credential_data(item, _depth + 1) for item in data]

    return data
