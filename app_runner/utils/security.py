"""
Security Utilities
==================

Secure handling of device cloud credentials.
Ensures access keys are never logged or exposed in error messages.

Usage:
    from app_runner.utils.security import SecureString, mask_sensitive

    key = SecureString("my-access-key")
    print(key)  # Outputs: ********
    key.get_secret()  # Returns actual value
"""

import re
import secrets
from typing import Any


class SecureString:
    """
    A string wrapper that prevents accidental exposure of sensitive values.

    The actual value is never revealed in its string representation,
    and therefore never in logs or exception messages.
    """

    __slots__ = ("_secret_value", "_length")

    def __init__(self, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("SecureString value must be a string")
        self._secret_value = value
        self._length = len(value)

    def get_secret(self) -> str:
        """
        Get the actual secret value.

        Warning:
            Only use this when you actually need the value.
            Never log or print the result.
        """
        return self._secret_value

    def __str__(self) -> str:
        return "*" * min(self._length, 8)

    def __repr__(self) -> str:
        return f"SecureString('{self}')"

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self._length > 0

    def __eq__(self, other: Any) -> bool:
        """Constant-time comparison."""
        if isinstance(other, SecureString):
            return secrets.compare_digest(self._secret_value, other._secret_value)
        if isinstance(other, str):
            return secrets.compare_digest(self._secret_value, other)
        return False

    def __hash__(self) -> int:
        return hash(self._secret_value)


def mask_sensitive(value: str, visible_chars: int = 3) -> str:
    """
    Mask a sensitive string, showing only first few characters.

    Examples:
        >>> mask_sensitive("abcdef123456")
        'abc********'
        >>> mask_sensitive("ci-bot@example.com")
        'ci-***@example.com'
    """
    if not value:
        return ""

    # For emails, preserve domain
    if "@" in value:
        local, domain = value.split("@", 1)
        if len(local) <= visible_chars:
            return f"{local[0]}***@{domain}"
        return f"{local[:visible_chars]}***@{domain}"

    if len(value) <= visible_chars:
        return "*" * len(value)
    return f"{value[:visible_chars]}{'*' * 8}"


_SENSITIVE_KEY = re.compile(
    r"password|secret|token|api[_-]?key|access[_-]?key|auth|credential|private",
    re.IGNORECASE,
)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """
    Sanitize a dictionary for safe logging.

    Masks values whose keys look like credentials, recursing into nested
    dictionaries.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        if _SENSITIVE_KEY.search(key):
            if isinstance(value, str):
                result[key] = mask_sensitive(value)
            elif isinstance(value, SecureString):
                result[key] = str(value)
            else:
                result[key] = "********"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value)
        elif isinstance(value, SecureString):
            result[key] = str(value)
        else:
            result[key] = value
    return result
