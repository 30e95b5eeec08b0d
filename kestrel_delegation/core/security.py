"""Security helpers for storage keys and the delegation security policy."""

from kestrel_delegation.core.settings import SecurityPolicy

__all__ = ["SecurityError", "SecurityPolicy", "validate_storage_key"]


class SecurityError(Exception):
    """Raised when input validation fails."""

    pass


def validate_storage_key(key: str) -> str:
    """Reject storage key segments that could escape the storage directory.

    Raises:
        SecurityError: If the key is empty or contains traversal characters.
    """
    if not key or ".." in key or "/" in key or "\\" in key or "\x00" in key:
        raise SecurityError(f"Invalid storage key: {key}")
    return key
