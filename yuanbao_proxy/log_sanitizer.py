from __future__ import annotations

from collections.abc import Mapping

REDACTED = "***REDACTED***"

# Exact header names that always carry credentials.
_CREDENTIAL_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
    }
)
_CREDENTIAL_HINTS = ("key", "token", "secret", "auth", "cookie", "session")


def _is_credential(header_name: str) -> bool:
    lowered = header_name.lower()
    return lowered in _CREDENTIAL_HEADERS or any(
        hint in lowered for hint in _CREDENTIAL_HINTS
    )


def sanitize_headers_for_log(
    headers: Mapping[str, str], *, mask_token: str = REDACTED
) -> dict[str, str]:
    """
    Copy `headers` with credential values masked, for logging.

    The Yuanbao session lives in the Cookie header (hy_user / hy_token), and
    callers may send an Authorization header; both are masked, as is any
    header whose name mentions a key, token, secret, auth or session.
    """
    return {
        name: mask_token if _is_credential(name) else value
        for name, value in headers.items()
    }


__all__ = ["REDACTED", "sanitize_headers_for_log"]
