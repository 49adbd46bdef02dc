"""Sanitize error messages before they reach spans, logs or webhooks.

Platform CLI failures echo command lines and stderr, which can carry auth
tokens. Anything recorded outside the process goes through here first.
"""

from __future__ import annotations

import re

_SENSITIVE_KEY_PATTERN = re.compile(
    r"(password|secret|token|api_key|apikey|authorization|credential)"
    r"\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_TOKEN_FLAG_PATTERN = re.compile(r"(--token)(\s+|=)\S+", re.IGNORECASE)
_BEARER_PATTERN = re.compile(r"(Bearer)\s+[A-Za-z0-9._~+/-]+=*", re.IGNORECASE)
_URL_CREDENTIAL_PATTERN = re.compile(r"://[^@/\s]+:[^@/\s]+@")


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Redact credentials in ``msg`` and truncate it to ``max_length``.

    Examples:
        >>> sanitize_error_message("Failed: password=secret123 at host")
        'Failed: password=<REDACTED> at host'
        >>> sanitize_error_message("vtex auth --token abc.def")
        'vtex auth --token <REDACTED>'
    """
    sanitized = _URL_CREDENTIAL_PATTERN.sub("://<REDACTED>@", msg)
    sanitized = _TOKEN_FLAG_PATTERN.sub(r"\1\2<REDACTED>", sanitized)
    sanitized = _BEARER_PATTERN.sub(r"\1 <REDACTED>", sanitized)
    sanitized = _SENSITIVE_KEY_PATTERN.sub(
        lambda m: m.group(0).split("=", 1)[0].split(":", 1)[0] + "=<REDACTED>"
        if "=" in m.group(0)
        else m.group(0).split(":", 1)[0] + ": <REDACTED>",
        sanitized,
    )
    return sanitized[:max_length]


__all__ = ["sanitize_error_message"]
