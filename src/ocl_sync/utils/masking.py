"""Secret masking for log lines and reprs.

Subscription tokens are credentials for the remote dictionary service and
must never be written to logs or persisted error messages in clear text.
"""

from __future__ import annotations

_VISIBLE_PREFIX = 4


def mask_secret(value: str | None, *, mask: str = "***") -> str | None:
    """Keep a short prefix of *value* and replace the rest with *mask*."""
    if value is None:
        return None
    if len(value) <= _VISIBLE_PREFIX * 2:
        return mask
    return f"{value[:_VISIBLE_PREFIX]}{mask}"


def scrub_secret(text: str, secret: str | None, *, mask: str = "***") -> str:
    """Replace every occurrence of *secret* in *text*."""
    if not secret:
        return text
    return text.replace(secret, mask)
