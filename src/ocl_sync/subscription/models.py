"""Subscription configuration model."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from ocl_sync.utils.masking import mask_secret

_ALLOWED_SCHEMES = frozenset({"http", "https"})


class SubscriptionRecord(BaseModel):
    """The single remote source this installation follows.

    ``days``/``hours``/``minutes`` are read by the external scheduler; the
    updater itself only looks at ``url``, ``token`` and
    ``fetch_snapshot_updates``.
    """

    url: str
    token: str | None = None
    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0, le=23)
    minutes: int = Field(default=0, ge=0, le=59)
    fetch_snapshot_updates: bool = Field(default=False)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        candidate = value.strip()
        parsed = urlparse(candidate)
        if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
            raise ValueError("subscription url must use http or https")
        if not parsed.netloc:
            raise ValueError("subscription url must include host")
        return candidate

    @field_validator("token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(days=self.days, hours=self.hours, minutes=self.minutes)

    @property
    def is_scheduled(self) -> bool:
        return self.poll_interval > timedelta(0)

    def __repr__(self) -> str:
        return (
            f"SubscriptionRecord(url={self.url!r}, token={mask_secret(self.token)!r}, "
            f"poll_interval={self.poll_interval}, "
            f"fetch_snapshot_updates={self.fetch_snapshot_updates})"
        )

    __str__ = __repr__

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "SubscriptionRecord":
        return cls.model_validate(data)
