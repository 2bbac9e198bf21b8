"""Ledger records for subscription updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ocl_sync.utils.time import utc_now


class UpdateStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(eq=False)
class UpdateRecord:
    """One synchronization attempt against the subscribed OCL source.

    ``update_id`` is issued by the ledger when the update is started and is
    the only field used for equality: a record re-read from the store equals
    the in-memory record that started it, even if one of them is stale.
    """

    update_id: int | None = None
    local_date_started: datetime = field(default_factory=utc_now)
    local_date_stopped: datetime | None = None
    ocl_date_started: datetime | None = None
    last_downloaded_release: str | None = None
    error_message: str | None = None

    def is_stopped(self) -> bool:
        return self.local_date_stopped is not None

    def is_successful(self) -> bool:
        return self.is_stopped() and self.error_message is None

    @property
    def status(self) -> UpdateStatus:
        if not self.is_stopped():
            return UpdateStatus.RUNNING
        if self.error_message is None:
            return UpdateStatus.SUCCEEDED
        return UpdateStatus.FAILED

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, UpdateRecord) or type(other) is not type(self):
            return NotImplemented
        if self.update_id is None or other.update_id is None:
            return False
        return self.update_id == other.update_id

    def __hash__(self) -> int:
        if self.update_id is None:
            return id(self)
        return hash(self.update_id)
