"""Interfaces to the collaborator that downloads concepts from OCL."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from ocl_sync.concepts.models import Concept
from ocl_sync.subscription.models import SubscriptionRecord


class UpdateMode(str, Enum):
    SNAPSHOT = "snapshot"
    RELEASE = "release"


class ConceptFeed(Protocol):
    """Lazy sequence of concepts for one update.

    ``release_id`` and ``remote_started_at`` describe the remote side of the
    update and are only guaranteed once iteration has finished.
    """

    release_id: str | None
    remote_started_at: datetime | None

    def __iter__(self) -> Iterator[Concept]: ...


class FetchService(Protocol):
    def fetch(
        self,
        subscription: SubscriptionRecord,
        mode: UpdateMode,
        since_release: str | None,
    ) -> ConceptFeed: ...


@dataclass
class StaticConceptFeed:
    """In-memory feed, used when concepts are already downloaded."""

    concepts: Iterable[Concept] = field(default_factory=list)
    release_id: str | None = None
    remote_started_at: datetime | None = None

    def __iter__(self) -> Iterator[Concept]:
        return iter(self.concepts)
