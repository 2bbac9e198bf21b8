"""Subscription update orchestration."""

from __future__ import annotations

from ocl_sync.updater.feed import (
    ConceptFeed,
    FetchService,
    StaticConceptFeed,
    UpdateMode,
)
from ocl_sync.updater.updater import (
    ConceptStore,
    Updater,
    UpdaterState,
    UpdateResult,
)

__all__ = [
    "ConceptFeed",
    "ConceptStore",
    "FetchService",
    "StaticConceptFeed",
    "UpdateMode",
    "UpdateResult",
    "Updater",
    "UpdaterState",
]
