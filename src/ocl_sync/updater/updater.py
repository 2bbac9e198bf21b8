"""Runs one subscription update end to end.

Each call to :meth:`Updater.run_task` claims the ledger's single active slot,
picks the update mode, streams concepts from the fetch collaborator through
the duplicate-name resolver into the local store, and closes the update
with either the new release cursor or an error message. Failures are
recorded in the ledger, not raised to the scheduler.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Protocol

from ocl_sync.concepts.models import Concept, ConceptName
from ocl_sync.config import UpdaterSettings
from ocl_sync.service import ConflictError, UpdateError, UpdateService
from ocl_sync.storage.models import UpdateRecord
from ocl_sync.subscription.models import SubscriptionRecord
from ocl_sync.updater.feed import FetchService, UpdateMode
from ocl_sync.utils.masking import scrub_secret
from ocl_sync.utils.time import utc_now

logger = logging.getLogger(__name__)


class UpdaterState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class ConceptStore(Protocol):
    def save_concept(self, concept: Concept) -> None: ...


@dataclass
class UpdateResult:
    update: UpdateRecord
    mode: UpdateMode | None = None
    since_release: str | None = None
    imported_concepts: int = 0
    renamed_names: list[ConceptName] = field(default_factory=list)
    aborted: bool = False


class Updater:
    def __init__(
        self,
        service: UpdateService,
        fetch_service: FetchService,
        concept_store: ConceptStore,
        settings: UpdaterSettings | None = None,
    ) -> None:
        self._service = service
        self._fetch_service = fetch_service
        self._concept_store = concept_store
        self._settings = settings or UpdaterSettings()
        self._shutdown = threading.Event()
        self.state = UpdaterState.IDLE

    def request_shutdown(self) -> None:
        """Ask a running update to stop between concepts.

        The interrupted update is left active in the ledger, exactly as if the
        process had died; :meth:`recover_abandoned_updates` closes it later.
        """
        self._shutdown.set()

    def recover_abandoned_updates(self) -> list[UpdateRecord]:
        cutoff = utc_now() - timedelta(seconds=self._settings.abandoned_after_seconds)
        return self._service.stop_abandoned_updates(cutoff)

    def run_task(self) -> UpdateResult | None:
        subscription = self._service.get_subscription()
        if subscription is None:
            logger.debug("No subscription configured, skipping update")
            return None

        self.state = UpdaterState.STARTING
        update = UpdateRecord()
        try:
            self._service.start_update(update)
        except ConflictError as exc:
            logger.info("Skipping update: %s", exc)
            self.state = UpdaterState.IDLE
            return None

        result = UpdateResult(update=update)
        self.state = UpdaterState.RUNNING
        try:
            result.mode, result.since_release = self._choose_mode(subscription)
            logger.info(
                "Running %s update %d from %s (since release %s)",
                result.mode.value,
                update.update_id,
                subscription.url,
                result.since_release,
            )
            feed = self._fetch_service.fetch(subscription, result.mode, result.since_release)
            for concept in feed:
                if self._shutdown.is_set():
                    logger.warning(
                        "Shutdown requested, abandoning update %d after %d concepts",
                        update.update_id,
                        result.imported_concepts,
                    )
                    self.state = UpdaterState.ABORTED
                    result.aborted = True
                    return result
                self._import_concept(concept, result)
            if feed.release_id is not None:
                self._service.update_latest_downloaded_release(update, feed.release_id)
            update.ocl_date_started = feed.remote_started_at
        except Exception as exc:
            logger.exception("Update %d failed", update.update_id)
            update.last_downloaded_release = None
            update.error_message = _describe_error(exc, subscription)

        self._finish(update, result)
        return result

    def _finish(self, update: UpdateRecord, result: UpdateResult) -> None:
        """Close *update*; the ledger row may already have been force-closed."""
        try:
            self._service.stop_update(update)
        except (UpdateError, sqlite3.Error):
            logger.exception("Could not stop update %d", update.update_id)
            self.state = UpdaterState.FAILED
            return

        if update.error_message is not None:
            self.state = UpdaterState.FAILED
            return
        self.state = UpdaterState.SUCCEEDED
        logger.info(
            "Update %d imported %d concepts, %d names changed to index terms",
            update.update_id,
            result.imported_concepts,
            len(result.renamed_names),
        )

    def _choose_mode(self, subscription: SubscriptionRecord) -> tuple[UpdateMode, str | None]:
        last_successful = self._service.get_last_successful_update()
        if subscription.fetch_snapshot_updates or last_successful is None:
            return UpdateMode.SNAPSHOT, None
        return UpdateMode.RELEASE, last_successful.last_downloaded_release

    def _import_concept(self, concept: Concept, result: UpdateResult) -> None:
        renamed = self._service.change_duplicate_concept_names_to_index_terms(concept)
        self._concept_store.save_concept(concept)
        result.imported_concepts += 1
        result.renamed_names.extend(renamed)


def _describe_error(exc: Exception, subscription: SubscriptionRecord) -> str:
    message = str(exc).strip()
    text = f"{type(exc).__name__}: {message}" if message else type(exc).__name__
    return scrub_secret(text, subscription.token)
