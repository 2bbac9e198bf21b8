"""Update ledger and subscription service.

``UpdateService`` is the only way the rest of the package touches the ledger.
It turns the store's boolean outcomes into the error taxonomy below:

- ``ConflictError``: an update is already running; expected when two
  triggers race, the loser just gives up.
- ``NotFoundError``: the referenced update was never started.
- ``AlreadyStoppedError``: a caller tried to close an update twice.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ocl_sync.concepts.models import Concept, ConceptName
from ocl_sync.concepts.resolver import DuplicateNameResolver
from ocl_sync.storage.db import SqliteStore
from ocl_sync.storage.models import UpdateRecord
from ocl_sync.subscription.models import SubscriptionRecord
from ocl_sync.utils.time import utc_now

logger = logging.getLogger(__name__)

ABANDONED_UPDATE_MESSAGE = (
    "Update abandoned: the process running it stopped before the update finished"
)


class UpdateError(Exception):
    """Base exception for ledger operations."""


class ConflictError(UpdateError):
    """Raised when an update is started while another one is active."""

    def __init__(self, active: UpdateRecord | None = None) -> None:
        self.active = active
        if active is not None and active.update_id is not None:
            message = f"Update {active.update_id} is already in progress"
        else:
            message = "Another update is already in progress"
        super().__init__(message)


class NotFoundError(UpdateError):
    """Raised when an update id is unknown to the ledger."""


class AlreadyStoppedError(UpdateError):
    """Raised when stopping an update that has already been stopped."""


class UpdateService:
    def __init__(
        self,
        store: SqliteStore,
        resolver: DuplicateNameResolver | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver or DuplicateNameResolver(store)

    def start_update(self, update: UpdateRecord) -> UpdateRecord:
        """Persist *update* as the single active update.

        Raises:
            ConflictError: If an update is already in progress.
        """
        if update.update_id is not None:
            raise ValueError(f"Update {update.update_id} has already been started")
        update_id = self._store.insert_update(update)
        if update_id is None:
            raise ConflictError(self._store.get_active_update())
        update.update_id = update_id
        logger.info("Started update %d", update_id)
        return update

    def stop_update(self, update: UpdateRecord) -> UpdateRecord:
        """Close *update*, persisting its outcome fields.

        Raises:
            NotFoundError: If the update was never started.
            AlreadyStoppedError: If the update has already been stopped.
        """
        self._require_active(update)
        stopped_at = utc_now()
        if not self._store.stop_update(update, stopped_at):
            # Lost a race with another closer, e.g. abandoned-update recovery.
            raise AlreadyStoppedError(f"Update {update.update_id} has already been stopped")
        update.local_date_stopped = stopped_at
        if update.error_message is None:
            logger.info(
                "Stopped update %d (release=%s)",
                update.update_id,
                update.last_downloaded_release,
            )
        else:
            logger.warning(
                "Stopped update %d with error: %s", update.update_id, update.error_message
            )
        return update

    def update_latest_downloaded_release(self, update: UpdateRecord, release: str) -> None:
        """Record the release cursor applied so far by the active *update*."""
        self._require_active(update)
        if not self._store.set_last_downloaded_release(update.update_id, release):
            raise AlreadyStoppedError(f"Update {update.update_id} has already been stopped")
        update.last_downloaded_release = release

    def get_update(self, update_id: int) -> UpdateRecord:
        update = self._store.get_update(update_id)
        if update is None:
            raise NotFoundError(f"No update with id {update_id}")
        return update

    def get_updates_in_order(self, offset: int = 0, limit: int = 20) -> list[UpdateRecord]:
        """Return updates, most recent first."""
        if offset < 0:
            raise ValueError("offset must not be negative")
        if limit <= 0:
            raise ValueError("limit must be positive")
        return self._store.list_updates(offset, limit)

    def get_last_successful_update(self) -> UpdateRecord | None:
        return self._store.get_last_successful_update()

    get_last_successful_subscription_update = get_last_successful_update

    def get_active_update(self) -> UpdateRecord | None:
        return self._store.get_active_update()

    def is_update_in_progress(self) -> bool:
        return self.get_active_update() is not None

    def stop_abandoned_updates(self, older_than: datetime) -> list[UpdateRecord]:
        """Force-close active updates started before *older_than*."""
        closed_ids = self._store.stop_abandoned_updates(older_than, ABANDONED_UPDATE_MESSAGE)
        for update_id in closed_ids:
            logger.warning("Closed abandoned update %d", update_id)
        return [self.get_update(update_id) for update_id in closed_ids]

    def save_subscription(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        self._store.save_subscription(subscription)
        logger.info("Saved subscription %r", subscription)
        return subscription

    def get_subscription(self) -> SubscriptionRecord | None:
        return self._store.get_subscription()

    def unsubscribe(self) -> None:
        self._store.delete_subscription()
        logger.info("Removed subscription")

    def change_duplicate_concept_names_to_index_terms(
        self, concept_to_import: Concept
    ) -> list[ConceptName]:
        return self._resolver.change_duplicate_concept_names_to_index_terms(concept_to_import)

    def _require_active(self, update: UpdateRecord) -> None:
        if update.update_id is None:
            raise NotFoundError("Update has not been started")
        stored = self._store.get_update(update.update_id)
        if stored is None:
            raise NotFoundError(f"No update with id {update.update_id}")
        if update.is_stopped() or stored.is_stopped():
            raise AlreadyStoppedError(f"Update {update.update_id} has already been stopped")
