"""Application context assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ocl_sync.config import Settings, load_settings
from ocl_sync.logging_utils import configure_logging
from ocl_sync.service import UpdateService
from ocl_sync.storage.db import SqliteStore
from ocl_sync.subscription.loader import load_subscription
from ocl_sync.updater import FetchService, Updater

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application-wide dependency container.

    The scheduler calls ``updater.run_task()``; administrators read the
    ledger through ``service``.
    """

    settings: Settings
    store: SqliteStore
    service: UpdateService
    updater: Updater

    def close(self) -> None:
        self.updater.request_shutdown()
        self.store.close()


def build_app_context(
    fetch_service: FetchService,
    settings: Settings | None = None,
) -> AppContext:
    """Open the store and wire the updater around *fetch_service*.

    Seeds the subscription from ``settings.subscription.path`` when set and,
    unless disabled, closes updates left active by a crashed process.
    """
    settings = settings or load_settings()
    configure_logging(settings)

    store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    service = UpdateService(store)

    if settings.subscription.path:
        service.save_subscription(load_subscription(settings.subscription.path))

    updater = Updater(
        service=service,
        fetch_service=fetch_service,
        concept_store=store,
        settings=settings.updater,
    )

    if settings.updater.recover_on_startup:
        recovered = updater.recover_abandoned_updates()
        if recovered:
            logger.warning("Recovered %d abandoned update(s)", len(recovered))

    return AppContext(settings=settings, store=store, service=service, updater=updater)
