"""Tests for the update ledger and subscription service."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from ocl_sync.concepts.models import Concept, ConceptName, ConceptNameType
from ocl_sync.service import (
    ABANDONED_UPDATE_MESSAGE,
    AlreadyStoppedError,
    ConflictError,
    NotFoundError,
    UpdateService,
)
from ocl_sync.storage.db import SqliteStore
from ocl_sync.storage.models import UpdateRecord
from ocl_sync.subscription.models import SubscriptionRecord
from ocl_sync.utils.time import utc_now


def test_get_update_returns_update_with_id(service: UpdateService) -> None:
    new_update = UpdateRecord()
    service.start_update(new_update)

    update = service.get_update(new_update.update_id)

    assert update == new_update


def test_get_update_raises_if_update_does_not_exist(service: UpdateService) -> None:
    with pytest.raises(NotFoundError):
        service.get_update(0)


def test_get_updates_in_order_returns_updates_descending_by_id(service: UpdateService) -> None:
    first_update = UpdateRecord()
    service.start_update(first_update)
    service.stop_update(first_update)

    second_update = UpdateRecord()
    service.start_update(second_update)

    assert service.get_updates_in_order(0, 20) == [second_update, first_update]


def test_get_updates_in_order_rejects_bad_paging(service: UpdateService) -> None:
    with pytest.raises(ValueError):
        service.get_updates_in_order(-1, 20)
    with pytest.raises(ValueError):
        service.get_updates_in_order(0, 0)


def test_start_update_raises_if_another_update_is_in_progress(service: UpdateService) -> None:
    first_update = UpdateRecord()
    service.start_update(first_update)

    with pytest.raises(ConflictError) as exc_info:
        service.start_update(UpdateRecord())

    assert exc_info.value.active == first_update


def test_start_update_rejects_already_started_record(service: UpdateService) -> None:
    update = UpdateRecord()
    service.start_update(update)
    service.stop_update(update)

    with pytest.raises(ValueError, match="already been started"):
        service.start_update(update)


def test_stop_update_raises_if_not_started(service: UpdateService) -> None:
    with pytest.raises(NotFoundError):
        service.stop_update(UpdateRecord())


def test_stop_update_raises_for_unknown_id(service: UpdateService) -> None:
    with pytest.raises(NotFoundError):
        service.stop_update(UpdateRecord(update_id=999))


def test_stop_update_raises_if_trying_to_stop_twice(service: UpdateService) -> None:
    update = UpdateRecord()
    service.start_update(update)
    service.stop_update(update)

    with pytest.raises(AlreadyStoppedError):
        service.stop_update(update)


def test_stop_update_detects_stale_copy(service: UpdateService) -> None:
    update = UpdateRecord()
    service.start_update(update)
    stale_copy = service.get_update(update.update_id)
    service.stop_update(update)

    with pytest.raises(AlreadyStoppedError):
        service.stop_update(stale_copy)


def test_stop_update_persists_outcome(service: UpdateService) -> None:
    update = UpdateRecord()
    service.start_update(update)
    started = utc_now()
    update.ocl_date_started = started
    update.error_message = "Connection refused"

    service.stop_update(update)

    stored = service.get_update(update.update_id)
    assert stored.local_date_stopped == update.local_date_stopped
    assert stored.ocl_date_started == started
    assert stored.error_message == "Connection refused"
    assert service.get_last_successful_update() is None


def test_save_subscription_saves_subscription(service: UpdateService) -> None:
    new_subscription = SubscriptionRecord(
        url="http://openconceptlab.com/",
        days=5,
        hours=3,
        minutes=30,
        token="c84e5a66d8b2e9a9bf1459cd81e6357f1c6a997e",
    )

    service.save_subscription(new_subscription)

    assert service.get_subscription() == new_subscription


def test_unsubscribe_removes_subscription(service: UpdateService) -> None:
    service.save_subscription(SubscriptionRecord(url="http://openconceptlab.com/"))

    service.unsubscribe()

    assert service.get_subscription() is None


def test_update_latest_downloaded_release(service: UpdateService) -> None:
    update = UpdateRecord(ocl_date_started=utc_now())
    service.start_update(update)
    version = "v1.2"

    service.update_latest_downloaded_release(update, version)
    service.stop_update(update)

    assert service.get_last_successful_subscription_update().last_downloaded_release == version


def test_update_latest_downloaded_release_requires_active_update(
    service: UpdateService,
) -> None:
    with pytest.raises(NotFoundError):
        service.update_latest_downloaded_release(UpdateRecord(), "v1")

    update = UpdateRecord()
    service.start_update(update)
    service.stop_update(update)
    with pytest.raises(AlreadyStoppedError):
        service.update_latest_downloaded_release(update, "v1")


def test_get_last_successful_update_returns_highest_successful(service: UpdateService) -> None:
    older = UpdateRecord(last_downloaded_release="v1")
    service.start_update(older)
    service.stop_update(older)

    newer = UpdateRecord(last_downloaded_release="v2")
    service.start_update(newer)
    service.stop_update(newer)

    failed = UpdateRecord(error_message="boom")
    service.start_update(failed)
    service.stop_update(failed)

    assert service.get_last_successful_update() == newer


def test_second_update_can_start_after_first_stops(service: UpdateService) -> None:
    update_a = UpdateRecord()
    service.start_update(update_a)

    with pytest.raises(ConflictError):
        service.start_update(UpdateRecord())

    service.stop_update(update_a)

    update_b = UpdateRecord()
    service.start_update(update_b)
    assert service.get_active_update() == update_b
    assert service.is_update_in_progress()


def test_concurrent_start_update_allows_exactly_one(tmp_path) -> None:
    path = str(tmp_path / "race.db")
    stores = [SqliteStore(path) for _ in range(8)]
    services = [UpdateService(s) for s in stores]
    barrier = threading.Barrier(len(services))
    started: list[UpdateRecord] = []
    conflicts: list[ConflictError] = []
    lock = threading.Lock()

    def worker(service: UpdateService) -> None:
        update = UpdateRecord()
        barrier.wait()
        try:
            service.start_update(update)
        except ConflictError as exc:
            with lock:
                conflicts.append(exc)
        else:
            with lock:
                started.append(update)

    threads = [threading.Thread(target=worker, args=(s,)) for s in services]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    try:
        assert len(started) == 1
        assert len(conflicts) == len(services) - 1
        assert services[0].get_active_update() == started[0]
    finally:
        for s in stores:
            s.close()


def test_stop_abandoned_updates_returns_closed_records(service: UpdateService) -> None:
    orphan = UpdateRecord(local_date_started=utc_now() - timedelta(days=1))
    service.start_update(orphan)

    closed = service.stop_abandoned_updates(utc_now() - timedelta(hours=6))

    assert closed == [orphan]
    assert closed[0].error_message == ABANDONED_UPDATE_MESSAGE
    with pytest.raises(AlreadyStoppedError):
        service.stop_update(orphan)
    service.start_update(UpdateRecord())


def test_change_duplicate_concept_names_finds_duplicates(
    service: UpdateService, store: SqliteStore
) -> None:
    concept = Concept(datatype="N/A", concept_class="Test")
    concept.add_name(ConceptName("Rubella Viêm não", "vi", ConceptNameType.FULLY_SPECIFIED))
    store.save_concept(concept)

    concept_to_import = Concept()
    name_to_import = concept_to_import.add_name(ConceptName("Rubella Viêm não", "vi"))

    duplicate_ocl_names = service.change_duplicate_concept_names_to_index_terms(
        concept_to_import
    )

    assert [n.name for n in duplicate_ocl_names] == ["Rubella Viêm não"]
    assert name_to_import.name_type is ConceptNameType.INDEX_TERM
