"""SQLite access layer for the update ledger, subscription and local concepts."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Mapping, Sequence

from ocl_sync.concepts.models import Concept, ConceptName, ConceptNameType
from ocl_sync.storage.models import UpdateRecord
from ocl_sync.subscription.models import SubscriptionRecord
from ocl_sync.utils.time import from_iso, to_iso, utc_now

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]

_SUBSCRIPTION_ROW_ID = 1


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS ocl_update (
                update_id INTEGER PRIMARY KEY AUTOINCREMENT,
                local_date_started TEXT NOT NULL,
                local_date_stopped TEXT,
                ocl_date_started TEXT,
                last_downloaded_release TEXT,
                error_message TEXT
            );

            -- At most one row may be active (not yet stopped).
            CREATE UNIQUE INDEX IF NOT EXISTS idx_ocl_update_single_active
                ON ocl_update((local_date_stopped IS NULL))
                WHERE local_date_stopped IS NULL;

            CREATE TABLE IF NOT EXISTS ocl_subscription (
                subscription_id INTEGER PRIMARY KEY CHECK (subscription_id = 1),
                url TEXT NOT NULL,
                token TEXT,
                days INTEGER NOT NULL DEFAULT 0,
                hours INTEGER NOT NULL DEFAULT 0,
                minutes INTEGER NOT NULL DEFAULT 0,
                fetch_snapshot_updates INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS concept (
                uuid TEXT PRIMARY KEY,
                concept_class TEXT,
                datatype TEXT,
                retired INTEGER NOT NULL DEFAULT 0,
                date_changed TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS concept_name (
                uuid TEXT PRIMARY KEY,
                concept_uuid TEXT NOT NULL,
                name TEXT NOT NULL,
                locale TEXT NOT NULL,
                name_type TEXT,
                FOREIGN KEY(concept_uuid) REFERENCES concept(uuid) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_concept_name_name_locale
                ON concept_name(name, locale);
            CREATE INDEX IF NOT EXISTS idx_concept_name_concept_uuid
                ON concept_name(concept_uuid);
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    # Update ledger

    def insert_update(self, update: UpdateRecord) -> int | None:
        """Insert *update* as the active row.

        Returns the issued id, or None when another update is still active.
        The unique index makes the check and the insert one statement, so two
        callers (threads or processes sharing the file) cannot both succeed.
        """
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO ocl_update (
                        local_date_started, local_date_stopped, ocl_date_started,
                        last_downloaded_release, error_message
                    ) VALUES (?, NULL, ?, ?, ?)
                    """,
                    (
                        to_iso(update.local_date_started),
                        to_iso(update.ocl_date_started),
                        update.last_downloaded_release,
                        update.error_message,
                    ),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                return None
            self._conn.commit()
            return cursor.lastrowid

    def stop_update(self, update: UpdateRecord, stopped_at: datetime) -> bool:
        """Atomically close an active row.

        Returns True if exactly one row was updated, False if the row is
        missing or was already stopped.
        """
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE ocl_update
                SET local_date_stopped = ?, ocl_date_started = ?,
                    last_downloaded_release = ?, error_message = ?
                WHERE update_id = ? AND local_date_stopped IS NULL
                """,
                (
                    to_iso(stopped_at),
                    to_iso(update.ocl_date_started),
                    update.last_downloaded_release,
                    update.error_message,
                    update.update_id,
                ),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def set_last_downloaded_release(self, update_id: int, release: str | None) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE ocl_update SET last_downloaded_release = ? "
                "WHERE update_id = ? AND local_date_stopped IS NULL",
                (release, update_id),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def get_update(self, update_id: int) -> UpdateRecord | None:
        row = self.fetch_one("SELECT * FROM ocl_update WHERE update_id = ?", (update_id,))
        if row is None:
            return None
        return _row_to_update(row)

    def list_updates(self, offset: int, limit: int) -> list[UpdateRecord]:
        rows = self.fetch_all(
            "SELECT * FROM ocl_update ORDER BY update_id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [_row_to_update(row) for row in rows]

    def get_active_update(self) -> UpdateRecord | None:
        row = self.fetch_one(
            "SELECT * FROM ocl_update WHERE local_date_stopped IS NULL "
            "ORDER BY update_id DESC LIMIT 1",
            (),
        )
        if row is None:
            return None
        return _row_to_update(row)

    def get_last_successful_update(self) -> UpdateRecord | None:
        row = self.fetch_one(
            "SELECT * FROM ocl_update "
            "WHERE local_date_stopped IS NOT NULL AND error_message IS NULL "
            "ORDER BY update_id DESC LIMIT 1",
            (),
        )
        if row is None:
            return None
        return _row_to_update(row)

    def stop_abandoned_updates(self, started_before: datetime, error_message: str) -> list[int]:
        """Force-close active rows started before *started_before*.

        Returns:
            Ids of the rows this call closed. Rows closed concurrently by
            another connection are not included.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                UPDATE ocl_update
                SET local_date_stopped = ?, error_message = ?, last_downloaded_release = NULL
                WHERE local_date_stopped IS NULL AND local_date_started < ?
                RETURNING update_id
                """,
                (to_iso(utc_now()), error_message, to_iso(started_before)),
            ).fetchall()
            self._conn.commit()
        return sorted(row["update_id"] for row in rows)

    # Subscription

    def save_subscription(self, subscription: SubscriptionRecord) -> None:
        self.execute(
            """
            INSERT INTO ocl_subscription (
                subscription_id, url, token, days, hours, minutes, fetch_snapshot_updates
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(subscription_id) DO UPDATE SET
                url = excluded.url,
                token = excluded.token,
                days = excluded.days,
                hours = excluded.hours,
                minutes = excluded.minutes,
                fetch_snapshot_updates = excluded.fetch_snapshot_updates
            """,
            (
                _SUBSCRIPTION_ROW_ID,
                subscription.url,
                subscription.token,
                subscription.days,
                subscription.hours,
                subscription.minutes,
                int(subscription.fetch_snapshot_updates),
            ),
        )

    def get_subscription(self) -> SubscriptionRecord | None:
        row = self.fetch_one(
            "SELECT * FROM ocl_subscription WHERE subscription_id = ?",
            (_SUBSCRIPTION_ROW_ID,),
        )
        if row is None:
            return None
        data = dict(row)
        data.pop("subscription_id", None)
        data["fetch_snapshot_updates"] = bool(data["fetch_snapshot_updates"])
        return SubscriptionRecord(**data)

    def delete_subscription(self) -> None:
        self.execute(
            "DELETE FROM ocl_subscription WHERE subscription_id = ?",
            (_SUBSCRIPTION_ROW_ID,),
        )

    # Local concepts

    def save_concept(self, concept: Concept) -> None:
        """Upsert *concept* and replace its names.

        Saving the same concept twice leaves the store in the same state, so
        re-applying a release after a failed update is harmless.
        """
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO concept (uuid, concept_class, datatype, retired, date_changed)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(uuid) DO UPDATE SET
                        concept_class = excluded.concept_class,
                        datatype = excluded.datatype,
                        retired = excluded.retired,
                        date_changed = excluded.date_changed
                    """,
                    (
                        concept.uuid,
                        concept.concept_class,
                        concept.datatype,
                        int(concept.retired),
                        to_iso(utc_now()),
                    ),
                )
                self._conn.execute(
                    "DELETE FROM concept_name WHERE concept_uuid = ?", (concept.uuid,)
                )
                self._conn.executemany(
                    """
                    INSERT INTO concept_name (uuid, concept_uuid, name, locale, name_type)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(uuid) DO UPDATE SET
                        concept_uuid = excluded.concept_uuid,
                        name = excluded.name,
                        locale = excluded.locale,
                        name_type = excluded.name_type
                    """,
                    [
                        (
                            name.uuid,
                            concept.uuid,
                            name.name,
                            name.locale,
                            name.name_type.value if name.name_type else None,
                        )
                        for name in concept.names
                    ],
                )
            except sqlite3.Error:
                self._conn.rollback()
                raise
            self._conn.commit()

    def get_concept(self, uuid: str) -> Concept | None:
        row = self.fetch_one("SELECT * FROM concept WHERE uuid = ?", (uuid,))
        if row is None:
            return None
        name_rows = self.fetch_all(
            "SELECT * FROM concept_name WHERE concept_uuid = ? ORDER BY rowid",
            (uuid,),
        )
        return Concept(
            uuid=row["uuid"],
            concept_class=row["concept_class"],
            datatype=row["datatype"],
            retired=bool(row["retired"]),
            names=[_row_to_name(name_row) for name_row in name_rows],
        )

    def find_names(self, name: str, locale: str) -> list[ConceptName]:
        """Return local names with exactly this text and locale."""
        rows = self.fetch_all(
            "SELECT * FROM concept_name WHERE name = ? AND locale = ?",
            (name, locale),
        )
        return [_row_to_name(row) for row in rows]


def _row_to_update(row: sqlite3.Row) -> UpdateRecord:
    return UpdateRecord(
        update_id=row["update_id"],
        local_date_started=from_iso(row["local_date_started"]),
        local_date_stopped=from_iso(row["local_date_stopped"]),
        ocl_date_started=from_iso(row["ocl_date_started"]),
        last_downloaded_release=row["last_downloaded_release"],
        error_message=row["error_message"],
    )


def _row_to_name(row: sqlite3.Row) -> ConceptName:
    name_type = row["name_type"]
    return ConceptName(
        name=row["name"],
        locale=row["locale"],
        name_type=ConceptNameType(name_type) if name_type else None,
        uuid=row["uuid"],
        concept_uuid=row["concept_uuid"],
    )
