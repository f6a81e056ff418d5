"""Snapshot persistence for the device state."""
from __future__ import annotations

import datetime as dt
import logging
import pathlib
import sqlite3

from wr_sim.domain.models import TIME_PATTERN, DeviceState, clamp_percent
from wr_sim.storage.db import MIGRATIONS_DIR, MigrationError, get_connection, init_db
from wr_sim.storage.repositories import (
    ActivityRepository,
    DeviceSnapshotRepository,
    ScheduleRepository,
)

LOGGER = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when a snapshot cannot be read or written."""


class StateStore:
    """Loads and saves the persisted part of DeviceState.

    ``connected`` and ``watering`` are process state and never stored, so a
    reload always starts disconnected and idle. ``load``/``save`` never raise;
    ``read``/``write`` do.
    """

    def __init__(
        self,
        db_path: str | pathlib.Path,
        *,
        migrations_dir: str | pathlib.Path = MIGRATIONS_DIR,
    ) -> None:
        self.db_path = pathlib.Path(db_path)
        self._migrations_dir = pathlib.Path(migrations_dir)
        self._schema_ready = False

    def load(self) -> DeviceState:
        try:
            return self.read()
        except PersistenceError as exc:
            LOGGER.warning("Falling back to default state: %s", exc)
            return DeviceState()

    def save(self, state: DeviceState) -> bool:
        try:
            self.write(state)
        except PersistenceError as exc:
            LOGGER.error("Snapshot not saved: %s", exc)
            return False
        return True

    def read(self) -> DeviceState:
        conn = self._connect()
        try:
            device = DeviceSnapshotRepository(conn).load()
            if device is None:
                LOGGER.info("No snapshot in %s; using defaults", self.db_path)
                return DeviceState()

            schedules = [
                schedule
                for schedule in ScheduleRepository(conn).list_all()
                if _valid_time(schedule.time)
            ]
            activity = ActivityRepository(conn).list_recent()
            return DeviceState(
                soil=clamp_percent(device["soil"]),
                tank=clamp_percent(device["tank"]),
                flow_rate=clamp_percent(device["flow_rate"]),
                dry_rate=max(0.0, float(device["dry_rate"])),
                last_watered=_parse_ts(device["last_watered"]),
                schedules=schedules,
                activity=activity,
            )
        except (sqlite3.DatabaseError, ValueError, TypeError) as exc:
            raise PersistenceError(f"Cannot read snapshot from {self.db_path}: {exc}") from exc
        finally:
            conn.close()

    def write(self, state: DeviceState) -> None:
        conn = self._connect()
        try:
            DeviceSnapshotRepository(conn).save(state, saved_at=_utc_now())
            ScheduleRepository(conn).replace_all(state.schedules)
            ActivityRepository(conn).replace_all(state.activity)
            conn.commit()
        except sqlite3.DatabaseError as exc:
            conn.rollback()
            raise PersistenceError(f"Cannot write snapshot to {self.db_path}: {exc}") from exc
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        try:
            if not self._schema_ready:
                init_db(self.db_path, self._migrations_dir)
                self._schema_ready = True
            return get_connection(self.db_path)
        except (sqlite3.DatabaseError, MigrationError, OSError) as exc:
            raise PersistenceError(f"Cannot open {self.db_path}: {exc}") from exc


def _valid_time(value: str) -> bool:
    if TIME_PATTERN.match(value or ""):
        return True
    LOGGER.warning("Dropping stored schedule with malformed time '%s'", value)
    return False


def _parse_ts(value: str | None) -> dt.datetime | None:
    if value is None:
        return None
    return dt.datetime.fromisoformat(value)


def _utc_now() -> str:
    return dt.datetime.now(tz=dt.timezone.utc).isoformat()
