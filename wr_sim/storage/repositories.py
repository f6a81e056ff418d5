"""Repository layer for storage access."""
from __future__ import annotations

import datetime as dt
import sqlite3
from typing import Iterable, Optional

from wr_sim.domain.models import ActivityEntry, DeviceState, Schedule


class DeviceSnapshotRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save(self, state: DeviceState, saved_at: str) -> None:
        self._conn.execute(
            """
            INSERT INTO device_snapshot (
                snapshot_id,
                soil,
                tank,
                flow_rate,
                dry_rate,
                last_watered,
                saved_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(snapshot_id) DO UPDATE SET
                soil = excluded.soil,
                tank = excluded.tank,
                flow_rate = excluded.flow_rate,
                dry_rate = excluded.dry_rate,
                last_watered = excluded.last_watered,
                saved_at = excluded.saved_at
            """,
            (
                state.soil,
                state.tank,
                state.flow_rate,
                state.dry_rate,
                state.last_watered.isoformat() if state.last_watered else None,
                saved_at,
            ),
        )

    def load(self) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT * FROM device_snapshot WHERE snapshot_id = 1"
        ).fetchone()


class ScheduleRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def replace_all(self, schedules: Iterable[Schedule]) -> int:
        rows = [
            (
                schedule.id,
                position,
                schedule.time,
                schedule.duration,
                1 if schedule.repeat_daily else 0,
                schedule.last_run_date,
            )
            for position, schedule in enumerate(schedules)
        ]
        self._conn.execute("DELETE FROM schedules;")
        self._conn.executemany(
            """
            INSERT INTO schedules (
                schedule_id,
                position,
                time_hhmm,
                duration_s,
                repeat_daily,
                last_run_date
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def list_all(self) -> list[Schedule]:
        rows = self._conn.execute(
            "SELECT * FROM schedules ORDER BY position"
        ).fetchall()
        return [
            Schedule(
                id=row["schedule_id"],
                time=row["time_hhmm"],
                duration=int(row["duration_s"]),
                repeat_daily=bool(row["repeat_daily"]),
                last_run_date=row["last_run_date"],
            )
            for row in rows
        ]


class ActivityRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def replace_all(self, entries: Iterable[ActivityEntry]) -> int:
        rows = [
            (position, entry.timestamp.isoformat(), entry.text)
            for position, entry in enumerate(entries)
        ]
        self._conn.execute("DELETE FROM activity;")
        self._conn.executemany(
            "INSERT INTO activity (position, ts, text) VALUES (?, ?, ?)",
            rows,
        )
        return len(rows)

    def list_recent(self, limit: Optional[int] = None) -> list[ActivityEntry]:
        sql = "SELECT ts, text FROM activity ORDER BY position"
        params: tuple[int, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [
            ActivityEntry(timestamp=dt.datetime.fromisoformat(row["ts"]), text=row["text"])
            for row in self._conn.execute(sql, params).fetchall()
        ]
