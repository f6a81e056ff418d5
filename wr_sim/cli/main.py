"""CLI entrypoint for the watering robot simulator."""
from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import json
import logging
from typing import Any, Optional

from wr_sim.config import ConfigError, Settings, load_config, settings_from_config
from wr_sim.logging_setup import configure_logging
from wr_sim.services.clock import ClockError, localize
from wr_sim.services.device import SettingError, WateringRobot, build_robot
from wr_sim.services.persistence import StateStore
from wr_sim.services.schedule import ScheduleValidationError
from wr_sim.services.timers import VirtualTimers
from wr_sim.storage.db import MigrationError, init_db

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="watering-robot")
    parser.add_argument("--config", help="Path to TOML/JSON config.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit logs in JSON format."
    )
    parser.add_argument("--log-file", help="Also write logs to this file.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_init = subparsers.add_parser("db-init", help="Initialize/upgrade the state database")
    _add_db_argument(db_init)

    status = subparsers.add_parser("status", help="Print the persisted device state")
    _add_db_argument(status)
    status.add_argument("--activity", type=int, default=10, help="Activity entries to show.")

    schedule = subparsers.add_parser("schedule", help="Schedule utilities")
    schedule_sub = schedule.add_subparsers(dest="schedule_command", required=True)
    schedule_add = schedule_sub.add_parser("add", help="Add a time-of-day schedule")
    _add_db_argument(schedule_add)
    schedule_add.add_argument("--time", required=True, help="Time of day, HH:MM (24h).")
    schedule_add.add_argument("--duration", required=True, type=int, help="Seconds to water.")
    schedule_add.add_argument(
        "--once", action="store_true", help="Run once, then remove the schedule."
    )
    schedule_remove = schedule_sub.add_parser("remove", help="Remove a schedule by id")
    _add_db_argument(schedule_remove)
    schedule_remove.add_argument("--id", required=True, dest="schedule_id", help="Schedule id.")
    schedule_list = schedule_sub.add_parser("list", help="List schedules and the next run")
    _add_db_argument(schedule_list)

    settings_cmd = subparsers.add_parser("set", help="Change flow or dry rate")
    _add_db_argument(settings_cmd)
    settings_cmd.add_argument("--flow-rate", type=float, help="Flow rate, percent of max.")
    settings_cmd.add_argument("--dry-rate", type=float, help="Drying coefficient.")

    reset = subparsers.add_parser("reset", help="Restore the default mock state")
    _add_db_argument(reset)

    simulate = subparsers.add_parser("simulate", help="Run the device in virtual time")
    _add_db_argument(simulate)
    simulate.add_argument("--seconds", type=float, required=True, help="Virtual seconds to run.")
    simulate.add_argument("--water", type=int, help="Start a manual session of this many seconds.")
    simulate.add_argument(
        "--start",
        help="Virtual start time (ISO 8601). Defaults to now.",
    )

    serve = subparsers.add_parser("serve", help="Run the device with the HTTP API")
    _add_db_argument(serve)
    serve.add_argument("--host", help="Bind address (default from config).")
    serve.add_argument("--port", type=int, help="Port (default from config).")
    serve.add_argument("--connect", action="store_true", help="Connect the device on startup.")

    return parser


def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", help="Path to SQLite file (default from config).")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, json_format=args.json_logs, log_file=args.log_file)

    raw_config: dict[str, Any] = {}
    if args.config:
        try:
            raw_config = load_config(args.config)
        except ConfigError as exc:
            parser.error(str(exc))
    try:
        settings = settings_from_config(raw_config)
    except ConfigError as exc:
        parser.error(str(exc))

    db_path = args.db or settings.db_path
    if not db_path:
        parser.error("--db is required (or set [storage] db in the config)")
    settings = dataclasses.replace(settings, db_path=db_path)

    try:
        return _dispatch(args, settings)
    except (ScheduleValidationError, SettingError, ClockError) as exc:
        parser.error(str(exc))
    except MigrationError as exc:
        LOGGER.error("%s", exc)
        return 1
    return 2


def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "db-init":
        init_db(settings.db_path)
        LOGGER.info("Database ready at %s", settings.db_path)
        return 0

    if args.command == "simulate":
        return _simulate(args, settings)

    if args.command == "serve":
        return _serve(args, settings)

    robot = build_robot(settings)

    if args.command == "status":
        _print_json(robot.snapshot(activity_limit=args.activity))
        return 0

    if args.command == "schedule":
        if args.schedule_command == "add":
            schedule = robot.add_schedule(args.time, args.duration, repeat_daily=not args.once)
            _print_json(schedule.to_dict())
            return 0
        if args.schedule_command == "remove":
            if not robot.remove_schedule(args.schedule_id):
                LOGGER.error("Unknown schedule id %s", args.schedule_id)
                return 1
            return 0
        if args.schedule_command == "list":
            snapshot = robot.snapshot(activity_limit=0)
            _print_json({"schedules": snapshot["schedules"], "next_run": snapshot["next_run"]})
            return 0

    if args.command == "set":
        if args.flow_rate is None and args.dry_rate is None:
            raise SettingError("Provide --flow-rate and/or --dry-rate")
        if args.flow_rate is not None:
            robot.set_flow_rate(args.flow_rate)
        if args.dry_rate is not None:
            robot.set_dry_rate(args.dry_rate)
        _print_json({"flow_rate": robot.state.flow_rate, "dry_rate": robot.state.dry_rate})
        return 0

    if args.command == "reset":
        robot.reset()
        return 0

    raise SettingError(f"Command not implemented: {args.command}")


def _simulate(args: argparse.Namespace, settings: Settings) -> int:
    if args.seconds < 0:
        raise SettingError("--seconds must be >= 0")

    start = _parse_start(args.start, settings.timezone)
    timers = VirtualTimers(start)
    store = StateStore(settings.db_path)
    # Persist once at the end; per-tick saves would dominate a long run.
    robot = WateringRobot(
        store.load(), timers=timers, clock=timers.now, settings=settings, store=None
    )

    robot.start()
    robot.connect()
    if args.water:
        robot.start_watering(args.water)
    fired = timers.advance(args.seconds)
    robot.disconnect()

    saved = store.save(robot.state)
    summary = robot.snapshot(activity_limit=10)
    summary["virtual_seconds"] = args.seconds
    summary["callbacks"] = fired
    _print_json(summary)
    return 0 if saved else 1


def _serve(args: argparse.Namespace, settings: Settings) -> int:
    from wr_sim.api.app import build_app

    robot = build_robot(settings)
    robot.start()
    if args.connect:
        robot.connect()

    app = build_app(robot)
    host = args.host or settings.host
    port = args.port or settings.port
    LOGGER.info("Serving on http://%s:%s", host, port)
    try:
        app.run(host=host, port=port, threaded=True, use_reloader=False)
    finally:
        robot.shutdown()
    return 0


def _parse_start(value: Optional[str], tz_name: Optional[str]) -> dt.datetime:
    if value is None:
        return localize(dt.datetime.now().replace(microsecond=0), tz_name)
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError as exc:
        raise SettingError(f"Invalid --start value '{value}'") from exc
    return localize(parsed, tz_name)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


if __name__ == "__main__":
    raise SystemExit(main())
