"""HTTP command surface for dashboards."""
from __future__ import annotations

import logging
import math
from typing import Any

from flask import Flask, jsonify, request

from wr_sim.services.device import SettingError, WateringRobot
from wr_sim.services.schedule import ScheduleValidationError
from wr_sim.services.watering import SOURCE_MANUAL

LOGGER = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 50


def build_app(robot: WateringRobot) -> Flask:
    """Construct the Flask application around an existing robot.

    The robot keeps running its own timers; handlers only issue commands and
    read snapshots, both under the robot's lock.
    """
    app = Flask(__name__)
    app.config["ROBOT"] = robot

    def _err(msg: str, code: int = 400):
        return jsonify({"ok": False, "error": msg}), code

    def _body() -> dict[str, Any]:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def _status(ok: bool = True, **extra: Any):
        return jsonify({"ok": ok, **extra, "status": robot.snapshot(activity_limit=DEFAULT_ACTIVITY_LIMIT)})

    @app.errorhandler(ScheduleValidationError)
    @app.errorhandler(SettingError)
    def _validation_error(exc: RuntimeError):
        LOGGER.info("Rejected %s %s: %s", request.method, request.path, exc)
        return _err(str(exc), 400)

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    @app.get("/api/status")
    def api_status():
        return jsonify(robot.snapshot(activity_limit=DEFAULT_ACTIVITY_LIMIT))

    @app.post("/api/connect")
    def api_connect():
        changed = robot.connect()
        return _status(changed=changed)

    @app.post("/api/disconnect")
    def api_disconnect():
        changed = robot.disconnect()
        return _status(changed=changed)

    @app.post("/api/watering/start")
    def api_watering_start():
        body = _body()
        if "duration" not in body:
            return _err("duration is required")
        try:
            duration = float(body["duration"])
        except (TypeError, ValueError):
            duration = math.nan
        if not math.isfinite(duration):
            return _err(f"Invalid duration '{body['duration']}'")
        source = str(body.get("source") or SOURCE_MANUAL)
        started = robot.start_watering(duration, source)
        return _status(ok=started)

    @app.post("/api/watering/stop")
    def api_watering_stop():
        stopped = robot.stop_watering("manually stopped")
        return _status(ok=stopped)

    @app.get("/api/schedules")
    def api_list_schedules():
        snapshot = robot.snapshot(activity_limit=0)
        return jsonify({"schedules": snapshot["schedules"], "next_run": snapshot["next_run"]})

    @app.post("/api/schedules")
    def api_add_schedule():
        body = _body()
        repeat_daily = body.get("repeat_daily", True)
        if not isinstance(repeat_daily, bool):
            return _err(f"repeat_daily must be true or false (got {repeat_daily!r})")
        schedule = robot.add_schedule(body.get("time"), body.get("duration"), repeat_daily)
        return jsonify({"ok": True, "schedule": schedule.to_dict()}), 201

    @app.delete("/api/schedules/<schedule_id>")
    def api_remove_schedule(schedule_id: str):
        if not robot.remove_schedule(schedule_id):
            return _err(f"Unknown schedule '{schedule_id}'", 404)
        return jsonify({"ok": True, "id": schedule_id})

    @app.post("/api/settings")
    def api_settings():
        body = _body()
        if "flow_rate" not in body and "dry_rate" not in body:
            return _err("Provide flow_rate and/or dry_rate")
        if "flow_rate" in body:
            robot.set_flow_rate(body["flow_rate"])
        if "dry_rate" in body:
            robot.set_dry_rate(body["dry_rate"])
        return _status()

    @app.post("/api/reset")
    def api_reset():
        robot.reset()
        return _status()

    @app.get("/api/activity")
    def api_activity():
        limit = request.args.get("limit", default=DEFAULT_ACTIVITY_LIMIT, type=int)
        entries = robot.recent_activity(limit)
        return jsonify({"activity": [entry.to_dict() for entry in entries]})

    @app.after_request
    def _no_cache(resp):
        resp.headers["Cache-Control"] = "no-store"
        return resp

    return app
