"""Configuration loading utilities."""
from __future__ import annotations

import json
import pathlib
import tomllib
from dataclasses import dataclass
from typing import Any, Optional


class ConfigError(RuntimeError):
    """Raised when configuration loading fails."""


@dataclass(frozen=True)
class Settings:
    tick_interval_s: float = 1.0
    schedule_interval_s: float = 5.0
    watering_tick_s: float = 1.0
    dry_coefficient: float = 0.02
    water_per_second: float = 2.5
    tank_factor: float = 0.5
    low_tank_threshold: float = 5.0
    max_activity: int = 100
    evaluate_while_disconnected: bool = False
    timezone: Optional[str] = None
    db_path: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 5051


def load_config(path: str | pathlib.Path) -> dict[str, Any]:
    """Load a configuration file (TOML or JSON)."""
    path_obj = pathlib.Path(path)
    if not path_obj.exists():
        raise ConfigError(f"Config path does not exist: {path_obj}")

    suffix = path_obj.suffix.lower()
    try:
        if suffix == ".toml":
            with path_obj.open("rb") as handle:
                return tomllib.load(handle)
        if suffix == ".json":
            with path_obj.open("r", encoding="utf-8") as handle:
                return json.load(handle)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Malformed config file {path_obj}: {exc}") from exc

    raise ConfigError(f"Unsupported config format: {path_obj.suffix}")


def settings_from_config(raw: Optional[dict[str, Any]] = None) -> Settings:
    """Build Settings from the [simulation], [storage] and [server] sections.

    Missing keys keep their defaults. Unknown keys are ignored so config files
    can be shared with other tools.
    """
    raw = raw or {}
    simulation = _section(raw, "simulation")
    storage = _section(raw, "storage")
    server = _section(raw, "server")
    defaults = Settings()

    settings = Settings(
        tick_interval_s=_positive_float(simulation, "tick_interval_s", defaults.tick_interval_s),
        schedule_interval_s=_positive_float(
            simulation, "schedule_interval_s", defaults.schedule_interval_s
        ),
        watering_tick_s=_positive_float(simulation, "watering_tick_s", defaults.watering_tick_s),
        dry_coefficient=_non_negative_float(
            simulation, "dry_coefficient", defaults.dry_coefficient
        ),
        water_per_second=_non_negative_float(
            simulation, "water_per_second", defaults.water_per_second
        ),
        tank_factor=_non_negative_float(simulation, "tank_factor", defaults.tank_factor),
        low_tank_threshold=_non_negative_float(
            simulation, "low_tank_threshold", defaults.low_tank_threshold
        ),
        max_activity=_positive_int(simulation, "max_activity", defaults.max_activity),
        evaluate_while_disconnected=bool(
            simulation.get("evaluate_while_disconnected", defaults.evaluate_while_disconnected)
        ),
        timezone=_optional_str(simulation, "timezone"),
        db_path=_optional_str(storage, "db"),
        host=str(server.get("host", defaults.host)),
        port=_positive_int(server, "port", defaults.port),
    )

    if settings.schedule_interval_s < settings.tick_interval_s:
        raise ConfigError("schedule_interval_s must be >= tick_interval_s")
    return settings


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config section [{name}] must be a table")
    return value


def _to_float(section: dict[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {key} value '{value}'")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {key} value '{value}'") from exc


def _positive_float(section: dict[str, Any], key: str, default: float) -> float:
    value = _to_float(section, key, default)
    if value <= 0:
        raise ConfigError(f"{key} must be > 0 (got {value})")
    return value


def _non_negative_float(section: dict[str, Any], key: str, default: float) -> float:
    value = _to_float(section, key, default)
    if value < 0:
        raise ConfigError(f"{key} must be >= 0 (got {value})")
    return value


def _positive_int(section: dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Invalid {key} value '{value}'")
    if value <= 0:
        raise ConfigError(f"{key} must be > 0 (got {value})")
    return value


def _optional_str(section: dict[str, Any], key: str) -> Optional[str]:
    value = section.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
