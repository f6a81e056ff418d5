from __future__ import annotations

import json
import logging
import pathlib

import pytest

from wr_sim.cli.main import build_parser, main
from wr_sim.services.persistence import StateStore

pytestmark = pytest.mark.cli

QUIET = ["--log-level", "ERROR"]


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _run_json(capsys: pytest.CaptureFixture[str], argv: list[str]) -> dict:
    assert main(QUIET + argv) == 0
    return json.loads(capsys.readouterr().out)


def test_parser_knows_all_commands() -> None:
    parser = build_parser()
    for argv in (
        ["db-init"],
        ["status"],
        ["schedule", "list"],
        ["set", "--flow-rate", "10"],
        ["reset"],
        ["simulate", "--seconds", "5"],
        ["serve", "--port", "8080"],
    ):
        assert parser.parse_args(argv).command == argv[0]


def test_db_init_creates_database(test_db_path: pathlib.Path) -> None:
    assert main(QUIET + ["db-init", "--db", str(test_db_path)]) == 0
    assert test_db_path.exists()


def test_status_on_fresh_database(capsys: pytest.CaptureFixture[str], test_db_path: pathlib.Path) -> None:
    body = _run_json(capsys, ["status", "--db", str(test_db_path)])

    assert body["connected"] is False
    assert body["soil"] == 50.0
    assert body["tank"] == 80.0


def test_schedule_add_list_remove(capsys: pytest.CaptureFixture[str], test_db_path: pathlib.Path) -> None:
    db = str(test_db_path)
    added = _run_json(capsys, ["schedule", "add", "--db", db, "--time", "06:45", "--duration", "20"])
    assert added["time"] == "06:45"
    assert added["repeat_daily"] is True

    listed = _run_json(capsys, ["schedule", "list", "--db", db])
    assert [item["id"] for item in listed["schedules"]] == [added["id"]]
    assert listed["next_run"] is not None

    assert main(QUIET + ["schedule", "remove", "--db", db, "--id", added["id"]]) == 0
    assert StateStore(test_db_path).load().schedules == []

    assert main(QUIET + ["schedule", "remove", "--db", db, "--id", "missing"]) == 1


def test_invalid_schedule_is_a_usage_error(test_db_path: pathlib.Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(QUIET + ["schedule", "add", "--db", str(test_db_path), "--time", "25:00", "--duration", "5"])
    assert excinfo.value.code == 2


def test_set_clamps_flow_rate(capsys: pytest.CaptureFixture[str], test_db_path: pathlib.Path) -> None:
    body = _run_json(capsys, ["set", "--db", str(test_db_path), "--flow-rate", "150", "--dry-rate", "3"])

    assert body == {"flow_rate": 100.0, "dry_rate": 3.0}
    loaded = StateStore(test_db_path).load()
    assert (loaded.flow_rate, loaded.dry_rate) == (100.0, 3.0)


def test_set_requires_a_value(test_db_path: pathlib.Path) -> None:
    with pytest.raises(SystemExit):
        main(QUIET + ["set", "--db", str(test_db_path)])


def test_reset(test_db_path: pathlib.Path) -> None:
    db = str(test_db_path)
    main(QUIET + ["schedule", "add", "--db", db, "--time", "06:45", "--duration", "20"])

    assert main(QUIET + ["reset", "--db", db]) == 0

    loaded = StateStore(test_db_path).load()
    assert loaded.schedules == []
    assert [entry.text for entry in loaded.activity] == ["Mock state reset."]


def test_simulate_runs_in_virtual_time(capsys: pytest.CaptureFixture[str], test_db_path: pathlib.Path) -> None:
    body = _run_json(
        capsys,
        [
            "simulate",
            "--db",
            str(test_db_path),
            "--seconds",
            "60",
            "--water",
            "4",
            "--start",
            "2026-03-02T07:00:00+00:00",
        ],
    )

    assert body["connected"] is False
    assert body["watering"] is False
    assert body["tank"] == pytest.approx(77.0)
    assert body["soil"] == pytest.approx(56.0 - 56 * 0.02, abs=0.01)
    assert body["virtual_seconds"] == 60.0

    loaded = StateStore(test_db_path).load()
    texts = [entry.text for entry in loaded.activity]
    assert texts[0] == "Disconnected from mock device."
    assert "Watering completed." in texts
    assert loaded.tank == pytest.approx(77.0)


def test_simulate_rejects_bad_start(test_db_path: pathlib.Path) -> None:
    with pytest.raises(SystemExit):
        main(QUIET + ["simulate", "--db", str(test_db_path), "--seconds", "5", "--start", "yesterday"])


def test_db_path_from_config(
    capsys: pytest.CaptureFixture[str], tmp_path: pathlib.Path, test_db_path: pathlib.Path
) -> None:
    config = tmp_path / "robot.toml"
    config.write_text(f'[storage]\ndb = "{test_db_path.as_posix()}"\n', encoding="utf-8")

    body = _run_json(capsys, ["--config", str(config), "status"])

    assert body["soil"] == 50.0
    assert test_db_path.exists()


def test_missing_db_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(QUIET + ["status"])
    assert excinfo.value.code == 2


def test_bad_config_is_a_usage_error(tmp_path: pathlib.Path) -> None:
    config = tmp_path / "robot.toml"
    config.write_text("[simulation]\ntick_interval_s = -1\n", encoding="utf-8")

    with pytest.raises(SystemExit):
        main(QUIET + ["--config", str(config), "status", "--db", str(tmp_path / "x.sqlite")])
