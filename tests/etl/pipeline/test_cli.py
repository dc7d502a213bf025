"""Tests for the pipeline command line interface."""

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from src.etl.pipeline.cli import main
from src.etl.utils import LIBRARY_LOGGER, read_json
from src.settings import settings


@pytest.fixture
def raw_inputs(
    tmp_data_dir: Path,
    sample_production: dict[str, Any],
    sample_records: list[dict[str, Any]],
    sample_snapshot: dict[str, Any],
) -> Path:
    raw_dir = tmp_data_dir / "raw"
    (raw_dir / "reviews").mkdir(parents=True, exist_ok=True)
    (raw_dir / "snapshots").mkdir(parents=True, exist_ok=True)
    (raw_dir / "productions.json").write_text(json.dumps([sample_production]))
    (raw_dir / "reviews" / "hamilton.json").write_text(json.dumps(sample_records))
    (raw_dir / "snapshots" / "dtli.json").write_text(json.dumps(sample_snapshot))
    return raw_dir


class TestCommands:
    """Tests for CLI commands."""

    @staticmethod
    def test_no_command_exits(capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    @staticmethod
    def test_process_and_rebuild(
        raw_inputs: Path, tmp_data_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["process", "--no-ensemble", "--rebuild"])

        out = capsys.readouterr().out
        assert "1 productions processed, 0 failed" in out
        assert "PolarityMismatch: 1" in out
        assert (tmp_data_dir / "shards" / "hamilton.json").exists()
        aggregate = read_json(tmp_data_dir / "processed" / "aggregate.json")
        assert aggregate["count"] == 1

    @staticmethod
    def test_status(raw_inputs: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["process", "--no-ensemble"])
        capsys.readouterr()

        main(["status"])

        out = capsys.readouterr().out
        assert "Shards:     1" in out
        assert "Snapshots:  1" in out
        assert "Aggregate:  not built" in out
        assert "1 processed" in out

    @staticmethod
    def test_reconcile(raw_inputs: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["process", "--no-ensemble"])
        capsys.readouterr()

        main(["reconcile", "--production", "hamilton"])

        out = capsys.readouterr().out
        assert "hamilton: 5 canonical reviews" in out
        assert "dtli" in out
        assert "discrepancies" in out

    @staticmethod
    def test_reconcile_unknown_production_fails(tmp_data_dir: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["reconcile", "--production", "wicked"])
        assert exc_info.value.code == 1

    @staticmethod
    def test_rebuild_conflict_exits(
        tmp_data_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        (tmp_data_dir / "processed" / ".rebuild.lock").write_text("someone-else")

        with pytest.raises(SystemExit) as exc_info:
            main(["rebuild"])

        assert exc_info.value.code == 1
        assert "❌" in capsys.readouterr().err

    @staticmethod
    def test_library_loggers_configured(tmp_data_dir: Path) -> None:
        main(["status"])

        assert logging.getLogger(LIBRARY_LOGGER).handlers
        assert logging.getLogger("src.etl.aggregation.rebuild").hasHandlers()

    @staticmethod
    def test_process_without_models_skips_ensemble(
        raw_inputs: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setattr(settings.ensemble, "models", "")

        main(["process"])

        assert "1 productions processed, 0 failed" in capsys.readouterr().out
