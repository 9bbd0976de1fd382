import json
from pathlib import Path

from click.testing import CliRunner

from confluence_engine.main import cli
from confluence_engine.types import EvaluationResult


def _write_request(tmp_path: Path) -> Path:
    path = tmp_path / "request.json"
    path.write_text(
        json.dumps(
            {
                "symbol": "BTCUSDT",
                "timeframes": {"15": {"indicators": {"close": 100.0, "atr": 2.0}}},
            }
        ),
        encoding="utf-8",
    )
    return path


def test_cli_evaluate_smoke(monkeypatch: object, tmp_path: Path) -> None:
    def _fake_run_evaluation(request: object, settings: object) -> EvaluationResult:
        return EvaluationResult(status="no_confluence", symbol="BTCUSDT", elapsed_ms=1.0)

    monkeypatch.setattr("confluence_engine.main.run_evaluation", _fake_run_evaluation)
    runner = CliRunner()
    result = runner.invoke(cli, ["evaluate", str(_write_request(tmp_path))])
    assert result.exit_code == 0
    assert '"status": "no_confluence"' in result.output


def test_cli_evaluate_rejects_invalid_request(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"symbol": "btc", "timeframes": {}}), encoding="utf-8")
    runner = CliRunner()
    result = runner.invoke(cli, ["evaluate", str(path)])
    assert result.exit_code == 1


def test_cli_levels_smoke() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["levels", "--price", "100", "--atr", "2", "--side", "LONG"])
    assert result.exit_code == 0
    assert '"long"' in result.output
    assert '"short"' not in result.output


def test_cli_status_and_version() -> None:
    runner = CliRunner()
    status = runner.invoke(cli, ["status"])
    assert status.exit_code == 0
    assert "Resolved Limits" in status.output

    version = runner.invoke(cli, ["--version"])
    assert version.exit_code == 0
    assert "confluence-engine version" in version.output
