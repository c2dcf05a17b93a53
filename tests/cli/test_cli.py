"""Tests for the optisync CLI."""

import json

import pytest
from typer.testing import CliRunner

from optisync import __version__
from optisync.cli import app
from optisync.cli.simulate import ScriptedRemote, run_simulation
from optisync.sync import OperationKind

runner = CliRunner()


def _json(result) -> dict:
    return json.loads(result.stdout)


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"optisync {__version__}" in result.stdout

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "simulate" in result.stdout
        assert "config" in result.stdout


class TestConfigCommand:
    def test_json(self):
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["max_retries"] >= 0
        assert "breaker_failure_threshold" in data
        assert "batch_max_concurrency" in data

    def test_table(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "max_retries" in result.stdout


class TestSimulateCommand:
    """Tests for ``optisync simulate``."""

    def test_success(self):
        result = runner.invoke(app, ["simulate"])
        assert result.exit_code == 0
        assert "committed" in result.stdout
        assert "Circuit breakers" in result.stdout

    def test_retries_then_commits(self):
        result = runner.invoke(app, ["simulate", "--fail", "2", "--json"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["results"][0]["success"] is True
        assert data["results"][0]["attempts"] == 3
        assert [e["event_type"] for e in data["events"]] == [
            "applied", "retry_scheduled", "retry_scheduled", "committed",
        ]

    def test_exhausted_exits_nonzero(self):
        result = runner.invoke(app, ["simulate", "--fail", "10", "--max-retries", "2"])
        assert result.exit_code == 1
        assert "mutation rolled back" in result.stdout

    def test_terminal_error(self):
        result = runner.invoke(
            app, ["simulate", "--kind", "create", "--fail", "1", "--error", "permission denied", "--json"]
        )
        assert result.exit_code == 1
        outcome = _json(result)["results"][0]
        assert outcome["attempts"] == 1
        assert outcome["failure_reason"] == "non_retryable"
        assert outcome["error_code"] == "AUTH"

    def test_repeat_trips_breaker(self):
        result = runner.invoke(
            app,
            [
                "simulate", "--fail", "5", "--max-retries", "0",
                "--breaker-threshold", "2", "--repeat", "3", "--json",
            ],
        )
        assert result.exit_code == 1
        data = _json(result)
        assert [r["attempts"] for r in data["results"]] == [1, 1, 0]
        assert data["results"][2]["failure_reason"] == "circuit_open"
        assert data["breakers"][0]["key"] == "simulated-api"
        assert data["breakers"][0]["is_open"] is True


class TestRunSimulation:
    def test_delete_restores_record_on_failure(self):
        results, events, coordinator = run_simulation(
            kind=OperationKind.DELETE,
            failures=1,
            message="not found",
            max_retries=3,
            breaker_threshold=5,
            repeat=1,
        )
        assert results[0].success is False
        assert [e.event_type.value for e in events] == ["applied", "rolled_back"]
        assert coordinator.store.get("records", "rec-1") is not None

    def test_create_gets_server_id(self):
        results, _, coordinator = run_simulation(
            kind=OperationKind.CREATE,
            failures=0,
            message="",
            max_retries=0,
            breaker_threshold=5,
            repeat=1,
        )
        assert results[0].record_id == "srv-1"
        assert [r.id for r in coordinator.store.list("records")] == ["srv-1"]

    @pytest.mark.asyncio
    async def test_scripted_remote(self):
        remote = ScriptedRemote(1, "network error", OperationKind.UPDATE)
        with pytest.raises(RuntimeError, match="network error"):
            await remote()
        assert await remote() == {"id": "rec-1", "value": 2}
