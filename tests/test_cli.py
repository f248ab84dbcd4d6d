"""Tests for the Typer CLI."""

from typer.testing import CliRunner

from semdedup.cli import app
from semdedup.cli import commands
from semdedup.dedup import pipeline as pipeline_module
from semdedup.dedup.pipeline import DedupReport
from semdedup.errors import ConfigurationError

runner = CliRunner()


async def _no_dispose():
    return None


def test_run_prints_counters(monkeypatch):
    calls = []

    async def fake_run(org_id, source="raw_messages", limit=None):
        calls.append((org_id, source, limit))
        return DedupReport(clusters_created=2, messages_processed=5, errors=1)

    monkeypatch.setattr(pipeline_module, "run_semantic_dedup", fake_run)
    monkeypatch.setattr(commands, "_dispose_engine", _no_dispose)

    result = runner.invoke(app, ["run", "--org-id", "school-1", "--limit", "100"])

    assert result.exit_code == 0, result.output
    assert calls == [("school-1", "raw_messages", 100)]
    assert "clusters_created" in result.output
    assert "retried next run" in result.output


def test_run_exits_non_zero_on_dedup_error(monkeypatch):
    async def fake_run(org_id, source="raw_messages", limit=None):
        raise ConfigurationError(f"unknown source {source!r}")

    monkeypatch.setattr(pipeline_module, "run_semantic_dedup", fake_run)
    monkeypatch.setattr(commands, "_dispose_engine", _no_dispose)

    result = runner.invoke(app, ["run", "--org-id", "school-1", "--source", "emails"])

    assert result.exit_code == 1
    assert "Semantic dedup failed" in result.output


def test_org_id_from_environment(monkeypatch):
    calls = []

    async def fake_run(org_id, source="raw_messages", limit=None):
        calls.append(org_id)
        return DedupReport(message="No messages to process")

    monkeypatch.setattr(pipeline_module, "run_semantic_dedup", fake_run)
    monkeypatch.setattr(commands, "_dispose_engine", _no_dispose)

    result = runner.invoke(app, ["run"], env={"SEMDEDUP_ORG_ID": "school-9"})

    assert result.exit_code == 0, result.output
    assert calls == ["school-9"]
    assert "No messages to process" in result.output
