"""Unit tests for couchodm CLI commands."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from couchodm.cli.main import app
from couchodm.core.exceptions import NetworkFailure
from couchodm.store.http import ServerInfo
from couchodm.store.memory import InMemoryDocumentStore

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Run commands from an empty project directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def memory_store(monkeypatch) -> InMemoryDocumentStore:
    """Route every command to an in-memory store."""
    store = InMemoryDocumentStore()
    monkeypatch.setattr("couchodm.cli.main._get_store", lambda config: store)
    return store


def _write_docs(path: Path, docs: list) -> Path:
    path.write_text(json.dumps(docs), encoding="utf-8")
    return path


class TestMainCLI:
    """Tests for global options."""

    def test_help(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "push" in result.stdout

    def test_invalid_log_level(self, workdir):
        result = runner.invoke(app, ["--log-level", "loud", "config", "show"])

        assert result.exit_code == 1

    def test_broken_config_file(self, workdir):
        (workdir / ".couchodm").mkdir()
        (workdir / ".couchodm" / "odm.config.json").write_text("{oops")

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 1


class TestStatusCommand:

    def test_reachable(self, workdir, monkeypatch):
        store = MagicMock()
        store.server_info.return_value = ServerInfo(couchdb="Welcome", version="3.3.3")
        monkeypatch.setattr("couchodm.cli.main._get_store", lambda config: store)

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["reachable"] is True
        assert data["version"] == "3.3.3"
        store.close.assert_called_once()

    def test_unreachable(self, workdir, monkeypatch):
        store = MagicMock()
        store.server_info.side_effect = NetworkFailure("refused", operation="server_info")
        monkeypatch.setattr("couchodm.cli.main._get_store", lambda config: store)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "unreachable" in result.stdout


class TestGetCommand:

    def test_get(self, workdir, memory_store):
        revision = memory_store.put("a", {"title": "hello"})

        result = runner.invoke(app, ["get", "a", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"_id": "a", "_rev": revision, "title": "hello"}

    def test_get_missing(self, workdir, memory_store):
        result = runner.invoke(app, ["get", "missing"])

        assert result.exit_code == 1


class TestPushCommand:

    def test_push_new_documents(self, workdir, memory_store):
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "n": 1}, {"n": 2}])

        result = runner.invoke(app, ["push", str(path), "--json"])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["accepted"] == 2
        assert report["requests"] == 1
        assert memory_store.get("a").fields == {"n": 1}
        assert len(memory_store) == 2

    def test_push_update(self, workdir, memory_store):
        revision = memory_store.put("a", {"n": 1})
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "_rev": revision, "n": 5}])

        result = runner.invoke(app, ["push", str(path)])

        assert result.exit_code == 0
        assert "1 accepted" in result.stdout
        assert memory_store.get("a").fields == {"n": 5}

    def test_push_conflict_fails(self, workdir, memory_store):
        memory_store.put("a", {"n": 1})
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "_rev": "1-stale", "n": 5}])

        result = runner.invoke(app, ["push", str(path), "--json"])

        assert result.exit_code == 2
        report = json.loads(result.stdout)
        assert report["conflicted_identities"] == ["a"]
        assert report["resolutions"][0]["action"] == "failed"

    def test_push_last_write_wins(self, workdir, memory_store):
        memory_store.put("a", {"n": 1})
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "_rev": "1-stale", "n": 5}])

        result = runner.invoke(app, ["push", str(path), "--policy", "last_write_wins"])

        assert result.exit_code == 0
        assert memory_store.get("a").fields == {"n": 5}

    def test_push_force(self, workdir, memory_store):
        revision = memory_store.put("a", {"n": 1})
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "_rev": revision, "n": 5}])

        result = runner.invoke(app, ["push", str(path), "--force"])

        assert result.exit_code == 0
        assert memory_store.requests[0].force is True

    def test_push_force_over_stale_revision_is_reported(self, workdir, memory_store):
        memory_store.put("a", {"n": 1})
        path = _write_docs(workdir / "docs.json", [{"_id": "a", "_rev": "1-stale", "n": 5}])

        result = runner.invoke(app, ["push", str(path), "--force", "--json"])

        assert result.exit_code == 2
        report = json.loads(result.stdout)
        assert report["conflicted"] == 1
        assert report["accepted"] == 0
        assert memory_store.get("a").conflicts

    def test_push_manual_refused(self, workdir, memory_store):
        path = _write_docs(workdir / "docs.json", [{"n": 1}])

        result = runner.invoke(app, ["push", str(path), "--policy", "manual"])

        assert result.exit_code == 1
        assert memory_store.request_count == 0

    @pytest.mark.parametrize("content", ["{broken", '{"not": "a list"}', "[1, 2]"])
    def test_push_invalid_file(self, workdir, memory_store, content):
        path = workdir / "docs.json"
        path.write_text(content, encoding="utf-8")

        result = runner.invoke(app, ["push", str(path)])

        assert result.exit_code == 1

    def test_push_network_failure(self, workdir, memory_store):
        memory_store.fail_next_request()
        path = _write_docs(workdir / "docs.json", [{"n": 1}])

        result = runner.invoke(app, ["push", str(path)])

        assert result.exit_code == 1


class TestConfigCommands:

    def test_init_and_show(self, workdir):
        result = runner.invoke(
            app, ["config", "init", "--url", "http://db:5984", "--database", "app"]
        )
        assert result.exit_code == 0
        assert (workdir / ".couchodm" / "odm.config.json").exists()

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["store"]["url"] == "http://db:5984"
        assert data["store"]["database"] == "app"

    def test_init_refuses_overwrite(self, workdir):
        runner.invoke(app, ["config", "init"])

        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 1

        result = runner.invoke(app, ["config", "init", "--overwrite", "--database", "other"])
        assert result.exit_code == 0

    def test_init_with_path(self, workdir, tmp_path):
        target = tmp_path / "elsewhere"
        target.mkdir()

        result = runner.invoke(app, ["config", "init", "--path", str(target)])

        assert result.exit_code == 0
        assert (target / ".couchodm" / "odm.config.json").exists()
