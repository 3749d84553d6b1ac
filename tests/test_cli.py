"""Integration tests for CLI commands."""

import shutil
import subprocess
from pathlib import Path

import pytest
from typer.testing import CliRunner

from repograph import __version__
from repograph.cli import app, screen_query
from repograph.errors import UnsafeQueryError
from repograph.models import Language

runner = CliRunner()


@pytest.fixture
def project(temp_dir: Path, entry_point_code: str) -> Path:
    """A small plain directory (no git) with one Python module."""
    root = temp_dir / "proj"
    root.mkdir()
    (root / "app.py").write_text(entry_point_code)
    (root / "README.md").write_text("# not code\n")
    return root


@pytest.fixture
def synced(project: Path, require_language) -> Path:
    require_language(Language.PYTHON)
    result = runner.invoke(app, ["sync", str(project), "--no-embed"])
    assert result.exit_code == 0, result.stdout
    return project


class TestSyncCommand:
    """Tests for 'repograph sync'."""

    def test_sync_directory(self, project: Path, require_language):
        """Test syncing a plain directory."""
        require_language(Language.PYTHON)
        result = runner.invoke(app, ["sync", str(project), "--no-embed"])

        assert result.exit_code == 0
        assert "Synced" in result.stdout
        assert "completed" in result.stdout
        assert "Nodes: 4" in result.stdout
        assert "Edges:" in result.stdout

    def test_sync_nonexistent_path(self):
        result = runner.invoke(app, ["sync", "/nonexistent/path", "--no-embed"])
        assert result.exit_code != 0

    def test_delta_after_edit(self, synced: Path):
        """Test a delta sync against the stored directory snapshot."""
        (synced / "extra.py").write_text("def extra():\n    return 3\n")
        result = runner.invoke(app, ["sync", str(synced), "--type", "delta", "--no-embed"])

        assert result.exit_code == 0
        assert "Nodes: 2" in result.stdout

    def test_jobs_listing(self, synced: Path):
        result = runner.invoke(app, ["jobs"])
        assert result.exit_code == 0
        assert "proj" in result.stdout
        assert "completed" in result.stdout

    def test_jobs_empty(self):
        result = runner.invoke(app, ["jobs"])
        assert result.exit_code == 0
        assert "No sync jobs yet." in result.stdout


class TestGraphCommands:
    """Tests for read commands against a synced repository."""

    def test_stats(self, synced: Path):
        result = runner.invoke(app, ["stats"])
        assert result.exit_code == 0
        assert "Files" in result.stdout
        assert "DEFINES" in result.stdout

    def test_stats_without_sync(self):
        result = runner.invoke(app, ["stats"])
        assert result.exit_code != 0

    def test_callers(self, synced: Path):
        result = runner.invoke(app, ["callers", "helper"])
        assert result.exit_code == 0
        assert "app.py:main" in result.stdout

    def test_callers_unknown_symbol(self, synced: Path):
        result = runner.invoke(app, ["callers", "nope"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_callees_and_usage(self, synced: Path):
        result = runner.invoke(app, ["callees", "main"])
        assert result.exit_code == 0
        assert "app.py:helper" in result.stdout

        result = runner.invoke(app, ["usage", "helper", "--repo", "proj"])
        assert result.exit_code == 0
        assert "callers: 1" in result.stdout

    def test_paths(self, synced: Path):
        result = runner.invoke(app, ["paths", "main", "helper"])
        assert result.exit_code == 0
        assert "app.py:main -> app.py:helper" in result.stdout

    def test_impact(self, synced: Path):
        result = runner.invoke(app, ["impact", "helper"])
        assert result.exit_code == 0
        assert "app.py:main" in result.stdout

    def test_dead_code(self, synced: Path):
        result = runner.invoke(app, ["dead-code"])
        assert result.exit_code == 0
        assert "app.py:unused" in result.stdout
        assert "app.py:helper" not in result.stdout

    def test_history_without_git(self, synced: Path):
        result = runner.invoke(app, ["history", "app.py"])
        assert result.exit_code == 0
        assert "No recorded commits for app.py." in result.stdout

        result = runner.invoke(app, ["history", "missing.py"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_hotspots_none(self, synced: Path):
        result = runner.invoke(app, ["hotspots", "--threshold", "5"])
        assert result.exit_code == 0
        assert "No symbols with complexity >= 5." in result.stdout

    def test_read_query(self, synced: Path):
        result = runner.invoke(app, ["query", "SELECT name FROM symbols ORDER BY name"])
        assert result.exit_code == 0
        assert "helper" in result.stdout
        assert "unused" in result.stdout

    def test_mutating_query_rejected(self, synced: Path):
        """Test that a write is refused before it reaches the store."""
        result = runner.invoke(app, ["query", "DELETE FROM symbols"])
        assert result.exit_code == 2
        assert "DELETE" in result.stdout

        after = runner.invoke(app, ["query", "SELECT COUNT(*) AS n FROM symbols"])
        assert "3" in after.stdout

    def test_broken_query(self, synced: Path):
        result = runner.invoke(app, ["query", "SELECT * FROM nowhere"])
        assert result.exit_code == 1


class TestScreenQuery:
    @pytest.mark.parametrize("raw", [
        "DELETE FROM symbols",
        "drop table edges",
        "SELECT 1; INSERT INTO files VALUES (1)",
        "UPDATE symbols SET name = 'x'",
        "ATTACH DATABASE 'x.db' AS x",
        "PRAGMA writable_schema = 1",
    ])
    def test_rejects_mutations(self, raw):
        with pytest.raises(UnsafeQueryError):
            screen_query(raw)

    @pytest.mark.parametrize("raw", [
        "SELECT * FROM symbols WHERE name = 'settings'",
        "SELECT updated_at, created FROM files",
        "SELECT dst FROM edges WHERE edge_type = 'CALLS'",
    ])
    def test_allows_reads(self, raw):
        assert screen_query(raw) == raw


class TestConfigCommands:
    """Tests for 'repograph config'."""

    def test_init_then_show(self, repograph_home: Path):
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        assert (repograph_home / "config.toml").exists()

        again = runner.invoke(app, ["config", "init"])
        assert "already exists" in again.stdout

    def test_set_and_show(self):
        result = runner.invoke(app, ["config", "set", "max_workers", "8"])
        assert result.exit_code == 0
        assert "max_workers = 8" in result.stdout

        shown = runner.invoke(app, ["config", "show"])
        assert shown.exit_code == 0
        assert "max_workers" in shown.stdout
        assert "8" in shown.stdout

    def test_set_unknown_key(self):
        result = runner.invoke(app, ["config", "set", "bogus", "1"])
        assert result.exit_code != 0

    def test_set_bad_value(self):
        result = runner.invoke(app, ["config", "set", "max_workers", "many"])
        assert result.exit_code != 0

    def test_set_embedding(self):
        result = runner.invoke(app, ["config", "set-embedding", "minilm"])
        assert result.exit_code == 0
        assert "minilm" in result.stdout

        bad = runner.invoke(app, ["config", "set-embedding", "nope"])
        assert bad.exit_code != 0


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"repograph v{__version__}" in result.stdout


def test_languages(require_language):
    require_language(Language.PYTHON)
    result = runner.invoke(app, ["languages"])
    assert result.exit_code == 0
    assert "python" in result.stdout


def test_sync_with_vectors_then_search(project: Path, require_language):
    """Test that an embedded sync makes chunks searchable."""
    require_language(Language.PYTHON)
    pytest.importorskip("lancedb")

    result = runner.invoke(app, ["sync", str(project)])
    assert result.exit_code == 0
    assert "Vectors: 3" in result.stdout

    hits = runner.invoke(app, ["search", "helper", "--top-k", "2"])
    assert hits.exit_code == 0
    assert "helper" in hits.stdout
    assert "app.py:" in hits.stdout


def test_sync_git_repository_records_history(project: Path, require_language):
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    require_language(Language.PYTHON)
    for args in (
        ["init", "-q"],
        ["config", "user.email", "dev@example.com"],
        ["config", "user.name", "Dev"],
        ["add", "-A"],
        ["commit", "-q", "-m", "initial"],
    ):
        subprocess.run(["git", *args], cwd=str(project), check=True, capture_output=True)

    result = runner.invoke(app, ["sync", str(project), "--no-embed"])
    assert result.exit_code == 0, result.stdout

    result = runner.invoke(app, ["history", "app.py"])
    assert result.exit_code == 0
    assert "added" in result.stdout
    assert "initial" in result.stdout

    result = runner.invoke(app, ["stats"])
    assert "MODIFIES" in result.stdout
