# tests/unit/test_main.py — v2
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from factgraph.api.models import RunResult
from factgraph.core.models import RunStatus
from factgraph.main import _build_parser, main


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a throwaway SQLite ledger, without .env or log setup."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LEDGER_BACKEND", "sqlite")
    monkeypatch.setenv("LEDGER_PATH", str(tmp_path / "ledger.db"))
    with patch("factgraph.main.setup_logging"):
        yield tmp_path


def _ingest(tmp_path: Path, capsys, text: str) -> str:
    doc = tmp_path / "doc.txt"
    doc.write_text(text, encoding="utf-8")
    assert main(["ingest", str(doc), "--source-url", "https://acme.example"]) == 0
    return capsys.readouterr().out.strip()


class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_run_defaults(self):
        args = _build_parser().parse_args(["run", "doc.txt", "--document-id", "abc"])
        assert args.command == "run"
        assert args.file == Path("doc.txt")
        assert args.env == "dev"
        assert args.api_token is None

    def test_run_requires_document_id(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["run", "doc.txt"])

    def test_env_choices(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["run", "doc.txt", "--document-id", "a", "--env", "qa"])


class TestMain:
    def test_no_command(self, cli_env):
        assert main([]) == 1

    def test_ingest_missing_file(self, cli_env):
        assert main(["ingest", str(cli_env / "missing.txt")]) == 1

    def test_ingest_then_chunk(self, cli_env, capsys):
        document_id = _ingest(cli_env, capsys, "word " * 500)
        assert len(document_id) == 36
        assert main(["chunk", document_id]) == 0
        assert "2 chunks indexed" in capsys.readouterr().out

    def test_chunk_unknown_document(self, cli_env):
        assert main(["chunk", "missing"]) == 1

    def test_reap(self, cli_env, capsys):
        assert main(["reap", "--timeout-minutes", "5"]) == 0
        assert "Cleaned 0 run(s)" in capsys.readouterr().out

    def test_export_graph(self, cli_env, capsys):
        out = cli_env / "graph.graphml"
        assert main(["export-graph", str(out)]) == 0
        assert out.exists()
        assert "0 nodes" in capsys.readouterr().out

    def test_run_prints_result(self, cli_env, capsys):
        doc = cli_env / "doc.txt"
        doc.write_text("Acme Inc employs 230 people in Stockholm.", encoding="utf-8")
        result = RunResult(success=True, run_id="r1", status=RunStatus.SUCCESS)
        with patch("factgraph.api.facade.run_pipeline", AsyncMock(return_value=result)) as run:
            assert main(["run", str(doc), "--document-id", "abc", "--env", "staging"]) == 0
        payload = run.await_args.args[0]
        assert payload["environment"] == "staging"
        assert run.await_args.kwargs["caller"] == "cli"
        assert '"run_id": "r1"' in capsys.readouterr().out

    def test_run_unsuccessful_exit_code(self, cli_env):
        doc = cli_env / "doc.txt"
        doc.write_text("Acme Inc employs 230 people in Stockholm.", encoding="utf-8")
        result = RunResult(success=False, run_id="r1", status=RunStatus.PARTIAL)
        with patch("factgraph.api.facade.run_pipeline", AsyncMock(return_value=result)):
            assert main(["run", str(doc), "--document-id", "abc"]) == 1
