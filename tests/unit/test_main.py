# tests/unit/test_main.py — v1
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from regtruth.main import _build_parser, main

URL = "https://law.example/vat-act"


@pytest.fixture
def workspace(tmp_path: Path, vat_text, candidate_fn) -> dict[str, Path]:
    """Document bytes, a replies file keyed by URL and a database path."""
    doc = tmp_path / "vat.txt"
    doc.write_text(vat_text, encoding="utf-8")
    replies = tmp_path / "replies.json"
    replies.write_text(json.dumps({URL: {"candidates": [
        candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE"),
        candidate_fn(vat_text, "2026-01-01", "date", "2026-01-01", topic_key="VAT_RATE",
                     effective_from="2026-01-01"),
    ]}}))
    return {"doc": doc, "replies": replies, "db": tmp_path / "regtruth.db"}


def _global(ws: dict[str, Path]) -> list[str]:
    return ["--db", str(ws["db"]), "--replies", str(ws["replies"])]


# ---------------------------------------------------------------------------
# Parser tests
# ---------------------------------------------------------------------------

class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_ingest_subcommand(self):
        args = _build_parser().parse_args(
            ["ingest", "doc.txt", "--url", URL, "--document-kind", "statute", "--process"]
        )
        assert args.command == "ingest"
        assert args.file == Path("doc.txt")
        assert args.document_kind == "statute"
        assert args.process is True

    def test_answer_parses_date_and_context(self):
        args = _build_parser().parse_args(
            ["answer", "VAT_RATE", "--as-of", "2026-03-01", "--context", '{"turnover": 90000}']
        )
        assert args.as_of.isoformat() == "2026-03-01"
        assert args.context == {"turnover": 90000}

    def test_ingest_requires_url(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["ingest", "doc.txt"])


# ---------------------------------------------------------------------------
# main() integration
# ---------------------------------------------------------------------------

class TestMain:
    def test_no_command_returns_1(self):
        assert main([]) == 1

    def test_ingest_missing_file_returns_1(self, workspace, tmp_path: Path):
        result = main([*_global(workspace), "ingest", str(tmp_path / "missing.txt"), "--url", URL])
        assert result == 1

    def test_answer_on_empty_store_refuses(self, workspace, capsys):
        result = main([*_global(workspace), "answer", "VAT_RATE", "--as-of", "2026-06-01"])
        assert result == 2
        payload = json.loads(capsys.readouterr().out)
        assert payload["refusal_reason"] == "NO_RULE_FOUND"

    def test_ingest_process_answer(self, workspace, capsys):
        g = _global(workspace)
        assert main([*g, "ingest", str(workspace["doc"]), "--url", URL,
                     "--document-kind", "statute", "--process"]) == 0
        out = capsys.readouterr().out
        assert "Evidence created" in out
        assert "LAW" in out
        assert "Published rules:  1" in out

        assert main([*g, "answer", "VAT_RATE", "--as-of", "2026-06-01"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["value"] == "25%"
        assert payload["citations"][0]["exact_quote"] == "25%"

        assert main([*g, "provenance", payload["rule_id"]]) == 0
        chain = json.loads(capsys.readouterr().out)
        assert all(link["verified"] for link in chain["links"])

    def test_reingest_reuses_evidence(self, workspace, capsys):
        g = _global(workspace)
        args = [*g, "ingest", str(workspace["doc"]), "--url", URL]
        assert main(args) == 0
        assert main(args) == 0
        assert "Evidence reused" in capsys.readouterr().out

    def test_reviews_and_dead_letters_empty(self, workspace, capsys):
        g = _global(workspace)
        assert main([*g, "reviews"]) == 0
        assert main([*g, "dead-letters"]) == 0
        out = capsys.readouterr().out
        assert "No pending reviews." in out
        assert "No dead letters." in out

    def test_decide_needs_winner(self, workspace):
        assert main([*_global(workspace), "reviews", "--decide", "cf_1"]) == 1

    def test_sweep_after_ingest(self, workspace, capsys):
        g = _global(workspace)
        assert main([*g, "ingest", str(workspace["doc"]), "--url", URL]) == 0
        assert main([*g, "sweep"]) == 0
        out = capsys.readouterr().out
        assert "Checked:        1" in out
        assert "To re-fetch:    0" in out
