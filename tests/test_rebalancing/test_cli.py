"""Tests for the rebalancer CLI (argument parsing, output and exit codes)."""

from __future__ import annotations

import json

import pytest

from src.rebalancing.cli import main


@pytest.fixture
def signals_file(tmp_path):
    path = tmp_path / "signals.json"
    path.write_text(json.dumps({
        "prices": {"SEI": 0.5},
        "apr": {"Staking": 0.10, "Lending": 0.05},
        "risk": 0,
    }))
    return str(path)


class TestCli:

    def test_plan_markowitz(self, signals_file, capsys) -> None:
        assert main(["plan", signals_file, "--model", "markowitz"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["legs"] == [
            {"proto": "Staking", "target_bps": 6667},
            {"proto": "Lending", "target_bps": 3333},
        ]

    def test_plan_with_cap(self, signals_file, capsys) -> None:
        assert main(["plan", signals_file, "--model", "markowitz", "--max-single-bps", "6000"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert [leg["target_bps"] for leg in out["legs"]] == [6000, 4000]

    def test_compare(self, signals_file, capsys) -> None:
        assert main(["--seed", "1", "compare", signals_file]) == 0
        out = json.loads(capsys.readouterr().out)
        assert [m["model"] for m in out["models"]] == ["markowitz", "bandit", "rl"]
        assert out["recommended"] in {"markowitz", "bandit", "rl"}

    def test_dry_run_batch(self, signals_file, capsys) -> None:
        assert main(["rebalance", signals_file, "--vault-id", "1", "2"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert [r["vault_id"] for r in out["results"]] == [1, 2]
        assert all(r["dry_run"] for r in out["results"])

    def test_execute_single(self, signals_file, capsys) -> None:
        assert main(["rebalance", signals_file, "--vault-id", "3", "--execute", "--model", "markowitz"]) == 0
        out = json.loads(capsys.readouterr().out)
        # demo vault holds Staking 4000 -> 6667 is a material change
        assert out["status"] == "executed"

    def test_invalid_signals_exit_code(self, tmp_path, capsys) -> None:
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"prices": {}, "apr": {"Staking": 0.1}}))
        assert main(["plan", str(path)]) == 2
        assert "Invalid input" in capsys.readouterr().err

    def test_missing_file_exit_code(self, tmp_path) -> None:
        assert main(["plan", str(tmp_path / "nope.json")]) == 2
