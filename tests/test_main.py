"""Tests for the CLI entry point: pipeline and compiler are mocked."""

import json
import sys
from unittest.mock import patch

import pytest

import main
from core.state import BuildResult, CompileResult, GeneratedCode, SourceFile, TestResult

COUNTER = SourceFile(name="Counter.sol", content="contract Counter {}")


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep process-wide structlog config away from captured streams."""
    with patch("main.configure_logging"):
        yield


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["dappsmith", *argv])
    main.main()


def test_build_writes_project(monkeypatch, tmp_path, capsys):
    plan_file = tmp_path / "plan.json"
    plan_file.write_text(json.dumps({"contractName": "Counter", "description": "A counter"}))
    result = BuildResult(
        success=True, logs=[], iterations=0, elapsed_ms=1200,
        code=GeneratedCode(contracts=[COUNTER]),
        test_result=TestResult(success=True, total_tests=1, passed=1),
    )

    with patch("main.build_dapp", return_value=result) as build:
        _run(monkeypatch, "build", "--plan", str(plan_file), "--output", str(tmp_path / "out"))

    request = build.call_args.args[0]
    assert request.plan.contract_name == "Counter"
    assert request.prompt == "A counter"
    assert (tmp_path / "out" / "counter" / "packages" / "foundry" / "contracts" / "Counter.sol").exists()
    assert "1 passed, 0 failed" in capsys.readouterr().out


def test_build_failure_exits_nonzero(monkeypatch, tmp_path):
    result = BuildResult(success=False, logs=[], iterations=0, error="No contracts to validate")
    with patch("main.build_dapp", return_value=result):
        with pytest.raises(SystemExit) as exc:
            _run(monkeypatch, "build", "--prompt", "a counter", "--output", str(tmp_path))
    assert exc.value.code == 1


def test_build_requires_plan_or_prompt(monkeypatch):
    with pytest.raises(SystemExit):
        _run(monkeypatch, "build")


def test_check_reports(monkeypatch, tmp_path, capsys):
    source = tmp_path / "Counter.sol"
    source.write_text("pragma solidity ^0.8.20;\ncontract Counter {}")

    with patch("main.SolcCompiler") as compiler:
        compiler.return_value.compile.return_value = CompileResult(success=True, bytecode="0x6080")
        _run(monkeypatch, "check", str(source))

    out = capsys.readouterr().out
    assert "Compilation: ok" in out
    assert "Security: 0 warning(s)" in out
    assert "Deployment gas:" in out
    compiler.return_value.close.assert_called_once()
    contracts = compiler.return_value.compile.call_args.args[0]
    assert contracts[0].name == "Counter.sol"


def test_check_fails_on_compile_error(monkeypatch, tmp_path):
    source = tmp_path / "Bad.sol"
    source.write_text("contract Bad {")
    with patch("main.SolcCompiler") as compiler:
        compiler.return_value.compile.return_value = CompileResult(success=False, errors=["ParserError"])
        with pytest.raises(SystemExit):
            _run(monkeypatch, "check", str(source))
