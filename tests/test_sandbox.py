"""Tests for core.sandbox."""

import os
import subprocess
import sys
import tempfile
from unittest.mock import patch

import pytest

from config.defaults import DEFAULTS
from core.sandbox import run_in_sandbox

PYTHON = sys.executable


@pytest.fixture
def allow_python(monkeypatch):
    """Temporarily allow the test interpreter through the allowlist."""
    monkeypatch.setitem(
        DEFAULTS, "allowed_commands",
        DEFAULTS["allowed_commands"] + [os.path.basename(PYTHON)],
    )


def test_allowlist_is_toolchain_only():
    assert DEFAULTS["allowed_commands"] == ["solc", "forge", "git"]


def test_allowed_command(allow_python):
    with tempfile.TemporaryDirectory() as tmpdir:
        stdout, stderr, rc = run_in_sandbox([PYTHON, "--version"], cwd=tmpdir)
        assert rc == 0
        assert "Python" in stdout or "Python" in stderr


def test_stdin_is_piped(allow_python):
    with tempfile.TemporaryDirectory() as tmpdir:
        stdout, _, rc = run_in_sandbox(
            [PYTHON, "-c", "import sys; print(sys.stdin.read().upper())"],
            cwd=tmpdir,
            stdin='{"language": "Solidity"}',
        )
        assert rc == 0
        assert '{"LANGUAGE": "SOLIDITY"}' in stdout


def test_disallowed_command():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ValueError, match="not in allowlist"):
            run_in_sandbox(["rm", "-rf", "/"], cwd=tmpdir)


def test_disallowed_curl():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ValueError, match="not in allowlist"):
            run_in_sandbox(["curl", "http://example.com"], cwd=tmpdir)


def test_disallowed_bash():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ValueError, match="not in allowlist"):
            run_in_sandbox(["bash", "-c", "echo pwned"], cwd=tmpdir)


def test_invalid_cwd():
    with pytest.raises(ValueError, match="does not exist"):
        run_in_sandbox(["solc", "--version"], cwd="/nonexistent/path")


def test_empty_command():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ValueError, match="non-empty list"):
            run_in_sandbox([], cwd=tmpdir)


def test_timeout(allow_python):
    with tempfile.TemporaryDirectory() as tmpdir:
        stdout, stderr, rc = run_in_sandbox(
            [PYTHON, "-c", "import time; time.sleep(10)"],
            cwd=tmpdir,
            timeout=1,
        )
        assert rc == -1
        assert "timed out" in stderr.lower()


def test_command_not_found():
    with tempfile.TemporaryDirectory() as tmpdir:
        with patch("core.sandbox.subprocess.run", side_effect=FileNotFoundError):
            stdout, stderr, rc = run_in_sandbox(["forge", "test"], cwd=tmpdir)
        assert rc == -1
        assert "not found" in stderr.lower()


def test_passes_timeout_and_input():
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="{}", stderr="")
    with tempfile.TemporaryDirectory() as tmpdir:
        with patch("core.sandbox.subprocess.run", return_value=completed) as run:
            assert run_in_sandbox(["solc", "--standard-json"], cwd=tmpdir, timeout=5, stdin="{}") == ("{}", "", 0)
        kwargs = run.call_args.kwargs
        assert kwargs["timeout"] == 5
        assert kwargs["input"] == "{}"
        assert kwargs["cwd"] == os.path.realpath(tmpdir)


def test_configured_binary_path_is_allowed():
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="0.8.24", stderr="")
    with tempfile.TemporaryDirectory() as tmpdir:
        with patch("core.sandbox.subprocess.run", return_value=completed) as run:
            run_in_sandbox(["/opt/solc/bin/solc", "--version"], cwd=tmpdir)
        assert run.call_args.args[0] == ["/opt/solc/bin/solc", "--version"]


def test_toolchain_env_disables_color(monkeypatch):
    monkeypatch.setenv("PATH_MARKER", "kept")
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
    with tempfile.TemporaryDirectory() as tmpdir:
        with patch("core.sandbox.subprocess.run", return_value=completed) as run:
            run_in_sandbox(["forge", "test"], cwd=tmpdir)
    env = run.call_args.kwargs["env"]
    assert env["NO_COLOR"] == "1"
    assert env["FOUNDRY_DISABLE_NIGHTLY_WARNING"] == "1"
    assert env["PATH_MARKER"] == "kept"
