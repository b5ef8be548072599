"""Runs solc/forge/git with an allowlist, a timeout and plain-text output."""

import os
import subprocess

import structlog

from config.defaults import DEFAULTS

logger = structlog.get_logger(__name__)

# Keeps forge output free of ANSI codes and banners so it parses
TOOLCHAIN_ENV = {
    "NO_COLOR": "1",
    "FOUNDRY_DISABLE_NIGHTLY_WARNING": "1",
}


def _toolchain_env():
    env = dict(os.environ)
    env.update(TOOLCHAIN_ENV)
    return env


def run_in_sandbox(command, cwd, timeout=None, stdin=None):
    """Run one toolchain command.

    `command[0]` may be a bare name or a configured binary path; only its
    basename is checked against DEFAULTS["allowed_commands"].

    Returns (stdout, stderr, returncode). A timeout or a missing binary is
    reported as returncode -1 with the reason in stderr. Raises ValueError
    for a rejected command or a missing working directory.
    """
    if timeout is None:
        timeout = DEFAULTS["sandbox_timeout"]

    if not command or not isinstance(command, list):
        raise ValueError("Command must be a non-empty list of strings")

    tool = os.path.basename(command[0])
    allowed = DEFAULTS["allowed_commands"]
    if tool not in allowed:
        logger.warning("sandbox_command_rejected", tool=tool)
        raise ValueError(f"Command '{command[0]}' not in allowlist: {allowed}")

    workdir = os.path.realpath(cwd)
    if not os.path.isdir(workdir):
        raise ValueError(f"Working directory does not exist: {workdir}")

    logger.debug("sandbox_run", tool=tool, args=command[1:], timeout=timeout)
    try:
        proc = subprocess.run(
            command,
            cwd=workdir,
            input=stdin,
            env=_toolchain_env(),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning("sandbox_timeout", tool=tool, timeout=timeout)
        return "", f"{tool} timed out after {timeout}s", -1
    except FileNotFoundError:
        logger.warning("sandbox_tool_missing", tool=command[0])
        return "", f"Command not found: {command[0]}", -1
    return proc.stdout, proc.stderr, proc.returncode
