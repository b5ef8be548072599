"""Tester agent: runs Foundry tests in a throwaway project. Zero LLM calls."""

import os
import re
import tempfile

import structlog

from core.state import TestCase, TestResult
from core.sandbox import run_in_sandbox
from config.defaults import DEFAULTS
from utils.llm import is_hardhat_test, normalize_test_name

logger = structlog.get_logger(__name__)

HARDHAT_REJECTED = (
    "Error: Test file is in Hardhat/JavaScript format. "
    "Please regenerate tests in Foundry format."
)

_FOUNDRY_TOML = """[profile.default]
src = "src"
out = "out"
libs = ["lib"]
solc = "{solc_version}"
"""

_REMAPPINGS = """forge-std/=lib/forge-std/src/
@openzeppelin/contracts/=lib/openzeppelin-contracts/contracts/
"""

_LIBRARIES = ["foundry-rs/forge-std", "OpenZeppelin/openzeppelin-contracts"]

_PASS_RE = re.compile(r"\[PASS\]\s+(\w+)\([^)]*\)(?:\s*\(gas:\s*(\d+)\))?")
_FAIL_RE = re.compile(
    r"\[FAIL(?:[.:]\s*(?:Reason:\s*)?([^\]]*))?\]\s+(\w+)\([^)]*\)(?::\s*([^\n]+))?"
)
_SUMMARY_RE = re.compile(r"(\d+)\s+passed.*?(\d+)\s+failed", re.IGNORECASE)
_GAS_SUFFIX_RE = re.compile(r"\s*\(gas:\s*\d+\)\s*$")


def parse_forge_output(output, exit_ok) -> TestResult:
    """Turn `forge test -vvv` output into a TestResult.

    Per-test lines are collected first; the summary line, when present,
    wins if it reports more tests than the per-test lines showed.
    """
    tests = []
    for m in _PASS_RE.finditer(output):
        tests.append(TestCase(name=m.group(1), status="passed", gas_used=m.group(2)))
    for m in _FAIL_RE.finditer(output):
        # Reason sits inside the brackets on recent forge, after the name on older ones
        reason = _GAS_SUFFIX_RE.sub("", m.group(3) or "").strip() or (m.group(1) or "").strip()
        tests.append(TestCase(name=m.group(2), status="failed", error=reason or "Test failed"))

    passed = sum(1 for t in tests if t.status == "passed")
    failed = len(tests) - passed

    summary = _SUMMARY_RE.search(output)
    if summary:
        passed = max(passed, int(summary.group(1)))
        failed = max(failed, int(summary.group(2)))

    return TestResult(
        success=bool(exit_ok) and failed == 0,
        total_tests=passed + failed,
        passed=passed,
        failed=failed,
        output=output,
        tests=tests,
    )


def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as fp:
        fp.write(content)


class ForgeTestRunner:
    """Materializes contracts + tests into a temp Foundry project and runs forge.

    Each call gets its own directory, removed on every exit path.
    """

    name = "tester"

    def __init__(self, forge_binary=None, libs_dir=None, test_timeout=None):
        self.forge = forge_binary or DEFAULTS["forge_binary"]
        self.libs_dir = DEFAULTS["forge_libs_dir"] if libs_dir is None else libs_dir
        self.test_timeout = test_timeout or DEFAULTS["forge_test_timeout"]

    def run(self, contracts, tests) -> TestResult:
        for test in tests:
            if is_hardhat_test(test.content):
                logger.info("hardhat_test_rejected", name=test.name)
                return TestResult(success=False, output=HARDHAT_REJECTED)

        with tempfile.TemporaryDirectory(prefix="dappsmith_forge_") as project_dir:
            self._materialize(project_dir, contracts, tests)

            install_output = self._install_libraries(project_dir)
            if install_output is not None:
                return TestResult(success=False, output=install_output)

            stdout, stderr, rc = run_in_sandbox(
                [self.forge, "test", "-vvv"],
                cwd=project_dir,
                timeout=self.test_timeout,
            )

        output = stdout + (("\n" + stderr) if stderr else "")
        result = parse_forge_output(output, rc == 0)
        logger.info(
            "forge_test_finished",
            passed=result.passed,
            failed=result.failed,
            returncode=rc,
        )
        return result

    def _materialize(self, project_dir, contracts, tests):
        _write(
            os.path.join(project_dir, "foundry.toml"),
            _FOUNDRY_TOML.format(solc_version=DEFAULTS["solc_version"]),
        )
        _write(os.path.join(project_dir, "remappings.txt"), _REMAPPINGS)
        for contract in contracts:
            _write(os.path.join(project_dir, "src", os.path.basename(contract.name)), contract.content)
        for test in tests:
            name = normalize_test_name(os.path.basename(test.name))
            _write(os.path.join(project_dir, "test", name), test.content)

    def _install_libraries(self, project_dir):
        """Populate lib/. Returns an error string on failure, else None."""
        lib_dir = os.path.join(project_dir, "lib")

        if self.libs_dir and os.path.isdir(self.libs_dir):
            # Cleanup unlinks lib/ and leaves the shared tree intact
            os.symlink(os.path.realpath(self.libs_dir), lib_dir, target_is_directory=True)
            return None

        os.makedirs(lib_dir, exist_ok=True)
        run_in_sandbox(["git", "init"], cwd=project_dir, timeout=10)
        stdout, stderr, rc = run_in_sandbox(
            [self.forge, "install", *_LIBRARIES, "--no-git"],
            cwd=project_dir,
            timeout=DEFAULTS["forge_install_timeout"],
        )
        if rc != 0:
            logger.warning("forge_install_failed", returncode=rc, stderr=stderr[:300])
            return f"Failed to install Foundry libraries:\n{stdout}{stderr}"
        return None
