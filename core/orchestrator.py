"""Build pipeline orchestrator: generate, then compile/secure/test with bounded repair loops."""

import time
from dataclasses import replace

import structlog

from agents.fixer import Fixer
from agents.generator import GeneratorAgent
from agents.security import SecurityAnalyzer
from agents.tester import ForgeTestRunner
from config.defaults import DEFAULTS
from core.budget import BuildAborted, BuildBudget, RetryController
from core.compiler import SolcCompiler
from core.state import BUILD_STATUSES, BuildResult, GeneratedCode

logger = structlog.get_logger(__name__)

MAX_COMPILATION_ATTEMPTS = DEFAULTS["max_compilation_attempts"]
MAX_SECURITY_ATTEMPTS = DEFAULTS["max_security_attempts"]
MAX_TEST_ATTEMPTS = DEFAULTS["max_test_attempts"]


class BuildPipeline:
    """Runs ACQUIRE -> COMPILE -> SECURE -> TEST -> DONE for one request at a time.

    Collaborators are injected; the defaults are the real adapters. The
    pipeline object itself holds no per-build state, so one instance can
    serve concurrent builds from separate threads.
    """

    def __init__(self, generator=None, compiler=None, security=None, tester=None, fixer=None,
                 max_compilation_attempts=MAX_COMPILATION_ATTEMPTS,
                 max_security_attempts=MAX_SECURITY_ATTEMPTS,
                 max_test_attempts=MAX_TEST_ATTEMPTS,
                 clock=time.monotonic):
        self.generator = generator or GeneratorAgent()
        self.compiler = compiler or SolcCompiler()
        self.security = security or SecurityAnalyzer()
        self.tester = tester or ForgeTestRunner()
        self.fixer = fixer or Fixer()
        self.max_compilation_attempts = max_compilation_attempts
        self.max_security_attempts = max_security_attempts
        self.max_test_attempts = max_test_attempts
        self.clock = clock
        self._owns_compiler = compiler is None

    def close(self):
        """Release the HTTP client of a compiler this pipeline created."""
        if self._owns_compiler:
            self.compiler.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def build(self, request, on_progress=None) -> BuildResult:
        """Run one build. Never raises; every outcome is a BuildResult."""
        return _BuildRun(self, request, on_progress).execute()


class _BuildRun:
    """Working state of a single build: snapshots, budget, transcript."""

    def __init__(self, pipeline, request, on_progress):
        self.p = pipeline
        self.request = request
        self.on_progress = on_progress
        self.budget = BuildBudget(request.max_iterations, request.timeout_ms, clock=pipeline.clock)
        self.logs = []
        self.status = None

        self.code = None            # current snapshot
        self.last_good = None       # last snapshot whose contracts compiled
        self.compile_errors = None
        self.security_warnings = []
        self.test_result = None

    # ------------------------------------------------------------------
    # Progress and collaborator calls
    # ------------------------------------------------------------------

    def log(self, message, status=None):
        if status is not None:
            if status not in BUILD_STATUSES:
                raise ValueError(f"Unknown build status: {status}")
            self.status = status
        self.logs.append(message)
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.status, message, self.budget.iteration)
        except Exception:
            logger.warning("progress_observer_failed", status=self.status, exc_info=True)

    def call(self, fn, *args):
        """Invoke a collaborator once the deadline has been checked."""
        self.budget.check_deadline()
        return fn(*args)

    def compile(self, contracts):
        result = self.call(self.p.compiler.compile, contracts)
        self.compile_errors = None if result.success else list(result.errors)
        return result

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self):
        try:
            self.acquire()
            self.compile_phase()
            self.secure_phase()
            self.test_phase()
        except BuildAborted as e:
            return self.fail(str(e))
        except Exception as e:
            logger.exception("build_crashed")
            return self.fail(str(e) or type(e).__name__)

        elapsed = self.budget.elapsed_ms
        self.log(
            f"Build complete in {elapsed / 1000:.1f}s with {self.budget.iteration} iterations",
            "done",
        )
        logger.info(
            "build_finished",
            success=self.test_result.success,
            iterations=self.budget.iteration,
            elapsed_ms=elapsed,
        )
        return BuildResult(
            success=self.test_result.success,
            code=self.code,
            test_result=self.test_result,
            security_warnings=list(self.security_warnings),
            logs=list(self.logs),
            iterations=self.budget.iteration,
            elapsed_ms=elapsed,
        )

    def fail(self, reason):
        self.log(f"Build error: {reason}", "failed")
        logger.info("build_failed", reason=reason, iterations=self.budget.iteration)
        return BuildResult(
            success=False,
            code=self.code,
            logs=list(self.logs),
            iterations=self.budget.iteration,
            elapsed_ms=self.budget.elapsed_ms,
            error=reason,
            compile_errors=self.compile_errors,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def acquire(self):
        existing = self.request.existing_code
        if existing is not None and existing.contracts:
            self.log("Validating existing code...", "validating")
            code = GeneratedCode(
                contracts=list(existing.contracts),
                pages=list(existing.pages),
                tests=list(existing.tests),
            )
        else:
            self.log("Generating code with Claude...", "generating")
            generated = self.call(self.p.generator.generate, self.request.prompt, self.request.plan)
            code = GeneratedCode(contracts=list(generated.contracts), tests=list(generated.tests))
            self.log(f"Generated {len(code.contracts)} contracts, {len(code.tests)} tests")

        self.code = code
        if not code.contracts:
            raise BuildAborted("No contracts to validate")

        if not code.tests:
            self.log("No tests provided, generating tests...", "generating")
            tests = self.call(self.p.generator.generate_tests, code.contracts)
            self.code = replace(code, tests=list(tests))
            self.log(f"Generated {len(tests)} tests")

    def compile_phase(self):
        retry = RetryController("compile", self.p.max_compilation_attempts, self.budget)
        self.log("Compiling contracts...", "compiling")
        result = self.compile(self.code.contracts)

        while not result.success:
            if retry.exhausted:
                raise BuildAborted("Compilation failed after max attempts")
            retry.begin_attempt()
            self.log(
                f"Compilation failed (attempt {retry.attempts + 1}), fixing errors...",
                "fixing_compilation",
            )
            contracts = self.call(self.p.fixer.fix_compilation, self.code.contracts, result.errors)
            retry.record_attempt()
            self.code = replace(self.code, contracts=list(contracts))

            self.log("Re-compiling after fixes...", "compiling")
            result = self.compile(self.code.contracts)

        self.last_good = self.code
        self.log("Compilation successful!")

    def secure_phase(self):
        retry = RetryController("security", self.p.max_security_attempts, self.budget)
        self.log("Running security analysis...", "checking_security")
        warnings = self.call(self.p.security.scan, self.code.contracts)

        while warnings and not retry.exhausted:
            retry.begin_attempt()
            self.log(
                f"Found {len(warnings)} security issues (attempt {retry.attempts + 1}), fixing...",
                "fixing_security",
            )
            contracts = self.call(self.p.fixer.fix_security, self.code.contracts, warnings)
            retry.record_attempt()

            self.revalidate(replace(self.code, contracts=list(contracts)), "security fixes")
            self.log("Re-running security analysis...", "checking_security")
            warnings = self.call(self.p.security.scan, self.code.contracts)

        self.security_warnings = list(warnings)
        if warnings:
            self.log(f"Security analysis complete with {len(warnings)} remaining warnings")
        else:
            self.log("Security analysis complete!")

    def test_phase(self):
        retry = RetryController("test", self.p.max_test_attempts, self.budget)
        self.log("Running Foundry tests...", "testing")
        result = self.call(self.p.tester.run, self.code.contracts, self.code.tests)

        while not result.success and not retry.exhausted:
            retry.begin_attempt()
            self.log(
                f"Tests failed (attempt {retry.attempts + 1}): {result.failed} failures. Fixing...",
                "fixing_tests",
            )
            contracts, tests = self.call(
                self.p.fixer.fix_test_failures,
                self.code.contracts,
                self.code.tests,
                result.output,
            )
            retry.record_attempt()

            candidate = replace(self.code, contracts=list(contracts), tests=list(tests))
            if not self.revalidate(candidate, "test fixes"):
                # Reverted code already has a test result: the previous one
                continue

            self.log("Re-running tests...", "testing")
            result = self.call(self.p.tester.run, self.code.contracts, self.code.tests)

        self.test_result = result
        self.log(f"Tests: {result.passed} passed, {result.failed} failed")

    def revalidate(self, candidate, what):
        """Recompile a fixed snapshot, with one uncounted inline repair.

        Adopts the candidate if it compiles. Otherwise reverts to the last
        compiling snapshot and returns False.
        """
        self.log(f"Re-compiling after {what}...", "compiling")
        result = self.compile(candidate.contracts)

        if not result.success:
            self.log("Fix broke compilation, attempting inline repair...", "fixing_compilation")
            contracts = self.call(self.p.fixer.fix_compilation, candidate.contracts, result.errors)
            candidate = replace(candidate, contracts=list(contracts))
            result = self.compile(candidate.contracts)

        if not result.success:
            self.log(f"Compilation failed after {what}, reverting to last compiling version")
            self.code = self.last_good
            self.compile_errors = None
            return False

        self.code = candidate
        self.last_good = candidate
        return True


def build_dapp(request, on_progress=None) -> BuildResult:
    """Build with a fresh pipeline wired to the real adapters."""
    with BuildPipeline() as pipeline:
        return pipeline.build(request, on_progress)
