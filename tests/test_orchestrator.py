"""Tests for core.orchestrator: collaborators are stubbed, verify loop logic."""

from unittest.mock import MagicMock, patch

import pytest

from core.orchestrator import BuildPipeline, _BuildRun
from core.state import (
    BUILD_STATUSES,
    BuildRequest,
    CompileResult,
    GeneratedCode,
    ProjectPlan,
    SecurityWarning,
    SourceFile,
    TestResult,
)


COUNTER = SourceFile(
    name="Counter.sol",
    content="pragma solidity ^0.8.20;\ncontract Counter { uint256 public count; function inc() public { count++; } }",
)
COUNTER_TEST = SourceFile(
    name="Counter.t.sol",
    content='import "forge-std/Test.sol";\ncontract CounterTest is Test {}',
)
WARNING = SecurityWarning(severity="warning", message="tx.origin usage detected.", contract="Counter.sol", line=3)

OK = CompileResult(success=True, bytecode="0x6080")
PASSED = TestResult(success=True, total_tests=1, passed=1)
FAILED = TestResult(success=False, total_tests=1, failed=1, output="[FAIL] testInc()")


def _request(**kwargs):
    kwargs.setdefault("prompt", "a simple counter")
    kwargs.setdefault("plan", ProjectPlan(contract_name="Counter", description="Counts"))
    return BuildRequest(**kwargs)


def _pipeline(**kwargs):
    """A pipeline whose collaborators all succeed unless overridden."""
    generator = MagicMock()
    generator.generate.return_value = GeneratedCode(contracts=[COUNTER], tests=[COUNTER_TEST])
    generator.generate_tests.return_value = [COUNTER_TEST]

    compiler = MagicMock()
    compiler.compile.return_value = OK

    security = MagicMock()
    security.scan.return_value = []

    tester = MagicMock()
    tester.run.return_value = PASSED

    fixer = MagicMock()
    fixer.fix_compilation.side_effect = lambda contracts, errors: list(contracts)
    fixer.fix_security.side_effect = lambda contracts, warnings: list(contracts)
    fixer.fix_test_failures.side_effect = lambda contracts, tests, output: (list(contracts), list(tests))

    kwargs.setdefault("clock", lambda: 0.0)
    return BuildPipeline(
        generator=generator, compiler=compiler, security=security,
        tester=tester, fixer=fixer, **kwargs,
    )


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_simple_counter_succeeds_without_fixes():
    pipeline = _pipeline()
    result = pipeline.build(_request())

    assert result.success is True
    assert result.iterations == 0
    assert result.error is None
    assert result.code.contracts == [COUNTER]
    assert result.code.tests == [COUNTER_TEST]
    assert result.test_result == PASSED
    assert result.security_warnings == []
    assert result.logs[0] == "Generating code with Claude..."
    assert "Compilation successful!" in result.logs
    assert result.logs[-1].startswith("Build complete in")
    pipeline.fixer.fix_compilation.assert_not_called()
    pipeline.fixer.fix_security.assert_not_called()
    pipeline.fixer.fix_test_failures.assert_not_called()


def test_generated_pages_are_dropped():
    pipeline = _pipeline()
    pipeline.generator.generate.return_value = GeneratedCode(
        contracts=[COUNTER], tests=[COUNTER_TEST], pages=[MagicMock()],
    )
    result = pipeline.build(_request())
    assert result.code.pages == []


def test_missing_tests_are_generated():
    pipeline = _pipeline()
    pipeline.generator.generate.return_value = GeneratedCode(contracts=[COUNTER])
    result = pipeline.build(_request())

    assert result.success is True
    pipeline.generator.generate_tests.assert_called_once_with([COUNTER])
    assert result.code.tests == [COUNTER_TEST]


def test_progress_statuses_in_order():
    seen = []
    pipeline = _pipeline()
    pipeline.build(_request(), lambda status, message, iteration: seen.append((status, message, iteration)))

    statuses = [s for s, _, _ in seen]
    assert statuses[0] == "generating"
    assert statuses[-1] == "done"
    assert "compiling" in statuses
    assert "checking_security" in statuses
    assert "testing" in statuses


# ---------------------------------------------------------------------------
# Validate mode
# ---------------------------------------------------------------------------

def test_validate_mode_never_calls_generator():
    pipeline = _pipeline()
    existing = GeneratedCode(contracts=[COUNTER], tests=[COUNTER_TEST])
    result = pipeline.build(_request(existing_code=existing))

    assert result.success is True
    assert result.logs[0] == "Validating existing code..."
    pipeline.generator.generate.assert_not_called()
    pipeline.generator.generate_tests.assert_not_called()


def test_validate_mode_generates_missing_tests_only():
    pipeline = _pipeline()
    result = pipeline.build(_request(existing_code=GeneratedCode(contracts=[COUNTER])))

    assert result.success is True
    pipeline.generator.generate.assert_not_called()
    pipeline.generator.generate_tests.assert_called_once()


def test_empty_existing_code_falls_back_to_generation():
    pipeline = _pipeline()
    pipeline.build(_request(existing_code=GeneratedCode()))
    pipeline.generator.generate.assert_called_once()


# ---------------------------------------------------------------------------
# Fatal outcomes
# ---------------------------------------------------------------------------

def test_no_contracts_is_fatal():
    pipeline = _pipeline()
    pipeline.generator.generate.return_value = GeneratedCode()
    result = pipeline.build(_request())

    assert result.success is False
    assert result.error == "No contracts to validate"
    assert result.iterations == 0
    assert result.logs[-1] == "Build error: No contracts to validate"
    pipeline.compiler.compile.assert_not_called()


def test_compile_exhaustion_is_fatal_after_three_fixes():
    pipeline = _pipeline()
    pipeline.compiler.compile.return_value = CompileResult(success=False, errors=["DeclarationError: x"])
    result = pipeline.build(_request())

    assert result.success is False
    assert result.error == "Compilation failed after max attempts"
    assert result.compile_errors == ["DeclarationError: x"]
    assert result.iterations == 3
    assert pipeline.fixer.fix_compilation.call_count == 3
    assert pipeline.compiler.compile.call_count == 4
    pipeline.security.scan.assert_not_called()
    pipeline.tester.run.assert_not_called()


def test_compile_fix_that_works_continues():
    pipeline = _pipeline()
    pipeline.compiler.compile.side_effect = [CompileResult(success=False, errors=["bad"]), OK]
    result = pipeline.build(_request())

    assert result.success is True
    assert result.iterations == 1
    assert "Compilation failed (attempt 1), fixing errors..." in result.logs


def test_max_iterations_reached():
    pipeline = _pipeline()
    pipeline.compiler.compile.return_value = CompileResult(success=False, errors=["bad"])
    result = pipeline.build(_request(max_iterations=1))

    assert result.success is False
    assert result.error == "Max iterations reached"
    assert result.iterations == 1
    assert pipeline.fixer.fix_compilation.call_count == 1


def test_zero_timeout_aborts_before_any_work():
    pipeline = _pipeline()
    result = pipeline.build(_request(timeout_ms=0))

    assert result.success is False
    assert result.error == "Build timeout"
    assert result.iterations == 0
    pipeline.generator.generate.assert_not_called()
    pipeline.fixer.fix_compilation.assert_not_called()


def test_deadline_passing_mid_build():
    ticks = iter([0.0, 0.0, 0.0, 0.0, 10.0])
    pipeline = _pipeline(clock=lambda: next(ticks, 10.0))
    result = pipeline.build(_request(timeout_ms=5000))

    assert result.success is False
    assert result.error == "Build timeout"


def test_collaborator_exception_becomes_failed_result():
    pipeline = _pipeline()
    pipeline.generator.generate.side_effect = RuntimeError("boom")
    result = pipeline.build(_request())

    assert result.success is False
    assert result.error == "boom"
    assert result.logs[-1] == "Build error: boom"


def test_failed_status_is_last_progress_event():
    seen = []
    pipeline = _pipeline()
    pipeline.generator.generate.return_value = GeneratedCode()
    pipeline.build(_request(), lambda status, message, iteration: seen.append(status))
    assert seen[-1] == "failed"


# ---------------------------------------------------------------------------
# Degraded outcomes
# ---------------------------------------------------------------------------

def test_security_exhaustion_is_not_fatal():
    pipeline = _pipeline()
    pipeline.security.scan.return_value = [WARNING]
    result = pipeline.build(_request())

    assert result.success is True
    assert result.error is None
    assert result.security_warnings == [WARNING]
    assert result.iterations == 3
    assert pipeline.fixer.fix_security.call_count == 3
    assert "Security analysis complete with 1 remaining warnings" in result.logs


def test_security_fix_recompiles_before_rescan():
    pipeline = _pipeline()
    pipeline.security.scan.side_effect = [[WARNING], []]

    manager = MagicMock()
    manager.attach_mock(pipeline.compiler.compile, "compile")
    manager.attach_mock(pipeline.security.scan, "scan")
    manager.attach_mock(pipeline.fixer.fix_security, "fix_security")
    manager.attach_mock(pipeline.tester.run, "run")

    result = pipeline.build(_request())

    assert result.success is True
    assert [c[0] for c in manager.mock_calls] == [
        "compile", "scan", "fix_security", "compile", "scan", "run",
    ]


def test_test_exhaustion_with_noop_fix_terminates():
    pipeline = _pipeline()
    pipeline.tester.run.return_value = FAILED
    result = pipeline.build(_request())

    assert result.success is False
    assert result.error is None
    assert result.test_result == FAILED
    assert result.iterations == 5
    assert pipeline.fixer.fix_test_failures.call_count == 5
    assert result.logs[-1].startswith("Build complete in")


def test_test_fix_that_works():
    pipeline = _pipeline()
    pipeline.tester.run.side_effect = [FAILED, PASSED]
    result = pipeline.build(_request())

    assert result.success is True
    assert result.iterations == 1
    assert "Tests failed (attempt 1): 1 failures. Fixing..." in result.logs


def test_iterations_never_exceed_budget():
    pipeline = _pipeline()
    pipeline.security.scan.return_value = [WARNING]
    pipeline.tester.run.return_value = FAILED
    seen = []
    result = pipeline.build(_request(max_iterations=4), lambda s, m, i: seen.append(i))

    assert result.error == "Max iterations reached"
    assert result.iterations == 4
    assert seen == sorted(seen)
    assert max(seen) <= 4


# ---------------------------------------------------------------------------
# Revalidation after fixes
# ---------------------------------------------------------------------------

def test_security_fix_that_breaks_compilation_is_reverted():
    broken = SourceFile(name="Counter.sol", content="contract Counter {")
    pipeline = _pipeline()
    pipeline.fixer.fix_security.side_effect = lambda contracts, warnings: [broken]
    pipeline.compiler.compile.side_effect = [
        OK,
        CompileResult(success=False, errors=["ParserError"]),
        CompileResult(success=False, errors=["ParserError"]),
    ]
    pipeline.security.scan.side_effect = [[WARNING], []]

    result = pipeline.build(_request())

    assert result.success is True
    assert result.code.contracts == [COUNTER]
    assert result.compile_errors is None
    assert pipeline.fixer.fix_compilation.call_count == 1
    assert result.iterations == 1
    pipeline.tester.run.assert_called_once_with([COUNTER], [COUNTER_TEST])


def test_inline_repair_is_adopted_when_it_compiles():
    hardened = SourceFile(name="Counter.sol", content="contract Counter { /* hardened */ }")
    repaired = SourceFile(name="Counter.sol", content="contract Counter { /* repaired */ }")
    pipeline = _pipeline()
    pipeline.fixer.fix_security.side_effect = lambda contracts, warnings: [hardened]
    pipeline.fixer.fix_compilation.side_effect = lambda contracts, errors: [repaired]
    pipeline.compiler.compile.side_effect = [OK, CompileResult(success=False, errors=["x"]), OK]
    pipeline.security.scan.side_effect = [[WARNING], []]

    result = pipeline.build(_request())

    assert result.code.contracts == [repaired]
    assert result.iterations == 1


def test_test_fix_that_breaks_compilation_keeps_previous_result():
    broken = SourceFile(name="Counter.sol", content="contract Counter {")
    pipeline = _pipeline(max_test_attempts=2)
    pipeline.tester.run.return_value = FAILED
    pipeline.fixer.fix_test_failures.side_effect = lambda c, t, o: ([broken], list(t))
    pipeline.compiler.compile.side_effect = [OK] + [CompileResult(success=False, errors=["x"])] * 4

    result = pipeline.build(_request())

    assert result.success is False
    assert result.test_result == FAILED
    assert result.code.contracts == [COUNTER]
    assert pipeline.tester.run.call_count == 1
    assert pipeline.fixer.fix_compilation.call_count == 2
    assert result.iterations == 2


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------

def test_observer_exception_does_not_change_outcome():
    def broken_observer(status, message, iteration):
        raise RuntimeError("observer down")

    pipeline = _pipeline()
    result = pipeline.build(_request(), broken_observer)

    assert result.success is True
    assert result.logs[-1].startswith("Build complete in")


def test_pipeline_can_be_reused():
    pipeline = _pipeline()
    first = pipeline.build(_request())
    second = pipeline.build(_request())
    assert first.success and second.success
    assert first.logs == second.logs


def test_unknown_status_is_rejected():
    run = _BuildRun(_pipeline(), _request(), None)
    with pytest.raises(ValueError, match="Unknown build status: compiled"):
        run.log("Compiled", "compiled")
    assert run.logs == []


def test_every_reported_status_is_known():
    seen = []
    _pipeline().build(_request(), lambda status, message, iteration: seen.append(status))
    assert seen and set(seen) <= BUILD_STATUSES


def test_close_only_releases_a_created_compiler():
    injected = _pipeline()
    injected.close()
    injected.compiler.close.assert_not_called()

    with patch("core.orchestrator.SolcCompiler") as compiler_cls:
        with BuildPipeline(generator=MagicMock(), security=MagicMock(), tester=MagicMock(), fixer=MagicMock()):
            pass
    compiler_cls.return_value.close.assert_called_once()
