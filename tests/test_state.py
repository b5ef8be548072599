"""Tests for core.state dataclasses."""

import dataclasses

import pytest

from core.state import (
    BUILD_STATUSES,
    BuildRequest,
    BuildResult,
    CompileResult,
    GeneratedCode,
    ProjectPlan,
    SourceFile,
    TestResult,
)


def test_generated_code_defaults_are_independent():
    a = GeneratedCode()
    b = GeneratedCode()
    assert a.contracts == [] and a.pages == [] and a.tests == []
    assert a.contracts is not b.contracts


def test_generated_code_is_frozen():
    code = GeneratedCode(contracts=[SourceFile(name="A.sol", content="")])
    with pytest.raises(dataclasses.FrozenInstanceError):
        code.contracts = []


def test_replace_makes_new_snapshot():
    original = GeneratedCode(contracts=[SourceFile(name="A.sol", content="1")])
    updated = dataclasses.replace(original, contracts=[SourceFile(name="A.sol", content="2")])
    assert original.contracts[0].content == "1"
    assert updated.contracts[0].content == "2"


def test_build_request_defaults():
    request = BuildRequest(prompt="x", plan=ProjectPlan(contract_name="X"))
    assert request.existing_code is None
    assert request.max_iterations == 10
    assert request.timeout_ms == 300_000


def test_compile_result_defaults():
    result = CompileResult(success=True)
    assert result.errors == []
    assert result.warnings == []
    assert result.bytecode is None


def test_test_result_defaults():
    result = TestResult(success=False)
    assert result.total_tests == 0
    assert result.tests == []


def test_build_result_optional_fields():
    result = BuildResult(success=False, logs=["Build error: x"], iterations=0, error="x")
    assert result.code is None
    assert result.compile_errors is None


def test_build_statuses():
    assert "done" in BUILD_STATUSES
    assert "failed" in BUILD_STATUSES
    assert "fixing_tests" in BUILD_STATUSES
    assert len(BUILD_STATUSES) == 10
