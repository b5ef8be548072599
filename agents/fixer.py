"""Fixer agent: LLM-backed repair for compile errors, security findings and failing tests."""

import structlog

from agents.base import BaseAgent
from utils.llm import format_sources, parse_contracts, parse_tests

logger = structlog.get_logger(__name__)


def merge_files(original, fixed):
    """Overlay `fixed` files onto `original` by name.

    Files the model did not mention are kept. When none of the returned
    names match an original (the model renamed everything), the returned
    set replaces the original. An empty `fixed` returns `original`.
    """
    if not fixed:
        return list(original)

    by_name = {f.name: f for f in fixed}
    if not any(f.name in by_name for f in original):
        return list(fixed)

    merged = [by_name.pop(f.name, f) for f in original]
    merged.extend(f for f in fixed if f.name in by_name)
    return merged


def format_warnings(warnings):
    return "\n".join(
        f"[{w.severity}] {w.contract or 'unknown'} line {w.line or '?'}: {w.message}"
        for w in warnings
    )


class Fixer(BaseAgent):
    """Three repair calls. None of them raises on an unparseable response.

    Inputs are never mutated; every call returns new lists.
    """

    name = "fixer"

    def fix_compilation(self, contracts, errors):
        user_message = (
            "Fix these compilation errors:\n\n"
            + "\n\n".join(errors)
            + "\n\nContracts:\n"
            + format_sources(contracts)
        )
        fixed = parse_contracts(self._call_llm("fix_compilation", user_message))
        if not fixed:
            logger.info("fixer_unparseable_response", kind="compilation")
        return merge_files(contracts, fixed)

    def fix_security(self, contracts, warnings):
        user_message = (
            "Fix these security issues:\n\n"
            + format_warnings(warnings)
            + "\n\nContracts:\n"
            + format_sources(contracts)
        )
        fixed = parse_contracts(self._call_llm("fix_security", user_message))
        if not fixed:
            logger.info("fixer_unparseable_response", kind="security")
        return merge_files(contracts, fixed)

    def fix_test_failures(self, contracts, tests, raw_output):
        """Returns (contracts, tests); either side may come back unchanged."""
        user_message = (
            f"Test output:\n{raw_output}\n\n"
            f"Contracts:\n{format_sources(contracts)}\n\n"
            f"Tests:\n{format_sources(tests)}"
        )
        response = self._call_llm("fix_tests", user_message)
        fixed_contracts = parse_contracts(response)
        fixed_tests = parse_tests(response)
        if not fixed_contracts and not fixed_tests:
            logger.info("fixer_unparseable_response", kind="tests")
        return merge_files(contracts, fixed_contracts), merge_files(tests, fixed_tests)
