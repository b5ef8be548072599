"""Generator agent: produces contracts and Foundry tests from a plan."""

import json
import re

import structlog

from agents.base import BaseAgent
from core.state import GeneratedCode, SourceFile
from utils.llm import format_sources, parse_contracts, parse_tests

logger = structlog.get_logger(__name__)


def contract_stem(name):
    """Counter.sol -> Counter"""
    return re.sub(r"\.sol$", "", name)


def fallback_test(contract):
    """Synthesize a minimal Foundry test for a contract the model left untested."""
    stem = contract_stem(contract.name)
    constructor = re.search(r"constructor\s*\(([^)]*)\)", contract.content)
    has_args = bool(constructor and constructor.group(1).strip())
    has_owner = "Ownable" in contract.content or "owner()" in contract.content

    owner_tests = ""
    if has_owner:
        owner_tests = (
            "\n"
            "    function testOwner() public view {\n"
            "        assertEq(instance.owner(), owner);\n"
            "    }\n"
        )

    return SourceFile(
        name=f"{stem}.t.sol",
        content=(
            "// SPDX-License-Identifier: MIT\n"
            "pragma solidity ^0.8.20;\n"
            "\n"
            'import "forge-std/Test.sol";\n'
            f'import "../src/{stem}.sol";\n'
            "\n"
            f"contract {stem}Test is Test {{\n"
            f"    {stem} public instance;\n"
            "    address public owner;\n"
            "    address public user1;\n"
            "\n"
            "    function setUp() public {\n"
            "        owner = address(this);\n"
            '        user1 = makeAddr("user1");\n'
            f"        instance = new {stem}({'/* add constructor args */' if has_args else ''});\n"
            "    }\n"
            "\n"
            "    function testDeployment() public view {\n"
            "        assertTrue(address(instance) != address(0));\n"
            "    }\n"
            f"{owner_tests}"
            "}\n"
        ),
    )


class GeneratorAgent(BaseAgent):
    """Generates contracts + tests, or tests alone for supplied contracts."""

    name = "generator"

    def generate(self, prompt, plan, answers=None) -> GeneratedCode:
        """One LLM call for the whole plan. Returns no contracts if none could be parsed."""
        parts = [
            "Create smart contracts and Foundry tests based on this plan:",
            "",
            f"Contract Name: {plan.contract_name}",
            f"Description: {plan.description}",
            f"Features: {', '.join(plan.features)}",
            "",
            f"Original user request: {prompt}",
        ]
        if answers:
            parts += ["", "Additional details from user:", json.dumps(answers, indent=2)]
        parts += [
            "",
            "Generate the complete Solidity contract(s) and comprehensive Foundry tests. "
            "DO NOT generate any React/frontend code.",
        ]

        response = self._call_llm("generator", "\n".join(parts))
        contracts = parse_contracts(response)
        tests = parse_tests(response)

        if contracts and not tests:
            logger.info("generator_fallback_tests", contracts=len(contracts))
            tests = [fallback_test(c) for c in contracts]

        return GeneratedCode(contracts=contracts, pages=[], tests=tests)

    def generate_tests(self, contracts):
        """Write Foundry tests for existing contracts, falling back to minimal ones."""
        user_message = (
            "Generate comprehensive unit tests for the following Solidity contract(s):\n\n"
            f"{format_sources(contracts)}\n\n"
            "Create thorough tests that cover all functionality. Use the exact output format specified."
        )
        tests = parse_tests(self._call_llm("tests", user_message))
        if not tests:
            logger.info("generator_fallback_tests", contracts=len(contracts))
            tests = [fallback_test(c) for c in contracts]
        return tests
