#!/usr/bin/env python3
"""dappsmith - AI-assisted dApp scaffolding.

Usage:
    python main.py plan --prompt "an ERC20 token with a capped supply" --out plan.json
    python main.py build --plan plan.json --output ./out
    python main.py build --prompt "a simple counter" --max-iters 5 --verbose
    python main.py build --plan plan.json --existing-code code.json     # validate mode
    python main.py check contracts/Counter.sol contracts/Token.sol
"""

import argparse
import json
import os
import sys

from agents.planner import PlannerAgent
from agents.security import SecurityAnalyzer, check_size, estimate_gas
from config.defaults import DEFAULTS
from core.assembler import assemble_project, write_files
from core.codec import code_from_wire, plan_from_wire, to_wire
from core.compiler import SolcCompiler
from core.orchestrator import build_dapp
from core.state import BuildRequest, ProjectPlan, SourceFile
from utils.logging_setup import configure_logging
from utils.naming import get_output_dir, project_name


def _format_warnings(warnings):
    """Format security warnings for CLI display."""
    lines = []
    for w in warnings:
        loc = w.contract or "?"
        if w.line:
            loc += f":{w.line}"
        marker = "ERROR" if w.severity == "error" else "WARN"
        lines.append(f"  [{marker}] {loc} - {w.message}")
    return "\n".join(lines)


def _ask_questions(questions):
    """Human-in-the-loop: collect answers to the planner's questions."""
    answers = {}
    for q in questions:
        prompt = q.question
        if q.options:
            prompt += f" [{' / '.join(q.options)}]"
        try:
            answer = input(f"\n{prompt}\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return None
        if q.type == "boolean":
            answers[q.id] = answer.lower() in ("y", "yes", "true")
        elif q.type == "number":
            try:
                answers[q.id] = float(answer) if "." in answer else int(answer)
            except ValueError:
                answers[q.id] = answer
        else:
            answers[q.id] = answer
    return answers


def _plan_interactively(prompt):
    planner = PlannerAgent()
    result = planner.analyze(prompt)
    if result.status == "needs_clarification":
        print(f"A few questions before planning ({len(result.questions)}):")
        answers = _ask_questions(result.questions)
        if answers is None:
            return None
        result = planner.analyze(prompt, answers, is_follow_up=True)
    if result.plan is None:
        print("The planner still needs more information. Try a more specific prompt.")
        return None
    return result.plan


def _print_plan(plan):
    print(f"Contract: {plan.contract_name}")
    if plan.description:
        print(f"\n{plan.description}")
    if plan.features:
        print("\nFeatures:")
        for feature in plan.features:
            print(f"  - {feature}")
    if plan.pages:
        print("\nPages:")
        for page in plan.pages:
            print(f"  {page.path:20s} {page.description}")


def _load_json(path):
    with open(path) as f:
        return json.load(f)


def cmd_plan(args):
    """Turn a prompt into a project plan."""
    plan = _plan_interactively(args.prompt)
    if plan is None:
        sys.exit(1)
    _print_plan(plan)
    if args.out:
        with open(args.out, "w") as f:
            json.dump(to_wire(plan), f, indent=2)
        print(f"\nPlan written to {args.out}")


def cmd_build(args):
    """Run the build pipeline and write the assembled project."""
    if args.plan:
        plan = plan_from_wire(_load_json(args.plan))
    elif args.interactive:
        plan = _plan_interactively(args.prompt)
        if plan is None:
            sys.exit(1)
    else:
        plan = ProjectPlan(contract_name=args.contract or "Contract", description=args.prompt or "")

    existing = code_from_wire(_load_json(args.existing_code)) if args.existing_code else None
    request = BuildRequest(
        prompt=args.prompt or plan.description,
        plan=plan,
        existing_code=existing,
        max_iterations=args.max_iters,
        timeout_ms=args.timeout * 1000,
    )

    def on_progress(status, message, iteration):
        if args.verbose:
            print(f"  [{status}:{iteration}] {message}")

    result = build_dapp(request, on_progress)

    print(f"\nStatus:     {'success' if result.success else 'failed'}")
    print(f"Iterations: {result.iterations}")
    if result.elapsed_ms is not None:
        print(f"Elapsed:    {result.elapsed_ms / 1000:.1f}s")
    if result.error:
        print(f"Error:      {result.error}")
    for error in result.compile_errors or []:
        print(f"  {error}")
    if result.test_result:
        print(f"Tests:      {result.test_result.passed} passed, {result.test_result.failed} failed")
    if result.security_warnings:
        print("\nRemaining security warnings:")
        print(_format_warnings(result.security_warnings))

    if result.code is None or not result.code.contracts:
        sys.exit(1)

    name = project_name(plan, request.prompt)
    output_dir = get_output_dir(args.output, name)
    written = write_files(assemble_project(result.code, name, plan), output_dir)
    print(f"\nOutput:     {output_dir}")
    print(f"Generated {len(written)} file(s):")
    for path in written:
        print(f"  {path}")

    if not result.success:
        sys.exit(1)


def cmd_check(args):
    """Compile, scan and size-check local contract files."""
    contracts = []
    for path in args.files:
        with open(path) as f:
            contracts.append(SourceFile(name=os.path.basename(path), content=f.read()))

    compiler = SolcCompiler()
    try:
        compilation = compiler.compile(contracts)
    finally:
        compiler.close()
    print(f"Compilation: {'ok' if compilation.success else 'FAILED'}")
    for error in compilation.errors:
        print(f"  {error}")
    if args.verbose:
        for warning in compilation.warnings:
            print(f"  {warning}")

    warnings = SecurityAnalyzer().scan(contracts)
    print(f"\nSecurity: {len(warnings)} warning(s)")
    if warnings:
        print(_format_warnings(warnings))

    if compilation.bytecode:
        gas = estimate_gas(compilation.bytecode)
        size = check_size(compilation.bytecode)
        print(f"\nDeployment gas: {gas.estimated} ({gas.cost_eth}, {gas.cost_usd})")
        print(f"Bytecode size:  {size.kb}{'' if size.within_limit else ' - exceeds 24 KB limit'}")

    if not compilation.success or any(w.severity == "error" for w in warnings):
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        prog="dappsmith",
        description="AI-assisted dApp scaffolding",
    )
    parser.add_argument("--log-level", default=DEFAULTS["log_level"], help="Process log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit process logs as JSON")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Analyze a prompt into a project plan")
    plan_parser.add_argument("--prompt", required=True, help="Natural language request")
    plan_parser.add_argument("--out", help="Write the plan as JSON to this file")

    build_parser = subparsers.add_parser("build", help="Run the build pipeline")
    build_parser.add_argument("--prompt", help="Natural language request")
    build_parser.add_argument("--plan", help="Plan JSON file (from `plan --out`)")
    build_parser.add_argument("--interactive", action="store_true",
                              help="Plan from --prompt first, answering questions on stdin")
    build_parser.add_argument("--contract", help="Contract name when no plan is given")
    build_parser.add_argument("--existing-code", help="JSON file of code to validate instead of generating")
    build_parser.add_argument("--output", default=".", help="Base output directory (default: .)")
    build_parser.add_argument("--max-iters", type=int, default=DEFAULTS["max_iterations"],
                              help=f"Max fix iterations (default: {DEFAULTS['max_iterations']})")
    build_parser.add_argument("--timeout", type=int, default=DEFAULTS["build_timeout_ms"] // 1000,
                              help="Build timeout in seconds")
    build_parser.add_argument("--verbose", action="store_true", help="Print the build transcript")

    check_parser = subparsers.add_parser("check", help="Compile and scan local .sol files")
    check_parser.add_argument("files", nargs="+", help="Solidity source files")
    check_parser.add_argument("--verbose", action="store_true", help="Show compiler warnings")

    args = parser.parse_args()
    configure_logging(args.log_level, args.json_logs)

    if args.command == "plan":
        cmd_plan(args)
    elif args.command == "build":
        if not (args.plan or args.prompt):
            build_parser.error("one of --plan or --prompt is required")
        cmd_build(args)
    elif args.command == "check":
        cmd_check(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
