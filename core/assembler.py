"""Project assembler: lays generated code out as a Scaffold-ETH 2 monorepo."""

import os
import posixpath
import re

from core.state import FileToCommit
from utils.llm import normalize_test_name

FOUNDRY_DIR = "packages/foundry"
NEXTJS_DIR = "packages/nextjs"

_DEPLOY_SCRIPT = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

import "forge-std/Script.sol";
import "../contracts/{file}";

contract Deploy{stem} is Script {{
    function run() external {{
        vm.startBroadcast();
        new {stem}({args});
        vm.stopBroadcast();
    }}
}}
"""


def page_file_path(page_path):
    """Map a page path to its location under packages/nextjs.

    "/counter" and "counter" become app/counter/page.tsx; anything that
    already names a file is kept.
    """
    path = page_path.strip().lstrip("/")
    if not path:
        return "app/page.tsx"
    if re.search(r"\.(?:tsx?|jsx?)$", path):
        return path
    return posixpath.join("app", path, "page.tsx")


def _safe_relative(path):
    """Reject absolute paths and parent references inside a generated file name."""
    normalized = posixpath.normpath(path.replace("\\", "/"))
    if normalized.startswith(("/", "../")) or normalized == "..":
        raise ValueError(f"Path escapes project directory: {path}")
    return normalized


def deploy_script(contract):
    stem = re.sub(r"\.sol$", "", posixpath.basename(contract.name))
    constructor = re.search(r"constructor\s*\(([^)]*)\)", contract.content)
    args = "/* constructor args */" if constructor and constructor.group(1).strip() else ""
    return FileToCommit(
        path=f"{FOUNDRY_DIR}/script/Deploy{stem}.s.sol",
        content=_DEPLOY_SCRIPT.format(file=posixpath.basename(contract.name), stem=stem, args=args),
    )


def readme(name, plan=None):
    lines = [f"# {name}", ""]
    if plan is not None and plan.description:
        lines += [plan.description, ""]
    if plan is not None and plan.features:
        lines += ["## Features", ""] + [f"- {f}" for f in plan.features] + [""]
    lines += [
        "## Getting started",
        "",
        "```bash",
        "yarn install",
        "yarn chain      # local node",
        "yarn deploy     # deploy contracts",
        "yarn start      # frontend on http://localhost:3000",
        "```",
        "",
        "Contracts live in `packages/foundry/contracts`, tests in `packages/foundry/test`,",
        "and pages in `packages/nextjs/app`.",
        "",
    ]
    return "\n".join(lines)


def assemble_project(code, name, plan=None):
    """Return the files of a Scaffold-ETH 2 project for `code`."""
    files = []
    for contract in code.contracts:
        files.append(FileToCommit(
            path=_safe_relative(f"{FOUNDRY_DIR}/contracts/{contract.name}"),
            content=contract.content,
        ))
    for test in code.tests:
        files.append(FileToCommit(
            path=_safe_relative(f"{FOUNDRY_DIR}/test/{normalize_test_name(test.name)}"),
            content=test.content,
        ))
    if code.contracts:
        files.append(deploy_script(code.contracts[0]))
    for page in code.pages:
        files.append(FileToCommit(
            path=_safe_relative(f"{NEXTJS_DIR}/{page_file_path(page.path)}"),
            content=page.content,
        ))
    files.append(FileToCommit(path="README.md", content=readme(name, plan)))
    return files


def write_files(files, output_dir):
    """Write files under output_dir. Returns the relative paths written."""
    os.makedirs(output_dir, exist_ok=True)
    root = os.path.realpath(output_dir)
    written = []
    for f in files:
        resolved = os.path.realpath(os.path.join(output_dir, f.path))
        if not resolved.startswith(root + os.sep):
            raise ValueError(f"Path escapes output directory: {f.path}")
        os.makedirs(os.path.dirname(resolved), exist_ok=True)
        with open(resolved, "w") as fp:
            fp.write(f.content)
        written.append(f.path)
    return written

