"""camelCase JSON <-> dataclass conversion for the HTTP API and CLI files."""

import dataclasses

from core.state import (
    BuildRequest,
    ClarificationQuestion,
    CompileResult,
    FileToCommit,
    GeneratedCode,
    PageFile,
    PagePlan,
    ProjectPlan,
    SecurityWarning,
    SourceFile,
)


def camel(name):
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_wire(obj):
    """Dataclasses become camelCase dicts, recursively. Plain dicts pass through."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {camel(f.name): to_wire(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, (list, tuple)):
        return [to_wire(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Decoders. Each raises ValueError on missing required fields.
# ---------------------------------------------------------------------------

def _require(data, key, what):
    if not isinstance(data, dict) or data.get(key) in (None, ""):
        raise ValueError(f"{what} requires '{key}'")
    return data[key]


def sources_from_wire(items):
    return [
        SourceFile(name=_require(i, "name", "source file"), content=i.get("content", ""))
        for i in items or []
    ]


def pages_from_wire(items):
    return [
        PageFile(path=_require(i, "path", "page"), content=i.get("content", ""))
        for i in items or []
    ]


def files_from_wire(items):
    return [
        FileToCommit(path=_require(i, "path", "file"), content=i.get("content", ""))
        for i in items or []
    ]


def plan_from_wire(data) -> ProjectPlan:
    return ProjectPlan(
        contract_name=_require(data, "contractName", "plan"),
        description=data.get("description", ""),
        features=list(data.get("features") or []),
        pages=[
            PagePlan(path=p.get("path", ""), description=p.get("description", ""))
            for p in data.get("pages") or []
        ],
        suggested_project_name=data.get("suggestedProjectName") or "",
    )


def code_from_wire(data) -> GeneratedCode:
    data = data or {}
    return GeneratedCode(
        contracts=sources_from_wire(data.get("contracts")),
        pages=pages_from_wire(data.get("pages")),
        tests=sources_from_wire(data.get("tests")),
    )


def warnings_from_wire(items):
    return [
        SecurityWarning(
            severity=i.get("severity", "warning"),
            message=_require(i, "message", "security warning"),
            contract=i.get("contract"),
            line=i.get("line"),
        )
        for i in items or []
    ]


def question_from_wire(data) -> ClarificationQuestion:
    return ClarificationQuestion(
        id=_require(data, "id", "question"),
        question=_require(data, "question", "question"),
        type=data.get("type", "text"),
        options=list(data.get("options") or []),
        required=bool(data.get("required", True)),
    )


def compile_result_from_wire(data) -> CompileResult:
    data = data or {}
    return CompileResult(
        success=bool(data.get("success", True)),
        errors=list(data.get("errors") or []),
        warnings=list(data.get("warnings") or []),
        bytecode=data.get("bytecode"),
        deployed_bytecode=data.get("deployedBytecode"),
        abi=data.get("abi"),
    )


def _int_or_default(data, key, default):
    value = data.get(key)
    return int(default if value is None else value)


def build_request_from_wire(data, defaults=None) -> BuildRequest:
    """Decode a build request body.

    `defaults` supplies max_iterations/timeout_ms when the body omits them
    or sends null. An explicit 0 is kept.
    """
    defaults = defaults or {}
    existing = data.get("existingCode")
    return BuildRequest(
        prompt=data.get("prompt") or "",
        plan=plan_from_wire(_require(data, "plan", "build request")),
        existing_code=code_from_wire(existing) if existing else None,
        max_iterations=_int_or_default(data, "maxIterations", defaults.get("max_iterations", 10)),
        timeout_ms=_int_or_default(data, "timeoutMs", defaults.get("timeout_ms", 300_000)),
    )
