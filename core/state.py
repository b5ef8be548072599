"""Build models shared across all stages."""

from __future__ import annotations

from dataclasses import dataclass, field

BUILD_STATUSES = frozenset({
    "generating",
    "validating",
    "compiling",
    "fixing_compilation",
    "checking_security",
    "fixing_security",
    "testing",
    "fixing_tests",
    "done",
    "failed",
})


@dataclass(frozen=True)
class SourceFile:
    name: str           # "Counter.sol", "Counter.t.sol"
    content: str


@dataclass(frozen=True)
class PageFile:
    path: str           # "app/counter/page.tsx"
    content: str


@dataclass(frozen=True)
class PagePlan:
    path: str
    description: str


@dataclass
class ProjectPlan:
    contract_name: str
    description: str = ""
    features: list[str] = field(default_factory=list)
    pages: list[PagePlan] = field(default_factory=list)
    suggested_project_name: str = ""


@dataclass(frozen=True)
class GeneratedCode:
    """One snapshot of the build artifact. Phases replace it, never mutate it."""

    contracts: list[SourceFile] = field(default_factory=list)
    pages: list[PageFile] = field(default_factory=list)
    tests: list[SourceFile] = field(default_factory=list)


@dataclass
class CompileResult:
    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    bytecode: str | None = None
    deployed_bytecode: str | None = None
    abi: list | None = None


@dataclass(frozen=True)
class SecurityWarning:
    severity: str       # "warning" | "error"
    message: str
    contract: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class TestCase:
    __test__ = False

    name: str
    status: str         # "passed" | "failed" | "pending"
    error: str | None = None
    gas_used: str | None = None


@dataclass
class TestResult:
    __test__ = False

    success: bool
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    output: str = ""
    tests: list[TestCase] = field(default_factory=list)


@dataclass(frozen=True)
class BuildRequest:
    prompt: str
    plan: ProjectPlan
    existing_code: GeneratedCode | None = None
    max_iterations: int = 10
    timeout_ms: int = 300_000


@dataclass(frozen=True)
class BuildResult:
    success: bool
    logs: list[str]
    iterations: int
    code: GeneratedCode | None = None
    test_result: TestResult | None = None
    security_warnings: list[SecurityWarning] | None = None
    elapsed_ms: int | None = None
    error: str | None = None
    compile_errors: list[str] | None = None


# ---------------------------------------------------------------------------
# Planning and publishing models
# ---------------------------------------------------------------------------

@dataclass
class ClarificationQuestion:
    id: str
    question: str
    type: str = "text"              # text|number|select|boolean
    options: list[str] = field(default_factory=list)
    required: bool = True


@dataclass
class AnalyzeResult:
    status: str                     # "ready" | "needs_clarification"
    questions: list[ClarificationQuestion] = field(default_factory=list)
    plan: ProjectPlan | None = None


@dataclass
class ModifyResult:
    contracts: list[SourceFile] | None = None
    pages: list[PageFile] | None = None


@dataclass(frozen=True)
class FileToCommit:
    path: str
    content: str


@dataclass
class GitHubRepoResult:
    success: bool
    repo_url: str | None = None
    repo_name: str | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass
class VercelDeploymentResult:
    success: bool
    deployment_url: str | None = None
    project_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class GasEstimate:
    estimated: int
    cost_eth: str
    cost_usd: str


@dataclass(frozen=True)
class SizeReport:
    size_bytes: int
    kb: str
    within_limit: bool
