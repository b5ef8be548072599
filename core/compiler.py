"""Solidity compiler adapter: `solc --standard-json` with OpenZeppelin import resolution."""

import json
import posixpath
import re
import tempfile
import threading

import cachetools
import httpx
import structlog

from config.defaults import DEFAULTS
from core.sandbox import run_in_sandbox
from core.state import CompileResult
from utils.http import HttpClientOwner

logger = structlog.get_logger(__name__)

OZ_PREFIX = "@openzeppelin/contracts/"

_IMPORT_RE = re.compile(
    r"""import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)\s+from\s+)?["']([^"']+)["'](?:\s+as\s+\w+)?\s*;"""
)


def find_imports(source):
    """Return the import paths of a Solidity source, in order of appearance."""
    return _IMPORT_RE.findall(source)


def resolve_import(from_file, import_path):
    """Map an import seen in `from_file` to an OpenZeppelin source key, or None.

    Only library imports are fetched: absolute `@openzeppelin/contracts/...`
    paths, and relative paths inside files that are themselves library files.
    Everything else is left to solc, which reports it as a normal error.
    """
    if import_path.startswith(OZ_PREFIX):
        return posixpath.normpath(import_path)
    if import_path.startswith(("./", "../")) and from_file.startswith(OZ_PREFIX):
        resolved = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), import_path))
        if resolved.startswith(OZ_PREFIX):
            return resolved
    return None


class ImportResolver(HttpClientOwner):
    """Fetches pinned OpenZeppelin sources from a CDN, with a bounded cache.

    Owned by one compiler instance. The cache is shared by every build that
    uses that compiler, so access is serialized with a lock.
    """

    def __init__(self, version=None, cdn=None, cache_size=None, client=None):
        self.version = version or DEFAULTS["openzeppelin_version"]
        self.cdn = (cdn or DEFAULTS["import_cdn"]).rstrip("/")
        self._cache = cachetools.LRUCache(maxsize=cache_size or DEFAULTS["import_cache_size"])
        self._lock = threading.Lock()
        self._init_client(client, follow_redirects=True)

    def url_for(self, path):
        relative = path[len(OZ_PREFIX):]
        return f"{self.cdn}/@openzeppelin/contracts@{self.version}/{relative}"

    def fetch(self, path):
        """Return the source for an OpenZeppelin path, or None if unavailable."""
        with self._lock:
            cached = self._cache.get(path)
        if cached is not None:
            return cached

        try:
            response = self._client.get(self.url_for(path))
        except httpx.HTTPError as e:
            logger.warning("import_fetch_failed", path=path, error=str(e))
            return None
        if not response.is_success:
            logger.warning("import_fetch_failed", path=path, status=response.status_code)
            return None

        with self._lock:
            self._cache[path] = response.text
        return response.text

    def resolve(self, sources):
        """Add every transitively imported library file to `sources` (name -> content)."""
        pending = list(sources)
        seen = set()
        while pending:
            file_name = pending.pop()
            if file_name in seen:
                continue
            seen.add(file_name)

            for import_path in find_imports(sources[file_name]):
                key = resolve_import(file_name, import_path)
                if key is None or key in sources:
                    continue
                content = self.fetch(key)
                if content is None:
                    continue
                sources[key] = content
                pending.append(key)
        return sources


def _select_artifact(contracts, output_contracts):
    """Pick the artifact of the first user contract.

    Prefers the contract named like its file, then the first contract in that
    file, then any compiled .sol contract with bytecode.
    """
    for contract in contracts:
        file_output = output_contracts.get(contract.name)
        if not file_output:
            continue
        stem = contract.name[:-4] if contract.name.endswith(".sol") else contract.name
        artifact = file_output.get(stem) or next(iter(file_output.values()), None)
        if artifact:
            return artifact

    for file_name, file_output in output_contracts.items():
        if not file_name.endswith(".sol"):
            continue
        for artifact in file_output.values():
            if artifact.get("evm", {}).get("bytecode", {}).get("object"):
                return artifact
    return None


class SolcCompiler:
    """Compiles a set of contracts. Expected failures come back as CompileResult data."""

    name = "compiler"

    def __init__(self, solc_binary=None, resolver=None, timeout=None):
        self.solc = solc_binary or DEFAULTS["solc_binary"]
        self.resolver = resolver or ImportResolver()
        self.timeout = timeout or DEFAULTS["solc_timeout"]
        self._owns_resolver = resolver is None

    def close(self):
        if self._owns_resolver:
            self.resolver.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def build_input(self, sources):
        return {
            "language": "Solidity",
            "sources": {name: {"content": content} for name, content in sources.items()},
            "settings": {
                "outputSelection": {
                    "*": {"*": ["abi", "evm.bytecode", "evm.deployedBytecode"]},
                },
                "optimizer": {"enabled": True, "runs": DEFAULTS["optimizer_runs"]},
            },
        }

    def compile(self, contracts) -> CompileResult:
        sources = {c.name: c.content for c in contracts}
        self.resolver.resolve(sources)

        stdout, stderr, rc = run_in_sandbox(
            [self.solc, "--standard-json"],
            cwd=tempfile.gettempdir(),
            timeout=self.timeout,
            stdin=json.dumps(self.build_input(sources)),
        )

        try:
            output = json.loads(stdout)
        except json.JSONDecodeError:
            message = stderr.strip() or f"solc exited with code {rc} and produced no output"
            logger.warning("solc_unreadable_output", returncode=rc, stderr=stderr[:300])
            return CompileResult(success=False, errors=[message])

        errors = []
        warnings = []
        for diag in output.get("errors", []):
            text = diag.get("formattedMessage") or diag.get("message", "")
            if diag.get("severity") == "error":
                errors.append(text)
            else:
                warnings.append(text)

        if errors:
            logger.info("solc_compile_failed", errors=len(errors), warnings=len(warnings))
            return CompileResult(success=False, errors=errors, warnings=warnings)

        artifact = _select_artifact(contracts, output.get("contracts", {})) or {}
        evm = artifact.get("evm", {})
        return CompileResult(
            success=True,
            warnings=warnings,
            abi=artifact.get("abi"),
            bytecode=evm.get("bytecode", {}).get("object"),
            deployed_bytecode=evm.get("deployedBytecode", {}).get("object"),
        )
