"""Claude API client and parsers for fenced code sections."""

import json
import os
import re

import anthropic
import structlog

from config.defaults import DEFAULTS
from config.rules import HARDHAT_MARKERS
from core.state import PageFile, SourceFile

logger = structlog.get_logger(__name__)

MODEL = DEFAULTS["model"]
MAX_TOKENS = DEFAULTS["max_tokens"]


def get_client():
    """Return an Anthropic client. Raises if no API key is set."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError(
            "ANTHROPIC_API_KEY environment variable is not set. "
            "Get a key at https://console.anthropic.com/ and run:\n"
            "  export ANTHROPIC_API_KEY='your-key-here'"
        )
    return anthropic.Anthropic(api_key=api_key)


def call_llm(system_prompt, user_message, response_format=None, max_tokens=None):
    """Call Claude once and return its text.

    There is no retry here: retries belong to the pipeline phase that made
    the call. API errors propagate to the caller.

    Args:
        system_prompt: System prompt string.
        user_message: User message string.
        response_format: If "json", the response is parsed with parse_json_response.
        max_tokens: Override for the configured token limit.

    Returns:
        Raw text string, or parsed dict/list if response_format="json".
    """
    client = get_client()

    if response_format == "json":
        system_prompt = system_prompt + "\n\nIMPORTANT: Respond ONLY with valid JSON. No markdown fences, no commentary."

    # Streaming keeps long generations clear of the SDK request timeout
    text = ""
    with client.messages.stream(
        model=MODEL,
        max_tokens=max_tokens or MAX_TOKENS,
        system=system_prompt,
        messages=[{"role": "user", "content": user_message}],
    ) as stream:
        for chunk in stream.text_stream:
            text += chunk
        response_msg = stream.get_final_message()

    if response_msg.stop_reason == "max_tokens":
        logger.warning("llm_response_truncated", model=MODEL, chars=len(text))

    if not text.strip():
        raise RuntimeError("No text response from Claude")

    if response_format == "json":
        return parse_json_response(text)
    return text


def parse_json_response(text):
    """Parse a JSON object from a model response.

    Accepts bare JSON, fenced JSON, or JSON embedded in prose (first
    {...} span). Raises ValueError if nothing parses.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```\w*\n?", "", cleaned)
        cleaned = re.sub(r"\n?```$", "", cleaned)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                pass
    raise ValueError("Could not parse response as JSON")


def format_sources(files):
    """Render files as `--- name ---` blocks for a prompt."""
    return "\n\n".join(f"--- {_file_key(f)} ---\n{f.content}" for f in files)


def _file_key(f):
    return getattr(f, "name", None) or getattr(f, "path")


# ---------------------------------------------------------------------------
# Section parsers
#
# The model is asked to precede each file with a marker line, e.g.
#     ---CONTRACT: Counter.sol---
#     ```solidity
#     ...
#     ```
# Every parser returns a list; an empty list means nothing usable was found
# and the caller keeps whatever it had before.
# ---------------------------------------------------------------------------

_SECTION_RE = r"---{kind}:\s*([^\n]+?)\s*---\s*```[\w-]*[ \t]*\n?(.*?)```"
_CONTRACT_RE = re.compile(_SECTION_RE.format(kind="CONTRACT"), re.DOTALL | re.IGNORECASE)
_TEST_RE = re.compile(_SECTION_RE.format(kind="TEST"), re.DOTALL | re.IGNORECASE)
_PAGE_RE = re.compile(_SECTION_RE.format(kind="PAGE"), re.DOTALL | re.IGNORECASE)
_SOLIDITY_BLOCK_RE = re.compile(r"```solidity[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_TSX_BLOCK_RE = re.compile(r"```(?:tsx?|jsx?)[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


def is_hardhat_test(content):
    """True if the source looks like a JavaScript/Hardhat test."""
    return any(marker.search(content) for marker in HARDHAT_MARKERS)


def is_foundry_test(content):
    return "forge-std/Test.sol" in content or re.search(r"\bis\s+Test\b", content) is not None


def _dedupe(pairs):
    """Keep the last occurrence of each name, in first-seen order."""
    by_name = {}
    for name, content in pairs:
        by_name[name] = content
    return list(by_name.items())


def parse_contracts(response):
    """Extract (name, content) contract sections from a model response."""
    pairs = [(m.group(1).strip(), m.group(2).strip()) for m in _CONTRACT_RE.finditer(response)]

    if not pairs:
        # Fallback: bare solidity blocks that are not test files
        index = 0
        for m in _SOLIDITY_BLOCK_RE.finditer(response):
            content = m.group(1).strip()
            if is_foundry_test(content):
                continue
            suffix = str(index + 1) if index else ""
            pairs.append((f"Contract{suffix}.sol", content))
            index += 1

    return [SourceFile(name=name, content=content) for name, content in _dedupe(pairs)]


def normalize_test_name(name):
    """Force the Foundry `.t.sol` extension onto a test file name."""
    if name.endswith(".t.sol"):
        return name
    return re.sub(r"\.(?:sol|ts|js|test\.ts|test\.js)$", "", name) + ".t.sol"


def parse_tests(response):
    """Extract Foundry test sections; JavaScript/Hardhat tests are dropped."""
    pairs = []
    for m in _TEST_RE.finditer(response):
        content = m.group(2).strip()
        if is_hardhat_test(content):
            logger.info("hardhat_test_rejected", name=m.group(1).strip())
            continue
        pairs.append((normalize_test_name(m.group(1).strip()), content))

    if not pairs:
        for m in _SOLIDITY_BLOCK_RE.finditer(response):
            content = m.group(1).strip()
            if is_hardhat_test(content):
                continue
            if is_foundry_test(content):
                pairs.append(("Test.t.sol", content))
                break

    return [SourceFile(name=name, content=content) for name, content in _dedupe(pairs)]


def parse_pages(response):
    """Extract frontend page sections from a model response."""
    pairs = [(m.group(1).strip(), m.group(2).strip()) for m in _PAGE_RE.finditer(response)]

    if not pairs:
        for index, m in enumerate(_TSX_BLOCK_RE.finditer(response)):
            suffix = str(index + 1) if index else ""
            pairs.append((f"app/dapp{suffix}/page.tsx", m.group(1).strip()))

    return [PageFile(path=path, content=content) for path, content in _dedupe(pairs)]
