"""Security heuristics for Solidity sources."""

import re

# Each entry:
# (trigger_regex, severity, message, suppressors, locate)
# suppressors: substrings whose presence anywhere in the contract silences the rule.
# locate: report the 1-based line of the first line matching the trigger.
SOLIDITY_RULES = [
    (
        re.compile(r"\.call\{\s*value\s*:"),
        "warning",
        "ETH transfer detected without ReentrancyGuard. Consider using OpenZeppelin's ReentrancyGuard.",
        ("ReentrancyGuard", "nonReentrant"),
        True,
    ),
    (
        re.compile(r"\.call\([^)]*\)\s*;"),
        "warning",
        "Low-level call without checking return value. Consider using require(success, ...) "
        "or handle the boolean return.",
        ("require(success",),
        False,
    ),
    (
        re.compile(r"\.(?:transfer|send)\("),
        "warning",
        "Using transfer() or send() can fail with contracts that have complex fallback functions. "
        "Consider using call() instead.",
        (),
        True,
    ),
    (
        re.compile(r"\btx\.origin\b"),
        "warning",
        "tx.origin usage detected. This can be vulnerable to phishing attacks. Use msg.sender instead.",
        (),
        True,
    ),
    (
        re.compile(r"pragma solidity\s*\^\s*0\.[0-7]\."),
        "error",
        "Using Solidity version below 0.8.0 without SafeMath. "
        "This is vulnerable to integer overflow/underflow.",
        ("SafeMath",),
        False,
    ),
    (
        re.compile(r"\bselfdestruct\b"),
        "warning",
        "selfdestruct detected. This can be dangerous and is deprecated in newer Solidity versions.",
        (),
        True,
    ),
    (
        re.compile(r"function withdraw"),
        "warning",
        "Withdraw function detected without onlyOwner modifier. Consider adding access control.",
        ("onlyOwner", "Ownable"),
        True,
    ),
]

# Markers of JavaScript/Hardhat test files, which the Foundry runner cannot execute.
# Word boundaries keep Solidity calls such as deposit( or vm.expectEmit( from matching.
HARDHAT_MARKERS = [
    re.compile(r"\bdescribe\("),
    re.compile(r"\bit\("),
    re.compile(r"""require\(\s*["']chai["']\s*\)"""),
    re.compile(r"""from\s+["'](?:chai|hardhat)["']"""),
    re.compile(r"\bethers\.getSigners\b"),
]
