"""Security agent: textual Solidity heuristics plus gas/size estimates. Zero LLM calls."""

from core.state import GasEstimate, SecurityWarning, SizeReport
from config.rules import SOLIDITY_RULES

# EIP-170 runtime bytecode limit
MAX_CONTRACT_KB = 24

# Rough deployment cost model
_BASE_GAS = 21_000
_GAS_PER_BYTE = 200
_CONSTRUCTOR_OVERHEAD = 100_000
_GAS_PRICE_GWEI = 30
_ETH_PRICE_USD = 2000


def _bytecode_size(bytecode):
    if not bytecode:
        return 0
    if bytecode.startswith("0x"):
        bytecode = bytecode[2:]
    return len(bytecode) // 2


class SecurityAnalyzer:
    """Runs the SOLIDITY_RULES battery over contract sources.

    Stateless: every scan is computed fresh from the text it is given.
    """

    name = "security"

    def scan(self, contracts) -> list[SecurityWarning]:
        warnings = []
        for contract in contracts:
            warnings.extend(self._scan_source(contract.name, contract.content))
        return warnings

    def _scan_source(self, name, source):
        lines = source.split("\n")
        found = []
        for trigger, severity, message, suppressors, locate in SOLIDITY_RULES:
            if not trigger.search(source):
                continue
            if any(s in source for s in suppressors):
                continue

            line = None
            if locate:
                line = next(
                    (i for i, text in enumerate(lines, 1) if trigger.search(text)),
                    None,
                )
            found.append(SecurityWarning(
                severity=severity,
                message=message,
                contract=name,
                line=line,
            ))
        return found


def estimate_gas(bytecode) -> GasEstimate:
    """Approximate deployment gas and cost for a creation bytecode hex string."""
    size = _bytecode_size(bytecode)
    gas = _BASE_GAS + size * _GAS_PER_BYTE + _CONSTRUCTOR_OVERHEAD
    cost_eth = gas * _GAS_PRICE_GWEI / 1e9
    return GasEstimate(
        estimated=gas,
        cost_eth=f"~{cost_eth:.4f} ETH",
        cost_usd=f"~${cost_eth * _ETH_PRICE_USD:.2f}",
    )


def check_size(bytecode) -> SizeReport:
    size = _bytecode_size(bytecode)
    kb = size / 1024
    return SizeReport(
        size_bytes=size,
        kb=f"{kb:.2f} KB",
        within_limit=kb < MAX_CONTRACT_KB,
    )
