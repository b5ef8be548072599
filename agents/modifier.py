"""Modifier agent: applies a natural-language change request to contracts and pages."""

import re

from agents.base import BaseAgent
from core.state import ModifyResult
from utils.llm import format_sources, parse_contracts, parse_pages

# Requests mentioning any of these also touch the frontend pages
FRONTEND_KEYWORDS = (
    "page", "ui", "frontend", "button", "component", "display",
    "show", "style", "css", "design", "layout",
)


def is_frontend_request(prompt):
    words = prompt.lower()
    return any(re.search(rf"\b{k}", words) for k in FRONTEND_KEYWORDS)


class ModifierAgent(BaseAgent):
    """Up to two LLM calls: one for contracts, one for pages."""

    name = "modifier"

    def modify(self, prompt, contracts=None, pages=None) -> ModifyResult:
        """Return the modified files. Sides the model did not change are None.

        Raises:
            ValueError: on an empty prompt, or when no files are given.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Modification prompt is required")
        if not contracts and not pages:
            raise ValueError("At least contracts or pages must be provided")

        result = ModifyResult()

        if contracts:
            response = self._call_llm(
                "modify_contract",
                "Modify the following Solidity contract(s) based on this request:\n\n"
                f"## MODIFICATION REQUEST:\n{prompt}\n\n"
                f"## CURRENT CONTRACT CODE:\n{format_sources(contracts)}\n\n"
                "Apply the requested modifications and return the complete modified "
                "contract(s) using the exact output format specified.",
            )
            result.contracts = parse_contracts(response) or None

        if pages and is_frontend_request(prompt):
            response = self._call_llm(
                "modify_page",
                "Modify the following React/TypeScript page(s) based on this request:\n\n"
                f"## MODIFICATION REQUEST:\n{prompt}\n\n"
                f"## CURRENT PAGE CODE:\n{format_sources(pages)}\n\n"
                "Apply the requested modifications and return the complete modified "
                "page(s) using the exact output format specified.",
            )
            result.pages = parse_pages(response) or None

        return result
