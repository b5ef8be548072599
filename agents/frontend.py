"""Frontend agent: Scaffold-ETH 2 pages for verified contracts."""

import threading

import httpx
import structlog

from agents.base import BaseAgent, load_prompt
from config.defaults import DEFAULTS
from utils.http import HttpClientOwner
from utils.llm import parse_pages

logger = structlog.get_logger(__name__)


class DocsCache(HttpClientOwner):
    """Scaffold-ETH 2 reference docs, fetched once and kept for the owner's lifetime.

    A failed fetch is not cached, so the next call tries again.
    """

    def __init__(self, url=None, client=None):
        self.url = url or DEFAULTS["se2_docs_url"]
        self._init_client(client, follow_redirects=True)
        self._docs = None
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            if self._docs is not None:
                return self._docs
            try:
                response = self._client.get(self.url)
            except httpx.HTTPError as e:
                logger.warning("se2_docs_fetch_failed", error=str(e))
                return ""
            if not response.is_success:
                logger.warning("se2_docs_fetch_failed", status=response.status_code)
                return ""
            self._docs = response.text
            return self._docs


def _contracts_summary(contracts):
    return "\n\n".join(f"### {c.name}\n```solidity\n{c.content}\n```" for c in contracts)


class FrontendAgent(BaseAgent):
    """Generates pages. Owns its docs cache."""

    name = "frontend"

    def __init__(self, llm=None, docs=None):
        super().__init__(llm)
        self.docs = docs or DocsCache()

    def generate(self, contracts, plan, prompt=""):
        """Return the generated pages.

        Raises:
            ValueError: if no page could be extracted from the response.
        """
        pages_needed = "; ".join(f"{p.path} - {p.description}" for p in plan.pages)
        user_message = (
            "Create React frontend pages for a dApp with the following contracts:\n\n"
            f"{_contracts_summary(contracts)}\n\n"
            "## Project Plan:\n"
            f"Contract Name: {plan.contract_name}\n"
            f"Description: {plan.description}\n"
            f"Features: {', '.join(plan.features)}\n"
            f"Pages needed: {pages_needed}\n\n"
            f"Original user request: {prompt}\n\n"
            "The contracts have been tested and verified. Generate complete React pages "
            "that provide a user-friendly interface for all contract functionality."
        )

        pages = parse_pages(self._call_llm("frontend", user_message))
        if not pages:
            raise ValueError("Could not extract any pages from Claude's response")
        return pages

    def _system_prompt(self, prompt_name):
        return load_prompt(prompt_name).replace("{SE2_DOCS}", self.docs.get())
