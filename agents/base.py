"""Base class for the LLM-backed agents."""

import os

from utils.llm import call_llm

_PROMPT_DIR = os.path.join(os.path.dirname(__file__), "prompts")


def load_prompt(name):
    """Read a system prompt from agents/prompts/<name>.txt."""
    with open(os.path.join(_PROMPT_DIR, f"{name}.txt")) as f:
        return f.read()


class BaseAgent:
    """Holds the LLM seam shared by every agent.

    `llm` is any callable with the call_llm signature; tests pass a stub.
    """

    name = "base"

    def __init__(self, llm=None):
        self.llm = llm

    def _system_prompt(self, prompt_name):
        return load_prompt(prompt_name)

    def _call_llm(self, prompt_name, user_message, **kwargs):
        llm = self.llm or call_llm
        return llm(self._system_prompt(prompt_name), user_message, **kwargs)
