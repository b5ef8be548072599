"""Planner agent: turns a request into clarification questions or a ProjectPlan."""

import json

from agents.base import BaseAgent
from config.defaults import DEFAULTS
from core.codec import plan_from_wire, question_from_wire
from core.state import AnalyzeResult


class PlannerAgent(BaseAgent):
    """One JSON LLM call per analyze request."""

    name = "planner"

    def analyze(self, prompt, answers=None, is_follow_up=False) -> AnalyzeResult:
        """Ask the model for a plan.

        Raises:
            ValueError: if the response has no status, or lacks the questions
                or plan its status promises.
        """
        user_message = prompt
        if is_follow_up and answers:
            user_message = (
                f"Original request: {prompt}\n\n"
                "User's answers to clarification questions:\n"
                f"{json.dumps(answers, indent=2)}\n\n"
                "Now create a plan based on this information."
            )

        result = self._call_llm(
            "planner",
            user_message,
            response_format="json",
            max_tokens=DEFAULTS["analyze_max_tokens"],
        )

        status = result.get("status") if isinstance(result, dict) else None
        if status == "needs_clarification":
            if not result.get("questions"):
                raise ValueError("AI response missing clarification questions.")
            return AnalyzeResult(
                status=status,
                questions=[question_from_wire(q) for q in result["questions"]],
            )
        if status == "ready":
            if not result.get("plan"):
                raise ValueError("AI response missing project plan.")
            return AnalyzeResult(status=status, plan=plan_from_wire(result["plan"]))

        raise ValueError("AI returned an invalid response format. Please try again.")
