"""Grader implementations."""

from scenario_grader.infrastructure.llm.mock import MockGrader, UnreachableGrader
from scenario_grader.infrastructure.llm.openai_grader import OpenAIGrader

__all__ = ["OpenAIGrader", "MockGrader", "UnreachableGrader"]
