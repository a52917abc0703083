"""
OpenAI-compatible language-model grader.

Sends the run transcript and artifact references to a chat-completions
endpoint in JSON mode and parses the structured verdict with pydantic.
Credentials come from the environment (OPENAI_API_KEY) or the config; the
engine never stores them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, cast

from pydantic import BaseModel, Field, ValidationError, field_validator

from scenario_grader.domain.exceptions import EvaluationError
from scenario_grader.domain.interfaces import GraderInterface
from scenario_grader.domain.models import (
    Decision,
    GraderRequest,
    GraderResponse,
    frozen_mapping,
)

logger = logging.getLogger(__name__)

# UX dimension -> weight in the overall score
UX_DIMENSIONS: dict[str, float] = {
    "discoverability": 0.15,
    "clarity": 0.15,
    "responsiveness": 0.20,
    "ai-integration": 0.20,
    "completion": 0.20,
    "polish": 0.10,
}

SYSTEM_PROMPT = """You are a meticulous UX evaluator for the Visual Studio Code editor.
You are given the transcript of a scripted user session and the outcome the
scenario author expects. Decide whether the session achieved that outcome.

Score each dimension from 1 (poor) to 5 (excellent):
{dimensions}

Respond with a single JSON object:
{{"decision": "pass" | "fail", "confidence": <0..1>, "rationale": "<short>",
  "scores": {{"<dimension>": <1..5>, ...}}}}"""


class GraderPayload(BaseModel):
    """Structured grader output."""

    decision: Literal["pass", "fail"]
    confidence: float = 0.5
    rationale: str = ""
    scores: dict[str, float] = Field(default_factory=dict)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)

    @field_validator("scores")
    @classmethod
    def _clamp_scores(cls, value: dict[str, float]) -> dict[str, float]:
        return {
            name: min(max(score, 1.0), 5.0)
            for name, score in value.items()
            if name in UX_DIMENSIONS
        }


def weighted_score(scores: dict[str, float]) -> float | None:
    """Weighted 1-5 score over the dimensions present, or None if none are."""
    present = {name: w for name, w in UX_DIMENSIONS.items() if name in scores}
    if not present:
        return None
    total_weight = sum(present.values())
    return sum(scores[name] * w for name, w in present.items()) / total_weight


def parse_grader_output(content: str) -> GraderResponse:
    """Parse raw model output; unusable output yields a decision of None."""
    try:
        payload = GraderPayload.model_validate(json.loads(content))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Unparseable grader output: %s", e)
        return GraderResponse(decision=None, rationale=content[:500])

    scores = dict(payload.scores)
    overall = weighted_score(scores)
    if overall is not None:
        scores["overall"] = overall
    return GraderResponse(
        decision=Decision(payload.decision),
        confidence=payload.confidence,
        rationale=payload.rationale,
        scores=frozen_mapping(scores),
    )


@dataclass
class OpenAIGraderConfig:
    """Configuration for OpenAIGrader.

    This typed config ensures unknown fields are rejected at construction time.
    """

    model: str = "gpt-4o"
    base_url: str | None = None
    api_key: str | None = None  # Falls back to OPENAI_API_KEY
    timeout: float = 60.0
    temperature: float = 0.3


class OpenAIGrader(GraderInterface):
    """Grades runs with an OpenAI-compatible chat-completions endpoint."""

    config_class = OpenAIGraderConfig

    def __init__(self, config: OpenAIGraderConfig | None = None, **kwargs: Any):
        if config is None:
            config = OpenAIGraderConfig(**kwargs)

        try:
            import openai
        except ImportError as err:
            raise ImportError("openai library required: pip install openai") from err

        self._config = config
        self._api_error = openai.APIError
        try:
            self._client = openai.OpenAI(
                base_url=config.base_url,
                api_key=config.api_key,
                timeout=config.timeout,
                max_retries=0,  # Retries are the judge's business
            )
        except openai.OpenAIError as e:
            raise EvaluationError(f"Cannot create grader client: {e}") from e

    def _messages(self, request: GraderRequest) -> list[dict[str, str]]:
        dimensions = "\n".join(f"- {name}" for name in UX_DIMENSIONS)
        transcript = "\n".join(request.transcript) or "(no steps ran)"
        artifacts = "\n".join(request.artifact_refs) or "(none)"
        user = (
            f"Scenario: {request.scenario_id}\n\n"
            f"Expected outcome:\n{request.expected_outcome}\n\n"
            f"Transcript:\n{transcript}\n\n"
            f"Captured artifacts:\n{artifacts}"
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(dimensions=dimensions)},
            {"role": "user", "content": user},
        ]

    def grade(self, request: GraderRequest) -> GraderResponse:
        logger.debug(
            "Grading %s (attempt %d) with %s",
            request.scenario_id,
            request.attempt,
            self._config.model,
        )
        try:
            response = self._client.chat.completions.create(
                model=self._config.model,
                messages=cast(Any, self._messages(request)),
                temperature=self._config.temperature,
                response_format={"type": "json_object"},
            )
        except self._api_error as e:
            raise EvaluationError(f"Grader unreachable: {e}", attempts=request.attempt) from e

        content = response.choices[0].message.content or ""
        return parse_grader_output(content)
