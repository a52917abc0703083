"""
Mock grader for testing without a language model.

Returns predefined responses in sequence.
"""

from scenario_grader.domain.exceptions import EvaluationError
from scenario_grader.domain.interfaces import GraderInterface
from scenario_grader.domain.models import Decision, GraderRequest, GraderResponse


class MockGrader(GraderInterface):
    """Returns predefined responses for testing."""

    def __init__(self, responses: list[GraderResponse | Decision | None]):
        """
        Args:
            responses: Responses to return in sequence. A bare Decision is
                wrapped with confidence 0.9; None is an unusable response.
        """
        self._responses = responses
        self._call_count = 0
        self.requests: list[GraderRequest] = []

    def grade(self, request: GraderRequest) -> GraderResponse:
        """Return the next predefined response."""
        if self._call_count >= len(self._responses):
            raise RuntimeError("MockGrader exhausted responses")

        item = self._responses[self._call_count]
        self._call_count += 1
        self.requests.append(request)

        if isinstance(item, GraderResponse):
            return item
        if item is None:
            return GraderResponse(decision=None, rationale="unparseable")
        return GraderResponse(decision=item, confidence=0.9, rationale=f"mock {item.value}")

    @property
    def call_count(self) -> int:
        """Number of times grade() has been called."""
        return self._call_count

    def reset(self) -> None:
        """Reset the call counter to reuse responses."""
        self._call_count = 0
        self.requests.clear()


class UnreachableGrader(GraderInterface):
    """Grader whose backend can never be reached."""

    def __init__(self, message: str = "connection refused"):
        self._message = message
        self.call_count = 0

    def grade(self, request: GraderRequest) -> GraderResponse:
        self.call_count += 1
        raise EvaluationError(f"Grader unreachable: {self._message}", attempts=request.attempt)
