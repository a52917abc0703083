"""
Application layer: step execution, capture, orchestration, judging,
comparison and watch mode.
"""

from scenario_grader.application.comparison import ComparisonEngine
from scenario_grader.application.judge import EvaluationJudge
from scenario_grader.application.orchestrator import ScenarioOrchestrator
from scenario_grader.application.watch import WatchController

__all__ = [
    "ComparisonEngine",
    "EvaluationJudge",
    "ScenarioOrchestrator",
    "WatchController",
]
