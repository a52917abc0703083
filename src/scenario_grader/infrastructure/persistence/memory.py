"""
In-memory run store for testing.

Keeps serialized snapshots so stored records cannot be mutated afterwards.
"""

import tempfile
from pathlib import Path
from typing import Any

from scenario_grader.domain.interfaces import RunStoreInterface
from scenario_grader.domain.models import ComparisonResult, RunRecord
from scenario_grader.infrastructure.persistence.serialization import (
    dict_to_run_record,
    run_record_to_dict,
)


class InMemoryRunStore(RunStoreInterface):
    """Run store backed by dicts; artifacts go to a temporary directory."""

    def __init__(self, artifact_root: str | Path | None = None):
        self._artifact_root = Path(artifact_root or tempfile.mkdtemp(prefix="scenario-grader-"))
        self._runs: dict[str, dict[str, Any]] = {}
        self._order: list[str] = []
        self.checkpoints: list[dict[str, Any]] = []
        self.comparisons: list[ComparisonResult] = []

    def artifact_dir(self, scenario_id: str, run_id: str) -> Path:
        return self._artifact_root / scenario_id / run_id / "artifacts"

    def checkpoint(self, record: RunRecord) -> None:
        self.checkpoints.append(run_record_to_dict(record))

    def save_run(self, record: RunRecord) -> None:
        if record.run_id not in self._runs:
            self._order.append(record.run_id)
        self._runs[record.run_id] = run_record_to_dict(record)

    def load_run(self, scenario_id: str, run_id: str) -> RunRecord:
        data = self._runs.get(run_id)
        if data is None or data["scenario_id"] != scenario_id:
            raise KeyError(f"Run not found: {scenario_id}/{run_id}")
        return dict_to_run_record(data)

    def save_comparison(self, result: ComparisonResult) -> None:
        self.comparisons.append(result)

    def list_runs(self, scenario_id: str | None = None) -> list[RunRecord]:
        return [
            dict_to_run_record(self._runs[run_id])
            for run_id in self._order
            if scenario_id is None or self._runs[run_id]["scenario_id"] == scenario_id
        ]
