"""
Filesystem implementation of the run store.

Layout under the output directory:

    index.json
    <scenario_id>/<run_id>/run.json
    <scenario_id>/<run_id>/checkpoint.json     (orchestrated mode, in progress)
    <scenario_id>/<run_id>/artifacts/...
    <scenario_id>/comparisons/<comparison_id>.json
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

from scenario_grader.domain.interfaces import RunStoreInterface
from scenario_grader.domain.models import ComparisonResult, RunRecord
from scenario_grader.infrastructure.persistence.serialization import (
    comparison_to_dict,
    dict_to_diff,
    dict_to_run_record,
    run_record_to_dict,
)

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON using write-to-temp + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w") as f:
        json.dump(data, f, indent=2)
    temp_path.replace(path)  # Atomic on POSIX


class FilesystemRunStore(RunStoreInterface):
    """
    Persistent run store.

    One run.json per run, named by scenario id and run id, with an index for
    listing. Safe to share between parallel runs of a comparison.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._index_path = self._base_dir / "index.json"
        self._lock = threading.Lock()
        self._cache: dict[str, RunRecord] = {}
        self._index: dict[str, Any] = self._load_or_create_index()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _load_or_create_index(self) -> dict[str, Any]:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        if self._index_path.exists():
            with open(self._index_path) as f:
                result: dict[str, Any] = json.load(f)
                return result
        return {"version": "1.0", "runs": {}, "comparisons": {}}

    def run_dir(self, scenario_id: str, run_id: str) -> Path:
        return self._base_dir / scenario_id / run_id

    def artifact_dir(self, scenario_id: str, run_id: str) -> Path:
        return self.run_dir(scenario_id, run_id) / "artifacts"

    def checkpoint(self, record: RunRecord) -> None:
        """Write in-progress state so a crash mid-run stays diagnosable."""
        path = self.run_dir(record.scenario_id, record.run_id) / "checkpoint.json"
        _write_json_atomic(path, run_record_to_dict(record))
        logger.debug(
            "Checkpoint %s: %d step(s) recorded", record.run_id, len(record.step_outcomes)
        )

    def save_run(self, record: RunRecord) -> None:
        run_dir = self.run_dir(record.scenario_id, record.run_id)
        _write_json_atomic(run_dir / "run.json", run_record_to_dict(record))

        checkpoint = run_dir / "checkpoint.json"
        if record.is_terminal and checkpoint.exists():
            checkpoint.unlink()

        with self._lock:
            self._index["runs"][record.run_id] = {
                "scenario_id": record.scenario_id,
                "path": str((run_dir / "run.json").relative_to(self._base_dir)),
                "status": record.status.value,
                "version": record.environment.version.value,
                "started_at": record.started_at,
            }
            _write_json_atomic(self._index_path, self._index)
            self._cache[record.run_id] = record

    def load_run(self, scenario_id: str, run_id: str) -> RunRecord:
        """Retrieve a run by id (cache-first)."""
        if run_id in self._cache:
            return self._cache[run_id]

        path = self.run_dir(scenario_id, run_id) / "run.json"
        if not path.exists():
            raise KeyError(f"Run not found: {scenario_id}/{run_id}")
        with open(path) as f:
            record = dict_to_run_record(json.load(f))
        self._cache[run_id] = record
        return record

    def list_runs(self, scenario_id: str | None = None) -> list[RunRecord]:
        entries = sorted(
            (
                (meta["started_at"], meta["scenario_id"], run_id)
                for run_id, meta in self._index["runs"].items()
                if scenario_id is None or meta["scenario_id"] == scenario_id
            ),
        )
        return [self.load_run(sid, rid) for _, sid, rid in entries]

    def comparison_path(self, scenario_id: str, comparison_id: str) -> Path:
        return self._base_dir / scenario_id / "comparisons" / f"{comparison_id}.json"

    def save_comparison(self, result: ComparisonResult) -> None:
        path = self.comparison_path(result.scenario_id, result.comparison_id)
        _write_json_atomic(path, comparison_to_dict(result))
        with self._lock:
            self._index["comparisons"][result.comparison_id] = {
                "scenario_id": result.scenario_id,
                "path": str(path.relative_to(self._base_dir)),
                "created_at": result.created_at,
            }
            _write_json_atomic(self._index_path, self._index)

    def load_comparison(self, scenario_id: str, comparison_id: str) -> ComparisonResult:
        """Rebuild a comparison from its file and the referenced runs."""
        path = self.comparison_path(scenario_id, comparison_id)
        if not path.exists():
            raise KeyError(f"Comparison not found: {scenario_id}/{comparison_id}")
        with open(path) as f:
            data = json.load(f)
        return ComparisonResult(
            scenario_id=data["scenario_id"],
            runs={
                label: self.load_run(scenario_id, run_id)
                for label, run_id in data["runs"].items()
            },
            diff=dict_to_diff(data["diff"]),
            comparison_id=data["comparison_id"],
            created_at=data["created_at"],
        )
