"""
RunStore - Persist run reports and attempt logs.

The RunStore keeps:
- RunResults (the aggregate report of an apply/destroy run)
- OperationAttempts (per-stack attempt log, written as stacks finish)

Storage backends:
- In-memory (for testing)
- File-based (used by the CLI, under $STACKORCH_HOME/runs)
"""

import json
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from stackorch.schemas import OperationAttempt, RunResult

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def generate_run_id() -> str:
    """Sortable run identifier: UTC timestamp plus a random suffix."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{timestamp}-{uuid.uuid4().hex[:8]}"


class RunStore(ABC):
    """Abstract base class for run report storage."""

    @abstractmethod
    def store_result(self, result: RunResult) -> str:
        """
        Store or update a run report.

        Returns:
            A reference string for retrieving the report
        """
        pass

    @abstractmethod
    def get_result(self, run_id: str) -> Optional[RunResult]:
        pass

    @abstractmethod
    def store_attempts(self, run_id: str, stack: str, attempts: list[OperationAttempt]) -> None:
        """Store the attempt log of one stack."""
        pass

    @abstractmethod
    def get_attempts(self, run_id: str, stack: str) -> list[OperationAttempt]:
        pass

    @abstractmethod
    def list_runs(self) -> list[str]:
        """Run ids, oldest first."""
        pass

    def get_latest_result(self) -> Optional[RunResult]:
        runs = self.list_runs()
        if not runs:
            return None
        return self.get_result(runs[-1])


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._results: dict[str, RunResult] = {}
        self._attempts: dict[str, dict[str, list[OperationAttempt]]] = {}

    def store_result(self, result: RunResult) -> str:
        self._results[result.run_id] = result
        return f"mem://{result.run_id}"

    def get_result(self, run_id: str) -> Optional[RunResult]:
        return self._results.get(run_id)

    def store_attempts(self, run_id: str, stack: str, attempts: list[OperationAttempt]) -> None:
        self._attempts.setdefault(run_id, {})[stack] = list(attempts)

    def get_attempts(self, run_id: str, stack: str) -> list[OperationAttempt]:
        return list(self._attempts.get(run_id, {}).get(stack, []))

    def list_runs(self) -> list[str]:
        return sorted(self._results)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._results.clear()
        self._attempts.clear()


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores reports as JSON files in a directory tree:
        store_dir/
            runs/
                {run_id}.json
            attempts/
                {run_id}/
                    {stack}.json
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        for subdir in ["runs", "attempts"]:
            (self._store_dir / subdir).mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def store_result(self, result: RunResult) -> str:
        run_path = self._store_dir / "runs" / f"{result.run_id}.json"
        with open(run_path, "w") as f:
            json.dump(result.to_dict(), f, indent=2)
        return f"file://{run_path}"

    def get_result(self, run_id: str) -> Optional[RunResult]:
        run_path = self._store_dir / "runs" / f"{run_id}.json"
        if not run_path.exists():
            return None
        with open(run_path) as f:
            return RunResult.from_dict(json.load(f))

    def store_attempts(self, run_id: str, stack: str, attempts: list[OperationAttempt]) -> None:
        attempt_dir = self._store_dir / "attempts" / run_id
        attempt_dir.mkdir(parents=True, exist_ok=True)
        with open(attempt_dir / f"{_safe_name(stack)}.json", "w") as f:
            json.dump([a.to_dict() for a in attempts], f, indent=2)

    def get_attempts(self, run_id: str, stack: str) -> list[OperationAttempt]:
        path = self._store_dir / "attempts" / run_id / f"{_safe_name(stack)}.json"
        if not path.exists():
            return []
        with open(path) as f:
            return [OperationAttempt.from_dict(a) for a in json.load(f)]

    def list_runs(self) -> list[str]:
        return sorted(p.stem for p in (self._store_dir / "runs").glob("*.json"))


def _safe_name(stack: str) -> str:
    # stack names may contain path separators (e.g. "apps/argocd")
    return _UNSAFE_CHARS.sub("_", stack)
