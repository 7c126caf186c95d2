"""Job result persistence.

Contract: persist is atomic. Either the full batch of entity results writes
or none of it does; partial data is never persisted as complete data.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel

from prospector.orchestrator.engine import EntityRunResult


class JobMetadata(BaseModel):
    """Metadata for a job, stored alongside its results."""

    job_id: str
    started_at: datetime
    completed_at: datetime | None = None
    total_entities: int = 0
    entities_done: int = 0
    entities_failed: int = 0
    total_emails: int = 0
    total_cost: float = 0.0
    currency: str = "USD"
    status: str = "running"


class ResultStore:
    """Files for one job under `<data_dir>/jobs/<job_id>/`."""

    def __init__(self, job_id: str, data_dir: Path) -> None:
        self._job_id = job_id
        self._job_dir = data_dir / "jobs" / job_id
        self._job_dir.mkdir(parents=True, exist_ok=True)
        self._output_path = self._job_dir / "results.jsonl"
        self._metadata_path = self._job_dir / "metadata.json"
        self._events_path = self._job_dir / "events.jsonl"

    @property
    def job_dir(self) -> Path:
        return self._job_dir

    @property
    def output_path(self) -> Path:
        return self._output_path

    @property
    def metadata_path(self) -> Path:
        return self._metadata_path

    @property
    def events_path(self) -> Path:
        return self._events_path

    def write_metadata(self, metadata: JobMetadata) -> None:
        temp_path = self._metadata_path.with_suffix(".tmp")
        try:
            temp_path.write_text(metadata.model_dump_json(indent=2))
            temp_path.replace(self._metadata_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def persist(self, results: list[EntityRunResult], metadata: JobMetadata) -> int:
        """Atomically write every entity result, then the final metadata.

        Returns the number of results persisted.
        """
        temp_path = self._output_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w") as f:
                for result in results:
                    f.write(result.model_dump_json() + "\n")
            temp_path.replace(self._output_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        metadata.completed_at = metadata.completed_at or datetime.now(timezone.utc)
        self.write_metadata(metadata)
        return len(results)

    @staticmethod
    def load_results(output_path: Path) -> list[EntityRunResult]:
        """Load persisted entity results from a JSONL file."""
        results = []
        if output_path.exists():
            with open(output_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        results.append(EntityRunResult.model_validate_json(line))
        return results

    @staticmethod
    def load_metadata(metadata_path: Path) -> JobMetadata | None:
        if not metadata_path.exists():
            return None
        return JobMetadata.model_validate_json(metadata_path.read_text())
