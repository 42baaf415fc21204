"""Persisted tracking for background flow runs.

Jobs are kept in a single JSON file so the listing survives a restart. Runs do
not: on startup any job still queued or running is marked failed.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

ACTIVE_STATUSES = frozenset({"queued", "running"})


class JobRecord(BaseModel):
    job_id: str
    flow_id: str
    status: str
    created_at: str
    updated_at: str

    trace_id: str | None = None
    request_id: str | None = None

    result: dict[str, Any] | None = None
    error: str | None = None


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class JobStore:
    """JSON-file job store.

    `max_records` caps the history: when a new job would exceed it, the oldest
    finished jobs are dropped. Active jobs are never dropped.
    """

    path: Path
    max_records: int | None = None

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[JobRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return []
        if not isinstance(raw, list):
            return []
        return [JobRecord.model_validate(item) for item in raw]

    def _save_unlocked(self, jobs: list[JobRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [j.model_dump(mode="json") for j in jobs]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def _prune(self, jobs: list[JobRecord]) -> list[JobRecord]:
        if self.max_records is None:
            return jobs
        excess = len(jobs) - self.max_records
        if excess <= 0:
            return jobs
        kept: list[JobRecord] = []
        for job in jobs:
            if excess > 0 and job.status not in ACTIVE_STATUSES:
                excess -= 1
                continue
            kept.append(job)
        return kept

    def list(self, status: str | None = None) -> list[JobRecord]:
        with self._lock:
            jobs = self._load_unlocked()
        if status is None:
            return jobs
        return [j for j in jobs if j.status == status]

    def get(self, job_id: str) -> JobRecord | None:
        with self._lock:
            return next((j for j in self._load_unlocked() if j.job_id == job_id), None)

    def create(
        self,
        *,
        job_id: str,
        flow_id: str,
        trace_id: str | None = None,
        request_id: str | None = None,
    ) -> JobRecord:
        with self._lock:
            now = _utc_iso_now()
            record = JobRecord(
                job_id=job_id,
                flow_id=flow_id,
                status="queued",
                created_at=now,
                updated_at=now,
                trace_id=trace_id,
                request_id=request_id,
            )
            jobs = self._load_unlocked()
            jobs.append(record)
            self._save_unlocked(self._prune(jobs))
            return record

    def update(self, job_id: str, **updates: object) -> JobRecord:
        with self._lock:
            jobs = self._load_unlocked()
            for idx, job in enumerate(jobs):
                if job.job_id != job_id:
                    continue
                merged = job.model_copy(update={"updated_at": _utc_iso_now(), **updates})
                jobs[idx] = merged
                self._save_unlocked(jobs)
                return merged
            raise KeyError(job_id)

    def fail_interrupted(self, reason: str = "Interrupted by server restart") -> int:
        """Mark jobs left active by a previous process as failed; return how many."""

        with self._lock:
            jobs = self._load_unlocked()
            now = _utc_iso_now()
            count = 0
            for idx, job in enumerate(jobs):
                if job.status in ACTIVE_STATUSES:
                    jobs[idx] = job.model_copy(
                        update={"status": "failed", "error": reason, "updated_at": now}
                    )
                    count += 1
            if count:
                self._save_unlocked(jobs)
            return count
