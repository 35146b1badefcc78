"""Background jobs for admin bulk tasks (broadcasts), polled over HTTP."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger("studyabroad.jobs")

FINISHED = ("succeeded", "failed")


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStore:
    """Thread-per-job runner keeping job records in memory.

    Finished records expire after `ttl_seconds`; once more than `max_jobs`
    are held the oldest finished ones are dropped. Running jobs are never
    evicted.
    """

    def __init__(self, max_jobs: int = 500, ttl_seconds: int = 24 * 3600):
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()
        self.max_jobs = max_jobs
        self.ttl_seconds = ttl_seconds

    def submit(self, *, kind: str, params: dict, worker: Callable[[dict], dict],
               request_id: str = "", submitted_by: Optional[int] = None) -> dict:
        job_id = uuid.uuid4().hex
        record = {
            "job_id": job_id,
            "kind": kind,
            "status": "queued",
            "submitted_by": submitted_by,
            "request_id": request_id,
            "created_at": _stamp(),
            "started_at": None,
            "finished_at": None,
            "duration_ms": None,
            "result": None,
            "error": None,
        }
        with self._lock:
            self._evict_locked(incoming=1)
            self._records[job_id] = record
        threading.Thread(target=self._execute, args=(job_id, params, worker), daemon=True).start()
        logger.info("job_queued job_id=%s kind=%s", job_id, kind)
        return {"job_id": job_id, "status": "queued"}

    def get(self, job_id: str) -> Optional[dict]:
        with self._lock:
            self._evict_locked()
            record = self._records.get(job_id)
            return dict(record) if record else None

    def _update(self, job_id: str, **fields) -> None:
        with self._lock:
            if job_id in self._records:
                self._records[job_id].update(fields)

    def _execute(self, job_id: str, params: dict, worker: Callable[[dict], dict]) -> None:
        started = time.perf_counter()
        self._update(job_id, status="running", started_at=_stamp())
        try:
            result = worker(params)
        except Exception as exc:
            logger.exception("job_failed job_id=%s", job_id)
            self._update(job_id, status="failed", error=str(exc), finished_at=_stamp(),
                         duration_ms=round((time.perf_counter() - started) * 1000.0, 2))
            return
        elapsed = round((time.perf_counter() - started) * 1000.0, 2)
        self._update(job_id, status="succeeded", result=result, finished_at=_stamp(), duration_ms=elapsed)
        logger.info("job_done job_id=%s duration_ms=%s", job_id, elapsed)

    def _evict_locked(self, incoming: int = 0) -> None:
        finished = [r for r in self._records.values() if r["status"] in FINISHED]
        cutoff = time.time() - self.ttl_seconds
        for record in finished:
            if datetime.fromisoformat(record["finished_at"]).timestamp() < cutoff:
                self._records.pop(record["job_id"], None)
        overflow = len(self._records) + incoming - self.max_jobs
        if overflow > 0:
            survivors = sorted((r for r in self._records.values() if r["status"] in FINISHED),
                               key=lambda r: r["finished_at"])
            for record in survivors[:overflow]:
                self._records.pop(record["job_id"], None)
