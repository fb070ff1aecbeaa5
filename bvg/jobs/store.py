"""Generation job and batch storage: Postgres when configured, JSON files otherwise.

Rows carry a ``version``; ``update`` only succeeds against the version that
was read, so concurrent callback deliveries for one job cannot overwrite
each other silently.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from bvg.config import get_settings
from bvg.errors import InfrastructureError, JobNotFoundError, StaleJobError
from bvg.jobs.models import Batch, GenerationJob, PhaseStatus

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def create(self, job: GenerationJob) -> GenerationJob: ...
    def get(self, job_id: str) -> GenerationJob | None: ...
    def get_by_task_id(self, task_id: str) -> GenerationJob | None: ...
    def get_for_index(self, batch_id: str, index: int) -> GenerationJob | None: ...
    def list_for_batch(self, batch_id: str) -> list[GenerationJob]: ...
    def list_generating(self) -> list[GenerationJob]: ...
    def update(self, job: GenerationJob) -> GenerationJob: ...
    def create_batch(self, batch: Batch) -> Batch: ...
    def get_batch(self, batch_id: str) -> Batch | None: ...
    def update_batch(self, batch: Batch) -> Batch: ...


def _bumped(model, version: int):
    """Copy of a job/batch stamped with its next version and update time."""
    return model.model_copy(update={"version": version + 1, "updated_at": datetime.utcnow()})


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresJobStore:
    """Persist jobs and batches in Postgres. Survives restarts."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS bvg_generation_jobs (
                job_id TEXT PRIMARY KEY,
                batch_id TEXT,
                user_id TEXT NOT NULL,
                variation_index INT,
                initial_task_id TEXT,
                extended_task_id TEXT,
                initial_status TEXT NOT NULL,
                extended_status TEXT NOT NULL,
                final_video_status TEXT NOT NULL,
                version INT NOT NULL DEFAULT 0,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_bvg_jobs_batch_index
            ON bvg_generation_jobs (batch_id, variation_index)
            WHERE batch_id IS NOT NULL AND variation_index IS NOT NULL
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_bvg_jobs_initial_task
            ON bvg_generation_jobs (initial_task_id)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_bvg_jobs_extended_task
            ON bvg_generation_jobs (extended_task_id)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS bvg_batches (
                batch_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INT NOT NULL DEFAULT 0,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        return conn

    def _execute(self, sql: str, params: tuple):
        import psycopg

        try:
            return self._conn.execute(sql, params)
        except psycopg.Error as e:
            raise InfrastructureError(f"Database error: {e}") from e

    # -- jobs ---------------------------------------------------------------

    def create(self, job: GenerationJob) -> GenerationJob:
        self._execute(
            """
            INSERT INTO bvg_generation_jobs
            (job_id, batch_id, user_id, variation_index, initial_task_id, extended_task_id,
             initial_status, extended_status, final_video_status, version, data,
             created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, NOW(), NOW())
            """,
            (
                job.job_id,
                job.batch_id,
                job.user_id,
                job.variation_index,
                job.initial_task_id,
                job.extended_task_id,
                job.initial_status.value,
                job.extended_status.value,
                job.final_video_status.value,
                job.version,
                json.dumps(job.model_dump(mode="json")),
            ),
        )
        return job

    def get(self, job_id: str) -> GenerationJob | None:
        row = self._execute(
            "SELECT data FROM bvg_generation_jobs WHERE job_id = %s", (job_id,)
        ).fetchone()
        return self._row_to_job(row) if row else None

    def get_by_task_id(self, task_id: str) -> GenerationJob | None:
        row = self._execute(
            """
            SELECT data FROM bvg_generation_jobs
            WHERE initial_task_id = %s OR extended_task_id = %s
            LIMIT 1
            """,
            (task_id, task_id),
        ).fetchone()
        return self._row_to_job(row) if row else None

    def get_for_index(self, batch_id: str, index: int) -> GenerationJob | None:
        row = self._execute(
            """
            SELECT data FROM bvg_generation_jobs
            WHERE batch_id = %s AND variation_index = %s
            """,
            (batch_id, index),
        ).fetchone()
        return self._row_to_job(row) if row else None

    def list_for_batch(self, batch_id: str) -> list[GenerationJob]:
        rows = self._execute(
            """
            SELECT data FROM bvg_generation_jobs
            WHERE batch_id = %s ORDER BY variation_index NULLS LAST, created_at
            """,
            (batch_id,),
        ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def list_generating(self) -> list[GenerationJob]:
        rows = self._execute(
            """
            SELECT data FROM bvg_generation_jobs
            WHERE initial_status = 'generating' OR extended_status = 'generating'
            ORDER BY updated_at
            """,
            (),
        ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def update(self, job: GenerationJob) -> GenerationJob:
        saved = _bumped(job, job.version)
        cur = self._execute(
            """
            UPDATE bvg_generation_jobs SET
                initial_task_id = %s, extended_task_id = %s,
                initial_status = %s, extended_status = %s, final_video_status = %s,
                version = %s, data = %s::jsonb, updated_at = NOW()
            WHERE job_id = %s AND version = %s
            """,
            (
                saved.initial_task_id,
                saved.extended_task_id,
                saved.initial_status.value,
                saved.extended_status.value,
                saved.final_video_status.value,
                saved.version,
                json.dumps(saved.model_dump(mode="json")),
                job.job_id,
                job.version,
            ),
        )
        if cur.rowcount == 0:
            raise StaleJobError(f"Job {job.job_id} changed since version {job.version}")
        return saved

    def _row_to_job(self, row) -> GenerationJob:
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return GenerationJob.model_validate(data)

    # -- batches ------------------------------------------------------------

    def create_batch(self, batch: Batch) -> Batch:
        self._execute(
            """
            INSERT INTO bvg_batches (batch_id, user_id, status, version, data, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s::jsonb, NOW(), NOW())
            """,
            (
                batch.batch_id,
                batch.user_id,
                batch.status.value,
                batch.version,
                json.dumps(batch.model_dump(mode="json")),
            ),
        )
        return batch

    def get_batch(self, batch_id: str) -> Batch | None:
        row = self._execute(
            "SELECT data FROM bvg_batches WHERE batch_id = %s", (batch_id,)
        ).fetchone()
        if not row:
            return None
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return Batch.model_validate(data)

    def update_batch(self, batch: Batch) -> Batch:
        saved = _bumped(batch, batch.version)
        cur = self._execute(
            """
            UPDATE bvg_batches SET status = %s, version = %s, data = %s::jsonb, updated_at = NOW()
            WHERE batch_id = %s AND version = %s
            """,
            (
                saved.status.value,
                saved.version,
                json.dumps(saved.model_dump(mode="json")),
                batch.batch_id,
                batch.version,
            ),
        )
        if cur.rowcount == 0:
            raise StaleJobError(f"Batch {batch.batch_id} changed since version {batch.version}")
        return saved


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs and batches as JSON files. Survives restarts within same data dir."""

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir) / "jobs"
        self._jobs_dir = self._dir / "generations"
        self._batches_dir = self._dir / "batches"
        self._jobs_dir.mkdir(parents=True, exist_ok=True)
        self._batches_dir.mkdir(parents=True, exist_ok=True)
        self._index_path = self._dir / "index.json"
        self._lock = threading.RLock()
        self._index: dict[str, dict[str, str]] = self._load_index()

    def _load_index(self) -> dict[str, dict[str, str]]:
        """tasks: task_id -> job_id; slots: "batch_id:index" -> job_id."""
        index: dict[str, dict[str, str]] = {"tasks": {}, "slots": {}}
        if self._index_path.exists():
            try:
                with open(self._index_path, "r", encoding="utf-8") as f:
                    index.update(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Job index unreadable (%s); starting empty", e)
        return index

    def _save_index(self) -> None:
        try:
            with open(self._index_path, "w", encoding="utf-8") as f:
                json.dump(self._index, f, indent=2)
        except OSError as e:
            raise InfrastructureError(f"Failed to write job index: {e}") from e

    def _job_path(self, job_id: str) -> Path:
        return self._jobs_dir / f"{job_id}.json"

    def _batch_path(self, batch_id: str) -> Path:
        return self._batches_dir / f"{batch_id}.json"

    @staticmethod
    def _slot(batch_id: str, index: int) -> str:
        return f"{batch_id}:{index}"

    # -- jobs ---------------------------------------------------------------

    def create(self, job: GenerationJob) -> GenerationJob:
        """Write the job file, then index it. A failed index write removes the file again."""
        with self._lock:
            path = self._job_path(job.job_id)
            if path.exists():
                raise InfrastructureError(f"Job already exists: {job.job_id}")
            slot = None
            if job.batch_id and job.variation_index is not None:
                slot = self._slot(job.batch_id, job.variation_index)
                owner = self._index["slots"].get(slot)
                if owner and self._job_path(owner).exists():
                    raise InfrastructureError(
                        f"Batch {job.batch_id} already has a job for combination {job.variation_index}"
                    )
                if owner:
                    logger.warning("Reclaiming combination %s; job %s was never written", slot, owner)

            self._write(path, job)
            previous = dict(self._index["slots"]), dict(self._index["tasks"])
            if slot:
                self._index["slots"][slot] = job.job_id
            self._index_tasks(job)
            try:
                self._save_index()
            except InfrastructureError:
                self._index["slots"], self._index["tasks"] = previous
                path.unlink(missing_ok=True)
                raise
        return job

    def get(self, job_id: str) -> GenerationJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        with self._lock:
            return self._read_job(path)

    def get_by_task_id(self, task_id: str) -> GenerationJob | None:
        job_id = self._index["tasks"].get(task_id)
        if not job_id:
            return None
        return self.get(job_id)

    def get_for_index(self, batch_id: str, index: int) -> GenerationJob | None:
        job_id = self._index["slots"].get(self._slot(batch_id, index))
        if not job_id:
            return None
        return self.get(job_id)

    def list_for_batch(self, batch_id: str) -> list[GenerationJob]:
        jobs = [j for j in self._all_jobs() if j.batch_id == batch_id]
        return sorted(
            jobs,
            key=lambda j: (j.variation_index is None, j.variation_index or 0, j.created_at),
        )

    def list_generating(self) -> list[GenerationJob]:
        return [
            j for j in self._all_jobs()
            if PhaseStatus.GENERATING in (j.initial_status, j.extended_status)
        ]

    def update(self, job: GenerationJob) -> GenerationJob:
        with self._lock:
            path = self._job_path(job.job_id)
            if not path.exists():
                raise InfrastructureError(f"Job not found: {job.job_id}")
            current = self._read_job(path)
            if current.version != job.version:
                raise StaleJobError(f"Job {job.job_id} changed since version {job.version}")
            saved = _bumped(job, job.version)
            if self._index_tasks(saved):
                self._save_index()
            self._write(path, saved)
        return saved

    def _index_tasks(self, job: GenerationJob) -> bool:
        changed = False
        for task_id in (job.initial_task_id, job.extended_task_id):
            if task_id and self._index["tasks"].get(task_id) != job.job_id:
                self._index["tasks"][task_id] = job.job_id
                changed = True
        return changed

    def _all_jobs(self) -> list[GenerationJob]:
        with self._lock:
            return [self._read_job(p) for p in sorted(self._jobs_dir.glob("*.json"))]

    def _read_job(self, path: Path) -> GenerationJob:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return GenerationJob.model_validate(data)

    # -- batches ------------------------------------------------------------

    def create_batch(self, batch: Batch) -> Batch:
        with self._lock:
            self._write(self._batch_path(batch.batch_id), batch)
        return batch

    def get_batch(self, batch_id: str) -> Batch | None:
        path = self._batch_path(batch_id)
        if not path.exists():
            return None
        with self._lock:
            with open(path, "r", encoding="utf-8") as f:
                return Batch.model_validate(json.load(f))

    def update_batch(self, batch: Batch) -> Batch:
        with self._lock:
            current = self.get_batch(batch.batch_id)
            if current is None:
                raise InfrastructureError(f"Batch not found: {batch.batch_id}")
            if current.version != batch.version:
                raise StaleJobError(f"Batch {batch.batch_id} changed since version {batch.version}")
            saved = _bumped(batch, batch.version)
            self._write(self._batch_path(batch.batch_id), saved)
        return saved

    def _write(self, path: Path, model) -> None:
        data = model.model_dump(mode="json")
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            raise InfrastructureError(f"Failed to write {path.name}: {e}") from e


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: JobStore | None = None


def get_job_store() -> JobStore:
    """Return singleton job store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.bvg_database_url:
        try:
            _store = PostgresJobStore(settings.bvg_database_url)
            logger.info("Using Postgres job store")
        except Exception as e:
            logger.warning("Postgres job store failed (%s), falling back to file store", e)
            _store = FileJobStore(settings.data_dir)
    else:
        _store = FileJobStore(settings.data_dir)
        logger.info("Using file-based job store (BVG_DATA_DIR/jobs)")
    return _store


def _new_job_id() -> str:
    return f"gen_{uuid.uuid4().hex[:16]}"


def _new_batch_id() -> str:
    return f"batch_{uuid.uuid4().hex[:16]}"


def apply_update(
    store: JobStore,
    job_id: str,
    mutate: Callable[[GenerationJob], bool | None],
    attempts: int = 3,
) -> GenerationJob:
    """Load, mutate in place and save a job, reloading when another writer got there first.

    ``mutate`` returns False to skip the write (nothing to change).
    """
    for attempt in range(1, attempts + 1):
        job = store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if mutate(job) is False:
            return job
        try:
            return store.update(job)
        except StaleJobError:
            if attempt == attempts:
                raise
            logger.info("Job %s changed concurrently; reapplying (attempt %d)", job_id, attempt + 1)
    raise StaleJobError(f"Job {job_id} could not be updated")


def apply_batch_update(
    store: JobStore,
    batch_id: str,
    mutate: Callable[[Batch], bool | None],
    attempts: int = 3,
) -> Batch:
    for attempt in range(1, attempts + 1):
        batch = store.get_batch(batch_id)
        if batch is None:
            raise JobNotFoundError(f"Batch not found: {batch_id}")
        if mutate(batch) is False:
            return batch
        try:
            return store.update_batch(batch)
        except StaleJobError:
            if attempt == attempts:
                raise
            logger.info("Batch %s changed concurrently; reapplying (attempt %d)", batch_id, attempt + 1)
    raise StaleJobError(f"Batch {batch_id} could not be updated")
