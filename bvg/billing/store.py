"""Credit storage: Postgres when configured, JSON files otherwise.

All balance mutations go through ``locked(user_id)``: the balance row is
held for the duration of the block (``SELECT ... FOR UPDATE`` in Postgres,
a process lock for the file store) and everything recorded on the session
is written before the lock is released. An exception inside the block
discards the session.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Protocol

from bvg.billing.models import CreditTransaction, VideoJob, VideoJobStatus
from bvg.config import get_settings
from bvg.errors import InfrastructureError

logger = logging.getLogger(__name__)


class LedgerSession:
    """A user's balance row, locked for one read-modify-write."""

    def __init__(
        self,
        user_id: str,
        balance: int,
        reserved: int,
        find_transaction: Callable[[str], CreditTransaction | None],
        get_video_job: Callable[[str], VideoJob | None],
    ):
        self.user_id = user_id
        self.balance = balance
        self.reserved = reserved
        self.transactions: list[CreditTransaction] = []
        self.video_jobs: dict[str, VideoJob] = {}
        self._find_transaction = find_transaction
        self._get_video_job = get_video_job

    @property
    def available(self) -> int:
        return self.balance - self.reserved

    def find_transaction(self, idempotency_key: str) -> CreditTransaction | None:
        for tx in self.transactions:
            if tx.idempotency_key == idempotency_key:
                return tx
        return self._find_transaction(idempotency_key)

    def get_video_job(self, video_job_id: str) -> VideoJob | None:
        if video_job_id in self.video_jobs:
            return self.video_jobs[video_job_id]
        return self._get_video_job(video_job_id)

    def record(self, tx: CreditTransaction) -> None:
        self.transactions.append(tx)

    def save_video_job(self, video_job: VideoJob) -> None:
        self.video_jobs[video_job.video_job_id] = video_job


class CreditStore(Protocol):
    def locked(self, user_id: str) -> ContextManager[LedgerSession]: ...
    def get_balance(self, user_id: str) -> tuple[int, int]: ...
    def get_video_job(self, video_job_id: str) -> VideoJob | None: ...
    def find_pending_video_job(self, generation_id: str) -> VideoJob | None: ...
    def find_transaction(self, idempotency_key: str) -> CreditTransaction | None: ...
    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]: ...


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresCreditStore:
    """Balances, ledger rows and reservations in Postgres."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres credit store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS bvg_credit_balances (
                user_id TEXT PRIMARY KEY,
                balance INT NOT NULL DEFAULT 0,
                reserved INT NOT NULL DEFAULT 0,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS bvg_credit_transactions (
                transaction_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                amount INT NOT NULL,
                balance_after INT NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{}',
                idempotency_key TEXT UNIQUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_bvg_credit_tx_user
            ON bvg_credit_transactions (user_id, created_at DESC)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS bvg_video_jobs (
                video_job_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                generation_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_bvg_video_jobs_generation
            ON bvg_video_jobs (generation_id, status)
        """)
        return conn

    @contextmanager
    def locked(self, user_id: str) -> Iterator[LedgerSession]:
        import psycopg

        try:
            with psycopg.connect(self._url) as conn:
                with conn.transaction():
                    conn.execute(
                        """
                        INSERT INTO bvg_credit_balances (user_id, balance, reserved)
                        VALUES (%s, 0, 0) ON CONFLICT (user_id) DO NOTHING
                        """,
                        (user_id,),
                    )
                    balance, reserved = conn.execute(
                        """
                        SELECT balance, reserved FROM bvg_credit_balances
                        WHERE user_id = %s FOR UPDATE
                        """,
                        (user_id,),
                    ).fetchone()
                    session = LedgerSession(
                        user_id,
                        balance,
                        reserved,
                        find_transaction=lambda key: self._find_transaction(conn, key),
                        get_video_job=lambda vid: self._get_video_job(conn, vid),
                    )
                    yield session
                    self._persist(conn, session)
        except psycopg.Error as e:
            raise InfrastructureError(f"Credit store error: {e}") from e

    def _persist(self, conn, session: LedgerSession) -> None:
        conn.execute(
            """
            UPDATE bvg_credit_balances SET balance = %s, reserved = %s, updated_at = NOW()
            WHERE user_id = %s
            """,
            (session.balance, session.reserved, session.user_id),
        )
        for tx in session.transactions:
            conn.execute(
                """
                INSERT INTO bvg_credit_transactions
                (transaction_id, user_id, type, amount, balance_after, metadata,
                 idempotency_key, created_at)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                """,
                (
                    tx.transaction_id,
                    tx.user_id,
                    tx.type.value,
                    tx.amount,
                    tx.balance_after,
                    json.dumps(tx.metadata),
                    tx.idempotency_key,
                    tx.created_at,
                ),
            )
        for vj in session.video_jobs.values():
            conn.execute(
                """
                INSERT INTO bvg_video_jobs (video_job_id, user_id, generation_id, status, data)
                VALUES (%s, %s, %s, %s, %s::jsonb)
                ON CONFLICT (video_job_id) DO UPDATE SET
                    status = EXCLUDED.status, data = EXCLUDED.data, updated_at = NOW()
                """,
                (
                    vj.video_job_id,
                    vj.user_id,
                    vj.generation_id,
                    vj.status.value,
                    json.dumps(vj.model_dump(mode="json")),
                ),
            )

    def get_balance(self, user_id: str) -> tuple[int, int]:
        row = self._conn.execute(
            "SELECT balance, reserved FROM bvg_credit_balances WHERE user_id = %s",
            (user_id,),
        ).fetchone()
        return (row[0], row[1]) if row else (0, 0)

    def get_video_job(self, video_job_id: str) -> VideoJob | None:
        return self._get_video_job(self._conn, video_job_id)

    def find_pending_video_job(self, generation_id: str) -> VideoJob | None:
        row = self._conn.execute(
            """
            SELECT data FROM bvg_video_jobs
            WHERE generation_id = %s AND status = %s
            ORDER BY created_at DESC LIMIT 1
            """,
            (generation_id, VideoJobStatus.PENDING.value),
        ).fetchone()
        return self._row_to_video_job(row) if row else None

    def find_transaction(self, idempotency_key: str) -> CreditTransaction | None:
        return self._find_transaction(self._conn, idempotency_key)

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]:
        rows = self._conn.execute(
            """
            SELECT transaction_id, user_id, type, amount, balance_after, metadata,
                   idempotency_key, created_at
            FROM bvg_credit_transactions WHERE user_id = %s
            ORDER BY created_at DESC LIMIT %s
            """,
            (user_id, limit),
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def _get_video_job(self, conn, video_job_id: str) -> VideoJob | None:
        row = conn.execute(
            "SELECT data FROM bvg_video_jobs WHERE video_job_id = %s", (video_job_id,)
        ).fetchone()
        return self._row_to_video_job(row) if row else None

    def _find_transaction(self, conn, idempotency_key: str) -> CreditTransaction | None:
        row = conn.execute(
            """
            SELECT transaction_id, user_id, type, amount, balance_after, metadata,
                   idempotency_key, created_at
            FROM bvg_credit_transactions WHERE idempotency_key = %s
            """,
            (idempotency_key,),
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    def _row_to_video_job(self, row) -> VideoJob:
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return VideoJob.model_validate(data)

    def _row_to_transaction(self, row) -> CreditTransaction:
        return CreditTransaction(
            transaction_id=row[0],
            user_id=row[1],
            type=row[2],
            amount=row[3],
            balance_after=row[4],
            metadata=row[5] if isinstance(row[5], dict) else (json.loads(row[5]) if row[5] else {}),
            idempotency_key=row[6],
            created_at=row[7],
        )


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

_FILE_LOCKS: dict[str, threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """One lock per ledger file, shared by every store instance in the process."""
    key = str(path.resolve())
    with _FILE_LOCKS_GUARD:
        if key not in _FILE_LOCKS:
            _FILE_LOCKS[key] = threading.Lock()
        return _FILE_LOCKS[key]


class FileCreditStore:
    """Ledger kept in a single JSON file; every mutation holds the file's lock."""

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir) / "credits"
        self._dir.mkdir(parents=True, exist_ok=True)
        self._path = self._dir / "ledger.json"
        self._lock = _lock_for(self._path)

    def _load(self) -> dict:
        state = {"balances": {}, "transactions": [], "video_jobs": {}}
        if self._path.exists():
            with open(self._path, "r", encoding="utf-8") as f:
                state.update(json.load(f))
        return state

    def _save(self, state: dict) -> None:
        tmp = self._path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2, default=str)
            tmp.replace(self._path)
        except OSError as e:
            raise InfrastructureError(f"Failed to write credit ledger: {e}") from e

    @contextmanager
    def locked(self, user_id: str) -> Iterator[LedgerSession]:
        with self._lock:
            state = self._load()
            row = state["balances"].get(user_id, {"balance": 0, "reserved": 0})
            session = LedgerSession(
                user_id,
                row["balance"],
                row["reserved"],
                find_transaction=lambda key: self._find_in(state, key),
                get_video_job=lambda vid: self._video_job_in(state, vid),
            )
            yield session
            state["balances"][user_id] = {"balance": session.balance, "reserved": session.reserved}
            state["transactions"].extend(tx.model_dump(mode="json") for tx in session.transactions)
            for vj in session.video_jobs.values():
                state["video_jobs"][vj.video_job_id] = vj.model_dump(mode="json")
            self._save(state)

    def get_balance(self, user_id: str) -> tuple[int, int]:
        with self._lock:
            row = self._load()["balances"].get(user_id)
        if not row:
            return 0, 0
        return row["balance"], row["reserved"]

    def get_video_job(self, video_job_id: str) -> VideoJob | None:
        with self._lock:
            return self._video_job_in(self._load(), video_job_id)

    def find_pending_video_job(self, generation_id: str) -> VideoJob | None:
        with self._lock:
            state = self._load()
        pending = [
            VideoJob.model_validate(d)
            for d in state["video_jobs"].values()
            if d["generation_id"] == generation_id and d["status"] == VideoJobStatus.PENDING.value
        ]
        if not pending:
            return None
        return max(pending, key=lambda vj: vj.created_at)

    def find_transaction(self, idempotency_key: str) -> CreditTransaction | None:
        with self._lock:
            return self._find_in(self._load(), idempotency_key)

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]:
        with self._lock:
            state = self._load()
        rows = [CreditTransaction.model_validate(t) for t in state["transactions"] if t["user_id"] == user_id]
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return rows[:limit]

    @staticmethod
    def _find_in(state: dict, idempotency_key: str) -> CreditTransaction | None:
        for t in state["transactions"]:
            if t.get("idempotency_key") == idempotency_key:
                return CreditTransaction.model_validate(t)
        return None

    @staticmethod
    def _video_job_in(state: dict, video_job_id: str) -> VideoJob | None:
        data = state["video_jobs"].get(video_job_id)
        return VideoJob.model_validate(data) if data else None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: CreditStore | None = None


def get_credit_store() -> CreditStore:
    """Return singleton credit store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.bvg_database_url:
        try:
            _store = PostgresCreditStore(settings.bvg_database_url)
            logger.info("Using Postgres credit store")
        except Exception as e:
            logger.warning("Postgres credit store failed (%s), falling back to file store", e)
            _store = FileCreditStore(settings.data_dir)
    else:
        _store = FileCreditStore(settings.data_dir)
        logger.info("Using file-based credit store (BVG_DATA_DIR/credits)")
    return _store
