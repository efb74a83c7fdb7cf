# ============================================================================
# src/medical_processing/core/record_store.py
# ============================================================================
"""
Record Store

Persists processing jobs and their structured records to SQLite.
Raw sqlite3, JSON for the record. One row per document holds both the job
state (status, retries, lock, error) and the last committed record.

Every state transition that can race is a single conditional UPDATE, so
SQLite's statement atomicity is the only synchronization needed:
- lock acquisition only succeeds when no unexpired lock exists
- record commit and lock release only succeed for the lock holder
- reprocess reset only succeeds when no unexpired lock exists
"""

import sqlite3
import json
import logging
from contextlib import closing
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime

from .context.enums import ProcessingPhase, ErrorCategory
from .context.job import ProcessingJob
from .context.record import StructuredRecord

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent.parent / "data" / "records.db"


def _ts(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width timestamps so SQL string comparison orders them correctly
    return value.isoformat(timespec="microseconds") if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RecordStore:
    """
    SQLite-backed store for processing jobs and structured records.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------
    def _init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            cur = conn.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    document_id           TEXT PRIMARY KEY,
                    file_path             TEXT NOT NULL,
                    mime_type             TEXT,
                    report_type           TEXT,
                    -- Type the pipeline resolved; report_type is only the caller's hint
                    detected_report_type  TEXT,
                    parsing_status        TEXT NOT NULL DEFAULT 'pending',
                    processing_phase      TEXT,
                    progress_percentage   INTEGER NOT NULL DEFAULT 0,
                    retry_count           INTEGER NOT NULL DEFAULT 0,
                    processing_lock       TEXT,
                    lock_expires_at       TEXT,
                    processing_started_at TEXT,
                    processing_error      TEXT,
                    error_category        TEXT,
                    confidence            REAL,
                    extracted_text        TEXT,
                    -- Full StructuredRecord as JSON
                    parsed_data           TEXT,
                    created_at            TEXT NOT NULL,
                    updated_at            TEXT,
                    completed_at          TEXT
                )
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_status
                ON documents (parsing_status)
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_lock_expiry
                ON documents (lock_expires_at)
            """)
            conn.commit()
        logger.info(f"Record store initialized: {self.db_path}")

    def _execute(self, query: str, params: tuple) -> int:
        """Run a write statement, return the affected row count."""
        with closing(self._connect()) as conn:
            cur = conn.execute(query, params)
            conn.commit()
            return cur.rowcount

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def create(
        self,
        document_id: str,
        file_path: str,
        mime_type: Optional[str] = None,
        report_type: Optional[str] = None,
    ) -> ProcessingJob:
        """Register an uploaded document as a pending job. Existing rows are kept."""
        now = datetime.now()
        self._execute("""
            INSERT OR IGNORE INTO documents
                (document_id, file_path, mime_type, report_type,
                 parsing_status, processing_phase, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            document_id, file_path, mime_type, report_type,
            ProcessingPhase.PENDING.value, ProcessingPhase.PENDING.value,
            _ts(now), _ts(now),
        ))
        return self.get(document_id)

    def get(self, document_id: str) -> Optional[ProcessingJob]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(
        self,
        status: Optional[ProcessingPhase] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[ProcessingJob]:
        """List jobs, newest first."""
        query = "SELECT * FROM documents WHERE 1=1"
        params: list = []
        if status:
            query += " AND parsing_status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(r) for r in rows]

    def count(self, status: Optional[ProcessingPhase] = None) -> int:
        with closing(self._connect()) as conn:
            if status:
                row = conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE parsing_status = ?",
                    (status.value,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return row[0]

    def delete(self, document_id: str) -> bool:
        return self._execute(
            "DELETE FROM documents WHERE document_id = ?", (document_id,)
        ) > 0

    # ------------------------------------------------------------------
    # Lock (conditional updates)
    # ------------------------------------------------------------------
    def try_lock(
        self,
        document_id: str,
        token: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Take the lock if none is held or the held one expired."""
        return self._execute("""
            UPDATE documents
            SET processing_lock = ?,
                lock_expires_at = ?,
                processing_started_at = ?,
                parsing_status = ?,
                processing_phase = ?,
                updated_at = ?
            WHERE document_id = ?
              AND (processing_lock IS NULL
                   OR lock_expires_at IS NULL
                   OR lock_expires_at <= ?)
        """, (
            token, _ts(expires_at), _ts(now),
            ProcessingPhase.PROCESSING.value, ProcessingPhase.PROCESSING.value,
            _ts(now), document_id, _ts(now),
        )) == 1

    def extend_lock(self, document_id: str, token: str, expires_at: datetime) -> bool:
        return self._execute("""
            UPDATE documents SET lock_expires_at = ?, updated_at = ?
            WHERE document_id = ? AND processing_lock = ?
        """, (_ts(expires_at), _ts(datetime.now()), document_id, token)) == 1

    def release_lock(
        self,
        document_id: str,
        token: Optional[str],
        status: ProcessingPhase,
        error: Optional[str] = None,
        error_category: Optional[ErrorCategory] = None,
        retry_count: Optional[int] = None,
    ) -> bool:
        """
        Clear the lock and record the final status.

        With a token, only the holder may release. Without one the lock is
        cleared unconditionally (maintenance).
        """
        query = """
            UPDATE documents
            SET processing_lock = NULL,
                lock_expires_at = NULL,
                parsing_status = ?,
                processing_phase = ?,
                processing_error = ?,
                error_category = ?,
                retry_count = COALESCE(?, retry_count),
                updated_at = ?
            WHERE document_id = ?
        """
        params: list = [
            status.value, status.value, error,
            error_category.value if error_category else None,
            retry_count, _ts(datetime.now()), document_id,
        ]
        if token is not None:
            query += " AND processing_lock = ?"
            params.append(token)
        return self._execute(query, tuple(params)) == 1

    # ------------------------------------------------------------------
    # Progress / results
    # ------------------------------------------------------------------
    def update_progress(
        self,
        document_id: str,
        token: str,
        percentage: int,
        phase: Optional[str] = None,
    ) -> bool:
        return self._execute("""
            UPDATE documents
            SET progress_percentage = ?,
                processing_phase = COALESCE(?, processing_phase),
                updated_at = ?
            WHERE document_id = ? AND processing_lock = ?
        """, (percentage, phase, _ts(datetime.now()), document_id, token)) == 1

    def commit_record(
        self,
        document_id: str,
        token: str,
        record: StructuredRecord,
        retry_count: int,
        extracted_text: Optional[str] = None,
    ) -> bool:
        """
        Write the merged record, mark completed and release the lock in one
        statement. Returns False if the lock was lost (expired and taken).
        """
        now = _ts(datetime.now())
        return self._execute("""
            UPDATE documents
            SET parsed_data = ?,
                confidence = ?,
                extracted_text = COALESCE(?, extracted_text),
                detected_report_type = ?,
                parsing_status = ?,
                processing_phase = ?,
                progress_percentage = 100,
                retry_count = ?,
                processing_error = NULL,
                error_category = NULL,
                processing_lock = NULL,
                lock_expires_at = NULL,
                completed_at = ?,
                updated_at = ?
            WHERE document_id = ? AND processing_lock = ?
        """, (
            json.dumps(record.to_dict(), default=str),
            record.confidence,
            extracted_text,
            record.report_type,
            ProcessingPhase.COMPLETED.value,
            ProcessingPhase.COMPLETED.value,
            retry_count,
            now, now,
            document_id, token,
        )) == 1

    def reset_for_reprocess(self, document_id: str, now: datetime) -> bool:
        """Clear record, confidence, error and retries unless a live lock exists."""
        return self._execute("""
            UPDATE documents
            SET parsing_status = ?,
                processing_phase = ?,
                progress_percentage = 0,
                parsed_data = NULL,
                detected_report_type = NULL,
                confidence = NULL,
                processing_error = NULL,
                error_category = NULL,
                retry_count = 0,
                processing_lock = NULL,
                lock_expires_at = NULL,
                processing_started_at = NULL,
                completed_at = NULL,
                updated_at = ?
            WHERE document_id = ?
              AND (processing_lock IS NULL
                   OR lock_expires_at IS NULL
                   OR lock_expires_at <= ?)
        """, (
            ProcessingPhase.PENDING.value, ProcessingPhase.PENDING.value,
            _ts(now), document_id, _ts(now),
        )) == 1

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def clear_expired_locks(self, now: datetime) -> int:
        """Expired locks are dropped; their jobs become failed (timeout)."""
        return self._execute("""
            UPDATE documents
            SET processing_lock = NULL,
                lock_expires_at = NULL,
                parsing_status = CASE WHEN parsing_status = ? THEN ? ELSE parsing_status END,
                processing_phase = CASE WHEN parsing_status = ? THEN ? ELSE processing_phase END,
                processing_error = CASE WHEN parsing_status = ?
                    THEN 'Processing lock expired' ELSE processing_error END,
                error_category = CASE WHEN parsing_status = ? THEN ? ELSE error_category END,
                updated_at = ?
            WHERE processing_lock IS NOT NULL AND lock_expires_at <= ?
        """, (
            ProcessingPhase.PROCESSING.value, ProcessingPhase.FAILED.value,
            ProcessingPhase.PROCESSING.value, ProcessingPhase.FAILED.value,
            ProcessingPhase.PROCESSING.value,
            ProcessingPhase.PROCESSING.value, ErrorCategory.TIMEOUT.value,
            _ts(now), _ts(now),
        ))

    def reset_failed(self, now: datetime) -> List[str]:
        """Failed jobs back to pending with retries cleared. Returns their ids."""
        ids = self._ids_where("parsing_status = ?", (ProcessingPhase.FAILED.value,))
        if ids:
            self._execute("""
                UPDATE documents
                SET parsing_status = ?, processing_phase = ?, progress_percentage = 0,
                    processing_error = NULL, error_category = NULL,
                    processing_lock = NULL, lock_expires_at = NULL,
                    processing_started_at = NULL, retry_count = 0, updated_at = ?
                WHERE parsing_status = ?
            """, (
                ProcessingPhase.PENDING.value, ProcessingPhase.PENDING.value,
                _ts(now), ProcessingPhase.FAILED.value,
            ))
        return ids

    def reset_stuck(self, started_before: datetime, now: datetime) -> List[str]:
        """Jobs processing since before `started_before` back to pending."""
        where = "parsing_status = ? AND processing_started_at < ?"
        params = (ProcessingPhase.PROCESSING.value, _ts(started_before))
        ids = self._ids_where(where, params)
        if ids:
            self._execute(f"""
                UPDATE documents
                SET parsing_status = ?, processing_phase = ?, progress_percentage = 0,
                    processing_error = 'Reset due to stuck processing',
                    processing_lock = NULL, lock_expires_at = NULL,
                    processing_started_at = NULL, updated_at = ?
                WHERE {where}
            """, (
                ProcessingPhase.PENDING.value, ProcessingPhase.PENDING.value,
                _ts(now), *params,
            ))
        return ids

    def find_reprocess_candidates(self) -> List[str]:
        """Failed jobs, jobs without a record, and jobs holding a raw-response record."""
        with closing(self._connect()) as conn:
            rows = conn.execute("""
                SELECT document_id, parsing_status, parsed_data FROM documents
                WHERE parsing_status != ?
                ORDER BY created_at
            """, (ProcessingPhase.PROCESSING.value,)).fetchall()

        candidates = []
        for row in rows:
            if row["parsing_status"] == ProcessingPhase.FAILED.value or not row["parsed_data"]:
                candidates.append(row["document_id"])
                continue
            payload = json.loads(row["parsed_data"]).get("payload") or {}
            if "rawResponse" in payload:
                candidates.append(row["document_id"])
        return candidates

    def _ids_where(self, where: str, params: tuple) -> List[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT document_id FROM documents WHERE {where}", params
            ).fetchall()
        return [r["document_id"] for r in rows]

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> ProcessingJob:
        parsed = json.loads(row["parsed_data"]) if row["parsed_data"] else None
        return ProcessingJob(
            document_id=row["document_id"],
            file_path=row["file_path"],
            mime_type=row["mime_type"],
            report_type=row["report_type"],
            detected_report_type=row["detected_report_type"],
            phase=ProcessingPhase(row["parsing_status"]),
            progress_percentage=row["progress_percentage"] or 0,
            retry_count=row["retry_count"] or 0,
            lock_token=row["processing_lock"],
            lock_expires_at=_parse_ts(row["lock_expires_at"]),
            processing_started_at=_parse_ts(row["processing_started_at"]),
            last_error=row["processing_error"],
            error_category=ErrorCategory(row["error_category"]) if row["error_category"] else None,
            confidence=row["confidence"],
            record=StructuredRecord.from_dict(parsed) if parsed else None,
            extracted_text=row["extracted_text"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def raw_row(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Row as a plain dict (debugging / admin views)."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
        return dict(row) if row else None
