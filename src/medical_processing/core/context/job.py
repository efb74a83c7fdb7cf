# ============================================================================
# src/medical_processing/core/context/job.py
# ============================================================================
"""
ProcessingJob / ProcessingResult
- Persisted per-document processing state (phase, retries, lock, last error)
- Outcome returned to callers of process()
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .enums import ProcessingPhase, ErrorCategory
from .record import StructuredRecord


@dataclass
class ProcessingJob:
    document_id: str
    file_path: str
    mime_type: Optional[str] = None
    report_type: Optional[str] = None  # hint from upload, e.g. "lab_results"
    detected_report_type: Optional[str] = None  # resolved by the last completed run
    phase: ProcessingPhase = ProcessingPhase.PENDING
    progress_percentage: int = 0
    retry_count: int = 0

    lock_token: Optional[str] = None
    lock_expires_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None

    last_error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None

    confidence: Optional[float] = None
    record: Optional[StructuredRecord] = None
    extracted_text: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (ProcessingPhase.COMPLETED, ProcessingPhase.FAILED)

    def lock_active(self, now: Optional[datetime] = None) -> bool:
        """True if a lock is held and has not expired."""
        if not self.lock_token or self.lock_expires_at is None:
            return False
        return self.lock_expires_at > (now or datetime.now())


@dataclass
class ProcessingResult:
    success: bool
    document_id: str
    status: ProcessingPhase
    record: Optional[StructuredRecord] = None
    confidence: float = 0.0
    attempts: int = 0
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    retryable: bool = False
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "document_id": self.document_id,
            "status": self.status.value,
            "record": self.record.to_dict() if self.record else None,
            "confidence": self.confidence,
            "attempts": self.attempts,
            "error": self.error,
            "error_category": self.error_category.value if self.error_category else None,
            "retryable": self.retryable,
            "processing_time": self.processing_time,
        }
