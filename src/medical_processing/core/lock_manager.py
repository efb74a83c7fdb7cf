# ============================================================================
# src/medical_processing/core/lock_manager.py
# ============================================================================
"""
Per-document processing lock.

The lock lives in the record store row (processing_lock + lock_expires_at),
so it is shared by every worker using the same database. Locks expire after
a TTL so a crashed worker cannot block a document forever.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from .context.enums import ProcessingPhase, ErrorCategory
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class LockManager:

    def __init__(
        self,
        store: RecordStore,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    @staticmethod
    def new_token() -> str:
        return uuid.uuid4().hex

    def acquire(self, document_id: str, token: Optional[str] = None) -> Optional[str]:
        """
        Take the lock for a document.

        Returns the lock token on success, None if an unexpired lock is held
        (or the document does not exist).
        """
        token = token or self.new_token()
        now = self.clock()
        if self.store.try_lock(document_id, token, now + self.ttl, now):
            logger.debug(f"Lock acquired for {document_id}")
            return token
        logger.info(f"Lock for {document_id} is already held")
        return None

    def refresh(self, document_id: str, token: str) -> bool:
        """Push the expiry forward; False if the lock is no longer ours."""
        return self.store.extend_lock(document_id, token, self.clock() + self.ttl)

    def release(
        self,
        document_id: str,
        final_status: ProcessingPhase,
        token: Optional[str] = None,
        error: Optional[str] = None,
        error_category: Optional[ErrorCategory] = None,
        retry_count: Optional[int] = None,
    ) -> bool:
        released = self.store.release_lock(
            document_id,
            token,
            final_status,
            error=error,
            error_category=error_category,
            retry_count=retry_count,
        )
        if not released:
            logger.warning(f"Lock for {document_id} was not held by this run at release")
        return released

    def cleanup_expired(self) -> int:
        cleared = self.store.clear_expired_locks(self.clock())
        if cleared:
            logger.info(f"Cleared {cleared} expired processing locks")
        return cleared
