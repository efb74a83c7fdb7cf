# ============================================================================
# src/medical_processing/core/orchestrator.py
# ============================================================================
"""
Processing Controller

Main entry point for document processing.

Flow per attempt:
1. Download the document
2. OCR
3. Entities -> terminology validation, concurrently with LLM extraction
4. Merge + record validation
5. Commit record and release the lock in one conditional update

State machine: pending -> processing -> {completed | failed}; failed may
re-enter processing through reprocess().

Retryable failures (network, timeout, rate limit, 5xx) are retried with
exponential backoff up to MAX_RETRIES; permanent ones fail immediately.
Every exit path releases the lock and records retry count and error
category.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import get_config
from .context import ProcessingContext, ProcessingPhase, ProcessingResult, ErrorCategory
from .lock_manager import LockManager
from .record_store import RecordStore
from .retry import RetryPolicy, classify_error
from ..services.bundle import ServiceBundle, build_services
from ..stages import (
    EntityExtractionStage,
    LLMExtractionStage,
    OCRStage,
    RecordValidationStage,
    ResultMerger,
    TerminologyValidationStage,
)
from ..utils.exceptions import (
    AlreadyProcessingError,
    DocumentNotFoundError,
    ProcessingTimeoutError,
)
from ..utils.logging import document_logger, setup_logging

# Progress checkpoints persisted while an attempt runs
PROGRESS_DOWNLOADED = 10
PROGRESS_OCR = 35
PROGRESS_EXTRACTED = 75
PROGRESS_MERGED = 90


class ProcessingController:
    """
    Sequences the pipeline stages for one document at a time per document.

    Services are injected; the controller owns no API clients itself.
    """

    def __init__(
        self,
        store: RecordStore,
        services: ServiceBundle,
        config: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        # Passed config takes precedence over env defaults
        self.config = {**get_config(), **(config or {})}
        self.logger = logging.getLogger(__name__)

        self.store = store
        self.services = services
        self.sleep = sleep
        self.clock = clock

        self.locks = LockManager(store, self.config.get("lock_ttl_seconds", 600), clock)
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.timeout = self.config.get("processing_timeout_seconds", 90.0)
        self.stuck_minutes = self.config.get("stuck_processing_minutes", 20)

        self.ocr_stage = OCRStage(
            image_ocr=services.image_ocr,
            structured_ocr=services.structured_ocr,
            pdf_text=services.pdf_text,
            config=self.config,
        )
        self.entity_stage = EntityExtractionStage(services.entity_extractor, self.config)
        self.terminology_stage = TerminologyValidationStage(services.terminology, self.config)
        self.llm_stage = LLMExtractionStage(services.llm, self.config)
        self.merger = ResultMerger(self.config)
        self.record_validator = RecordValidationStage(self.config)

        self.logger.info(
            f"ProcessingController initialized (timeout={self.timeout}s, "
            f"max_retries={self.retry_policy.max_retries})"
        )

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "ProcessingController":
        """Production wiring: SQLite store + real service adapters."""
        config = {**get_config(), **(config or {})}
        setup_logging(
            level=config.get("log_level", "INFO"),
            log_file=config.get("log_file"),
            format_json=config.get("log_json", False),
        )
        store = RecordStore(Path(config.get("record_db_path", "data/records.db")))
        return cls(store, build_services(config), config)

    # ========================================================================
    # MAIN ENTRY POINTS
    # ========================================================================

    async def process(self, document_id: str, language_hint: Optional[str] = None) -> ProcessingResult:
        """
        Process one document end to end.

        Fails fast (without touching the record) if another run holds the
        document lock.
        """
        start = time.time()
        log = document_logger(self.logger, document_id)

        job = self.store.get(document_id)
        if job is None:
            error = DocumentNotFoundError(document_id)
            return ProcessingResult(
                success=False,
                document_id=document_id,
                status=ProcessingPhase.FAILED,
                error=str(error),
                error_category=error.category,
            )

        token = self.locks.acquire(document_id)
        if token is None:
            error = AlreadyProcessingError(document_id)
            log.warning("Skipping: document is already processing")
            return ProcessingResult(
                success=False,
                document_id=document_id,
                status=job.phase,
                error=str(error),
                error_category=error.category,
                retryable=True,
                processing_time=time.time() - start,
            )

        retries = 0
        attempt = 0
        try:
            while True:
                attempt += 1
                if attempt > 1 and not self.locks.refresh(document_id, token):
                    return self._lock_lost(document_id, attempt, start, log)

                try:
                    context = await asyncio.wait_for(
                        self._run_attempt(job, token, attempt, language_hint),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    if isinstance(e, asyncio.TimeoutError):
                        e = ProcessingTimeoutError(f"Processing exceeded {self.timeout}s")
                    category, retryable = classify_error(e)

                    if self.retry_policy.should_retry(retryable, retries):
                        retries += 1
                        delay = self.retry_policy.backoff(retries)
                        log.warning(
                            f"Attempt {attempt} failed ({category.value}): {e}. "
                            f"Retrying in {delay:.1f}s ({retries}/{self.retry_policy.max_retries})"
                        )
                        await self.sleep(delay)
                        continue

                    log.error(f"Processing failed after {attempt} attempt(s) ({category.value}): {e}")
                    self.locks.release(
                        document_id,
                        ProcessingPhase.FAILED,
                        token,
                        error=str(e),
                        error_category=category,
                        retry_count=retries,
                    )
                    return ProcessingResult(
                        success=False,
                        document_id=document_id,
                        status=ProcessingPhase.FAILED,
                        attempts=attempt,
                        error=str(e),
                        error_category=category,
                        retryable=retryable,
                        processing_time=time.time() - start,
                    )

                record = context.record
                if not self.store.commit_record(document_id, token, record, retries, context.text):
                    return self._lock_lost(document_id, attempt, start, log)

                log.info(
                    f"Completed as {record.report_type} in {time.time() - start:.2f}s "
                    f"(confidence: {record.confidence:.2f}, attempts: {attempt})"
                )
                return ProcessingResult(
                    success=True,
                    document_id=document_id,
                    status=ProcessingPhase.COMPLETED,
                    record=record,
                    confidence=record.confidence,
                    attempts=attempt,
                    processing_time=time.time() - start,
                )
        except BaseException:
            # Cancelled or crashed outside the attempt handler
            self.locks.release(
                document_id,
                ProcessingPhase.FAILED,
                token,
                error="Processing interrupted",
                error_category=ErrorCategory.UNKNOWN,
                retry_count=retries,
            )
            raise

    async def reprocess(self, document_id: str, language_hint: Optional[str] = None) -> ProcessingResult:
        """
        Reset the stored record and status, then process from scratch.

        Raises:
            DocumentNotFoundError: unknown document
            AlreadyProcessingError: a live lock is held
        """
        if not self.store.reset_for_reprocess(document_id, self.clock()):
            if self.store.get(document_id) is None:
                raise DocumentNotFoundError(document_id)
            raise AlreadyProcessingError(document_id)

        self.logger.info(f"Reprocessing document {document_id}")
        return await self.process(document_id, language_hint)

    # ========================================================================
    # ATTEMPT
    # ========================================================================

    async def _run_attempt(
        self,
        job,
        token: str,
        attempt: int,
        language_hint: Optional[str],
    ) -> ProcessingContext:
        context = ProcessingContext(
            document_id=job.document_id,
            file_path=job.file_path,
            mime_type=job.mime_type,
            language_hint=language_hint,
            report_type_hint=job.report_type,
            attempt=attempt,
        )

        context.file_bytes = await self.services.storage.download(job.file_path)
        self._progress(context, token, PROGRESS_DOWNLOADED, "downloaded")

        await self.ocr_stage.run(context)
        self._progress(context, token, PROGRESS_OCR, "ocr_complete")

        await self._run_extraction(context)
        self._progress(context, token, PROGRESS_EXTRACTED, "extraction_complete")

        await self.merger.run(context)
        await self.record_validator.run(context)
        self._progress(context, token, PROGRESS_MERGED, "merged")

        context.record.processing_pipeline = [e["stage"] for e in context.stage_executions]
        context.record.stage_timings = dict(context.stage_timings)
        return context

    async def _run_extraction(self, context: ProcessingContext):
        """Entity -> terminology branch and LLM branch run concurrently."""
        async def entity_branch():
            await self.entity_stage.run(context)
            await self.terminology_stage.run(context)

        tasks = [
            asyncio.ensure_future(entity_branch()),
            asyncio.ensure_future(self.llm_stage.run(context)),
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            raise

    def _progress(self, context: ProcessingContext, token: str, percentage: int, phase: str):
        if not self.store.update_progress(context.document_id, token, percentage, phase):
            self.logger.warning(f"Progress update for {context.document_id} skipped: lock not held")

    def _lock_lost(self, document_id: str, attempt: int, start: float, log) -> ProcessingResult:
        log.error("Processing lock was lost; result discarded")
        return ProcessingResult(
            success=False,
            document_id=document_id,
            status=ProcessingPhase.FAILED,
            attempts=attempt,
            error="Processing lock lost before commit",
            error_category=ErrorCategory.ALREADY_PROCESSING,
            retryable=True,
            processing_time=time.time() - start,
        )

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def cleanup_expired_locks(self) -> int:
        return self.locks.cleanup_expired()

    def reset_failed(self) -> List[str]:
        """Failed documents back to pending with retry counts cleared."""
        ids = self.store.reset_failed(self.clock())
        self.logger.info(f"Reset {len(ids)} failed documents")
        return ids

    def reset_stuck(self) -> List[str]:
        """Documents processing longer than STUCK_PROCESSING_MINUTES back to pending."""
        now = self.clock()
        ids = self.store.reset_stuck(now - timedelta(minutes=self.stuck_minutes), now)
        if ids:
            self.logger.warning(f"Reset {len(ids)} stuck documents: {ids}")
        return ids

    async def reprocess_all(self, concurrency: int = 4) -> List[ProcessingResult]:
        """
        Reprocess every failed document, document without a record, and
        document holding a raw-response record.
        """
        candidates = self.store.find_reprocess_candidates()
        self.logger.info(f"Reprocessing {len(candidates)} documents")
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run_one(document_id: str) -> Optional[ProcessingResult]:
            async with semaphore:
                try:
                    return await self.reprocess(document_id)
                except AlreadyProcessingError:
                    self.logger.info(f"Skipping {document_id}: already processing")
                    return None

        results = await asyncio.gather(*(run_one(doc_id) for doc_id in candidates))
        return [r for r in results if r is not None]
