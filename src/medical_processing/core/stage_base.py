# ============================================================================
# src/medical_processing/core/stage_base.py
# ============================================================================
"""
Abstract Base Stage Class

Every pipeline stage (OCR, entities, terminology, LLM extraction, merge)
inherits from this base class.

Every stage must implement:
- execute(context): Main processing logic
- get_name(): Stage identifier

Every stage gets:
- Logging
- Timing + stage execution trail
- Error handling that depends on whether the stage is fatal
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import logging
from datetime import datetime

from .context.processing_context import ProcessingContext
from .config import get_config


class Stage(ABC):
    """
    Abstract base class for all processing stages.

    FATAL stages re-raise so the controller can classify and retry.
    Non-fatal stages degrade: the failure becomes a warning and the
    stage result carries confidence 0.0.
    """

    FATAL: bool = True

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        # Passed config takes precedence over env defaults
        env_config = get_config()
        self.config = {**env_config, **(config or {})}
        self.logger = logging.getLogger(f"{__name__}.{self.get_name()}")

    @abstractmethod
    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        """
        Main stage logic. Reads from and writes to the context.

        Returns:
            Dict with at least:
                - confidence: stage confidence (0.0-1.0)
                - decision: short description of the outcome
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    async def run(self, context: ProcessingContext) -> Dict[str, Any]:
        """
        Wrapper around execute() that handles logging, timing, and errors.

        Called by the controller, not execute() directly.
        """
        stage_name = self.get_name()
        start_time = datetime.now()

        self.logger.info(f"Executing {stage_name} for document {context.document_id}")

        try:
            result = await self.execute(context)

            duration = (datetime.now() - start_time).total_seconds()

            context.log_stage_execution(
                stage_name=stage_name,
                decision={**result, "duration_seconds": duration}
            )

            self.logger.info(
                f"{stage_name} completed in {duration:.2f}s "
                f"(confidence: {result.get('confidence', 0.0):.2f})"
            )
            return result

        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()

            context.log_stage_execution(
                stage_name=stage_name,
                decision={"error": str(e), "duration_seconds": duration}
            )

            if self.FATAL:
                self.logger.error(f"{stage_name} failed: {e}")
                raise

            self.logger.warning(f"{stage_name} failed, continuing degraded: {e}", exc_info=True)
            context.add_warning(f"{stage_name} failed: {e}")
            return {
                "decision": "error",
                "confidence": 0.0,
                "error": str(e),
            }

