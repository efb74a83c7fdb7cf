# ============================================================================
# src/medical_processing/core/context/processing_context.py
# ============================================================================
"""
ProcessingContext
- Main context object passed between all stages of one processing attempt
- Tracks stage outputs, warnings and the stage execution trail
- Discarded when an attempt fails; only the merged record is persisted
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional

from .extraction import (
    OCRResult,
    EntityExtraction,
    ValidatedEntity,
    ValidationSummary,
)
from .record import StructuredRecord


@dataclass
class ProcessingContext:
    document_id: str
    file_path: str
    mime_type: Optional[str] = None
    language_hint: Optional[str] = None
    report_type_hint: Optional[str] = None
    attempt: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    file_bytes: bytes = b""

    # Stage outputs
    ocr: Optional[OCRResult] = None
    entities: Optional[EntityExtraction] = None
    validated_entities: List[ValidatedEntity] = field(default_factory=list)
    validation_summary: Optional[ValidationSummary] = None

    report_type: Optional[str] = None
    llm_payload: Dict[str, Any] = field(default_factory=dict)
    llm_confidence: float = 0.0
    llm_degraded: bool = False

    record: Optional[StructuredRecord] = None

    warnings: List[str] = field(default_factory=list)
    stage_executions: List[Dict[str, Any]] = field(default_factory=list)
    stage_timings: Dict[str, float] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.ocr.text if self.ocr else ""

    @property
    def ocr_confidence(self) -> float:
        return self.ocr.confidence if self.ocr else 0.0

    def add_warning(self, message: str):
        self.warnings.append(message)

    def log_stage_execution(self, stage_name: str, decision: Dict[str, Any]):
        """Append to the per-attempt stage trail."""
        self.stage_executions.append({
            "stage": stage_name,
            "timestamp": datetime.now().isoformat(),
            **decision,
        })
        if "duration_seconds" in decision:
            self.stage_timings[stage_name] = decision["duration_seconds"]
