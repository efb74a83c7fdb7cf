# ============================================================================
# src/medical_processing/core/context/record.py
# ============================================================================
"""
StructuredRecord
- Final merged output persisted for a document
- Overwritten on reprocessing, written all-or-nothing
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class StructuredRecord:
    report_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    document_name: Optional[str] = None

    patient: Dict[str, Any] = field(default_factory=dict)
    provider: Dict[str, Any] = field(default_factory=dict)
    facility: Dict[str, Any] = field(default_factory=dict)

    confidence: float = 0.0
    stage_confidence: Dict[str, float] = field(default_factory=dict)

    # Payload key -> stages that contributed items to it
    provenance: Dict[str, List[str]] = field(default_factory=dict)

    entities: List[Dict[str, Any]] = field(default_factory=list)
    relationships: List[Dict[str, Any]] = field(default_factory=list)

    quality: Dict[str, float] = field(default_factory=dict)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    degraded: bool = False
    processing_pipeline: List[str] = field(default_factory=list)
    stage_timings: Dict[str, float] = field(default_factory=dict)
    extracted_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_raw(self) -> bool:
        return "rawResponse" in self.payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reportType": self.report_type,
            "documentName": self.document_name,
            "payload": self.payload,
            "patient": self.patient,
            "provider": self.provider,
            "facility": self.facility,
            "confidence": self.confidence,
            "stageConfidence": self.stage_confidence,
            "provenance": self.provenance,
            "entities": self.entities,
            "relationships": self.relationships,
            "quality": self.quality,
            "validationErrors": self.validation_errors,
            "validationWarnings": self.validation_warnings,
            "tags": self.tags,
            "degraded": self.degraded,
            "processingPipeline": self.processing_pipeline,
            "stageTimings": self.stage_timings,
            "extractedAt": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuredRecord":
        return cls(
            report_type=data.get("reportType", "general"),
            document_name=data.get("documentName"),
            payload=data.get("payload") or {},
            patient=data.get("patient") or {},
            provider=data.get("provider") or {},
            facility=data.get("facility") or {},
            confidence=data.get("confidence", 0.0),
            stage_confidence=data.get("stageConfidence") or {},
            provenance=data.get("provenance") or {},
            entities=data.get("entities") or [],
            relationships=data.get("relationships") or [],
            quality=data.get("quality") or {},
            validation_errors=data.get("validationErrors") or [],
            validation_warnings=data.get("validationWarnings") or [],
            tags=data.get("tags") or [],
            degraded=data.get("degraded", False),
            processing_pipeline=data.get("processingPipeline") or [],
            stage_timings=data.get("stageTimings") or {},
            extracted_at=data.get("extractedAt") or datetime.now().isoformat(),
        )
