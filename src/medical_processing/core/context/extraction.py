# ============================================================================
# src/medical_processing/core/context/extraction.py
# ============================================================================
"""
Stage outputs
- OCR: text, tables, forms, extraction metadata
- Entity stage: typed entities with attributes and relationships
- Terminology stage: per-entity validation, positionally aligned
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


# ============================================================================
# OCR
# ============================================================================

@dataclass
class ExtractedTable:
    """A table found by a structured OCR engine. headers = first row."""
    headers: List[str]
    rows: List[List[str]]
    confidence: float = 0.9
    # Cell confidences keyed "row:col" (row 0 = header row)
    cell_confidence: Dict[str, float] = field(default_factory=dict)

    def get_cell_confidence(self, row: int, col: int, default: float = 0.8) -> float:
        return self.cell_confidence.get(f"{row}:{col}", default)


@dataclass
class FormField:
    """A key/value pair from a form region."""
    key: str
    value: str
    confidence: float = 0.9


@dataclass
class OCRResult:
    text: str
    confidence: float = 0.0
    tables: List[ExtractedTable] = field(default_factory=list)
    forms: List[FormField] = field(default_factory=list)
    extraction_method: str = "unknown"
    page_count: int = 1
    detected_language: Optional[str] = None
    processing_time: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def structured_data_found(self) -> bool:
        return bool(self.tables or self.forms)

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "extractionMethod": self.extraction_method,
            "structuredDataFound": self.structured_data_found,
            "pageCount": self.page_count,
            "detectedLanguage": self.detected_language,
            "textLength": len(self.text),
            "processingTime": self.processing_time,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "tables": [asdict(t) for t in self.tables],
            "forms": [asdict(f) for f in self.forms],
            "metadata": self.metadata,
        }


# ============================================================================
# Medical entities
# ============================================================================

@dataclass
class EntityAttribute:
    """Attribute linked to an entity (dosage, frequency, test value...)."""
    type: str
    text: str
    score: float = 0.0
    relationship_score: Optional[float] = None
    begin_offset: Optional[int] = None
    end_offset: Optional[int] = None


@dataclass
class ExtractedEntity:
    text: str
    category: str
    type: str
    confidence: float
    begin_offset: Optional[int] = None
    end_offset: Optional[int] = None
    id: Optional[int] = None
    attributes: List[EntityAttribute] = field(default_factory=list)
    traits: List[Dict[str, Any]] = field(default_factory=list)

    def get_attribute(self, attribute_type: str) -> Optional[EntityAttribute]:
        for attribute in self.attributes:
            if attribute.type == attribute_type:
                return attribute
        return None


@dataclass
class EntityRelationship:
    """Link between two entities (e.g. MEDICATION_DOSAGE)."""
    type: str
    score: float
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    target_text: Optional[str] = None


@dataclass
class EntityExtraction:
    entities: List[ExtractedEntity] = field(default_factory=list)
    relationships: List[EntityRelationship] = field(default_factory=list)
    confidence: float = 0.0
    model_version: Optional[str] = None
    processing_time: float = 0.0


# ============================================================================
# Terminology
# ============================================================================

@dataclass
class TerminologyValidation:
    original_text: str
    normalized_text: str
    category: str
    codes: Dict[str, str] = field(default_factory=dict)
    confidence: float = 0.0
    is_valid: bool = False
    suggestions: List[str] = field(default_factory=list)

    @classmethod
    def unvalidated(cls, text: str, category: str) -> "TerminologyValidation":
        """Placeholder used when validation failed for an entity."""
        return cls(original_text=text, normalized_text=text, category=category)


@dataclass
class ValidationSummary:
    total_entities: int = 0
    valid_entities: int = 0
    validation_rate: float = 0.0
    processing_time: float = 0.0
    error: Optional[str] = None


@dataclass
class TerminologyResult:
    validations: List[TerminologyValidation] = field(default_factory=list)
    summary: ValidationSummary = field(default_factory=ValidationSummary)


@dataclass
class ValidatedEntity:
    """ExtractedEntity enriched with terminology validation."""
    entity: ExtractedEntity
    normalized_text: str
    codes: Dict[str, str] = field(default_factory=dict)
    validation_confidence: float = 0.0
    is_valid: bool = False
    suggestions: List[str] = field(default_factory=list)

    # Convenience passthroughs used by the merger
    @property
    def text(self) -> str:
        return self.entity.text

    @property
    def type(self) -> str:
        return self.entity.type

    @property
    def category(self) -> str:
        return self.entity.category

    @property
    def confidence(self) -> float:
        return self.entity.confidence

    @property
    def begin_offset(self) -> Optional[int]:
        return self.entity.begin_offset

    @property
    def end_offset(self) -> Optional[int]:
        return self.entity.end_offset

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.entity.text,
            "category": self.entity.category,
            "type": self.entity.type,
            "confidence": self.entity.confidence,
            "beginOffset": self.entity.begin_offset,
            "endOffset": self.entity.end_offset,
            "attributes": [asdict(a) for a in self.entity.attributes],
            "normalizedText": self.normalized_text,
            "codes": dict(self.codes),
            "validationConfidence": self.validation_confidence,
            "isValid": self.is_valid,
            "suggestions": list(self.suggestions),
        }
