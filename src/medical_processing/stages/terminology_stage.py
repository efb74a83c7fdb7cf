# ============================================================================
# src/medical_processing/stages/terminology_stage.py
# ============================================================================
"""
Terminology Validation Stage

Maps extracted entities to coding systems. Validations are positionally
aligned with context.entities.entities: validated_entities[i] always
describes entities[i].

Failure is non-fatal. If the validator raises or returns a list of the
wrong length, every entity is kept as unvalidated and the summary carries
the error.
"""

from typing import Any, Dict, List, Optional

from ..core.stage_base import Stage
from ..core.context import (
    ProcessingContext,
    ExtractedEntity,
    TerminologyValidation,
    ValidatedEntity,
    ValidationSummary,
)
from ..services.base import TerminologyValidator


def align_validations(
    entities: List[ExtractedEntity],
    validations: List[TerminologyValidation],
) -> List[ValidatedEntity]:
    if len(validations) != len(entities):
        raise ValueError(
            f"Validator returned {len(validations)} results for {len(entities)} entities"
        )
    return [
        ValidatedEntity(
            entity=entity,
            normalized_text=validation.normalized_text,
            codes=dict(validation.codes),
            validation_confidence=validation.confidence,
            is_valid=validation.is_valid,
            suggestions=list(validation.suggestions),
        )
        for entity, validation in zip(entities, validations)
    ]


def unvalidated_entities(entities: List[ExtractedEntity]) -> List[ValidatedEntity]:
    return [
        ValidatedEntity(entity=entity, normalized_text=entity.text)
        for entity in entities
    ]


class TerminologyValidationStage(Stage):

    FATAL = False

    def __init__(self, validator: TerminologyValidator, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.validator = validator

    def get_name(self) -> str:
        return "TerminologyValidationStage"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        entities = context.entities.entities if context.entities else []
        if not entities:
            context.validated_entities = []
            context.validation_summary = ValidationSummary()
            return {"decision": "skipped", "confidence": 0.0, "validated": 0}

        request = [
            {"text": e.text, "category": e.category, "type": e.type}
            for e in entities
        ]

        try:
            result = await self.validator.validate(request)
            context.validated_entities = align_validations(entities, result.validations)
            context.validation_summary = result.summary
        except Exception as e:
            self.logger.warning(f"Terminology validation failed for {context.document_id}: {e}")
            context.add_warning(f"Terminology validation failed: {e}")
            context.validated_entities = unvalidated_entities(entities)
            context.validation_summary = ValidationSummary(
                total_entities=len(entities),
                error=str(e),
            )
            return {
                "decision": "degraded",
                "confidence": 0.0,
                "validated": 0,
                "error": str(e),
            }

        summary = context.validation_summary
        return {
            "decision": "validated",
            "confidence": summary.validation_rate,
            "validated": summary.valid_entities,
            "total": summary.total_entities,
        }
