# ============================================================================
# src/medical_processing/services/terminology.py
# ============================================================================
"""
Local terminology validation against the bundled vocabularies.

Scoring starts at 0.5 and adds per-vocabulary bonuses depending on the
entity category:

    medical condition   SNOMED +0.3, ICD-10 +0.2
    medication          RxNorm +0.4
    test / treatment    LOINC +0.3, SNOMED +0.2 (SNOMED alone is not valid)
    procedure           CPT +0.4

Unvalidated entities get up to three partial-match suggestions.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .base import TerminologyValidator
from ..constants.terminology import (
    ALL_TERMS,
    CPT_CODES,
    ICD10_CODES,
    LOINC_CODES,
    RXNORM_CODES,
    SNOMED_CODES,
    normalize_term,
)
from ..core.context.extraction import (
    TerminologyResult,
    TerminologyValidation,
    ValidationSummary,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.5
MAX_SUGGESTIONS = 3

CONDITION_CATEGORIES = {"medical_condition", "dx_name"}
MEDICATION_CATEGORIES = {"medication", "generic_name", "brand_name"}
TEST_CATEGORIES = {"test_treatment_procedure", "test_name"}
PROCEDURE_CATEGORIES = {"procedure", "procedure_name"}


def _rule_key(entity: Dict[str, Any]) -> str:
    """Category decides the rule; fall back to the entity type."""
    category = (entity.get("category") or "").lower()
    known = CONDITION_CATEGORIES | MEDICATION_CATEGORIES | TEST_CATEGORIES | PROCEDURE_CATEGORIES
    if category in known:
        return category
    return (entity.get("type") or "").lower()


def suggest_terms(normalized: str, limit: int = MAX_SUGGESTIONS) -> List[str]:
    if not normalized:
        return []
    matches = [
        term for term in ALL_TERMS
        if normalized in term or term in normalized
    ]
    return matches[:limit]


def validate_entity(entity: Dict[str, Any]) -> TerminologyValidation:
    text = entity.get("text") or ""
    category = entity.get("category") or ""
    normalized = normalize_term(text)
    rule = _rule_key(entity)

    codes: Dict[str, str] = {}
    confidence = BASE_CONFIDENCE
    is_valid = False

    if rule in CONDITION_CATEGORIES:
        if normalized in SNOMED_CODES:
            codes["snomed"] = SNOMED_CODES[normalized]
            confidence += 0.3
            is_valid = True
        if normalized in ICD10_CODES:
            codes["icd10"] = ICD10_CODES[normalized]
            confidence += 0.2
            is_valid = True

    elif rule in MEDICATION_CATEGORIES:
        if normalized in RXNORM_CODES:
            codes["rxnorm"] = RXNORM_CODES[normalized]
            confidence += 0.4
            is_valid = True

    elif rule in TEST_CATEGORIES:
        if normalized in LOINC_CODES:
            codes["loinc"] = LOINC_CODES[normalized]
            confidence += 0.3
            is_valid = True
        if normalized in SNOMED_CODES:
            codes["snomed"] = SNOMED_CODES[normalized]
            confidence += 0.2

    elif rule in PROCEDURE_CATEGORIES:
        if normalized in CPT_CODES:
            codes["cpt"] = CPT_CODES[normalized]
            confidence += 0.4
            is_valid = True

    return TerminologyValidation(
        original_text=text,
        normalized_text=normalized,
        category=category,
        codes=codes,
        confidence=min(confidence, 1.0),
        is_valid=is_valid,
        suggestions=[] if is_valid else suggest_terms(normalized),
    )


class LocalTerminologyValidator(TerminologyValidator):

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    async def validate(self, entities: List[Dict[str, Any]]) -> TerminologyResult:
        start = time.time()
        validations = [validate_entity(entity) for entity in entities]
        valid = sum(1 for v in validations if v.is_valid)

        summary = ValidationSummary(
            total_entities=len(entities),
            valid_entities=valid,
            validation_rate=valid / len(entities) if entities else 0.0,
            processing_time=time.time() - start,
        )
        logger.info(f"Terminology validated {valid}/{len(entities)} entities")
        return TerminologyResult(validations=validations, summary=summary)
