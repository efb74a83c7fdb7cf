# ============================================================================
# src/medical_processing/stages/record_validator.py
# ============================================================================
"""
Record Validation Stage

Completeness checks per report type on the merged record. Errors halve
the record confidence, warnings take off 20%. Also attaches smart tags
and quality metrics. Runs after the merger, before the commit.
"""

from typing import Any, Dict, List, Tuple

from ..core.confidence import ConfidenceCalculator
from ..core.context import ProcessingContext
from ..core.stage_base import Stage
from ..schemas import VITAL_TYPES
from .tagging import generate_smart_tags, quality_metrics


def _validate_lab(payload: Dict[str, Any], errors: List[str], warnings: List[str]):
    tests = list(payload.get("tests", []))
    for panel in payload.get("testPanels", []):
        tests.extend(panel.get("tests", []))
    if not tests:
        errors.append("No test results found")
        return
    for index, test in enumerate(tests):
        if not test.get("name"):
            errors.append(f"Test {index + 1}: missing name")
        elif not test.get("value"):
            warnings.append(f"Test {test['name']}: missing value")


def _validate_prescription(payload: Dict[str, Any], errors: List[str], warnings: List[str]):
    medications = payload.get("medications", [])
    if not medications:
        errors.append("No medications found")
        return
    for index, medication in enumerate(medications):
        name = medication.get("name")
        if not name:
            errors.append(f"Medication {index + 1}: missing name")
            continue
        if not medication.get("dosage") and not medication.get("strength"):
            warnings.append(f"Medication {name}: missing dosage")
        if not medication.get("frequency"):
            warnings.append(f"Medication {name}: missing frequency")


def _validate_radiology(payload: Dict[str, Any], errors: List[str], warnings: List[str]):
    if not payload.get("findings"):
        warnings.append("Missing findings")
    if not payload.get("impression"):
        warnings.append("Missing impression")


def _validate_vitals(payload: Dict[str, Any], errors: List[str], warnings: List[str]):
    vitals = payload.get("vitals", [])
    if not vitals:
        errors.append("No vital signs found")
        return
    for index, reading in enumerate(vitals):
        vital_type = reading.get("type")
        if not vital_type or not reading.get("value"):
            errors.append(f"Vital {index + 1}: missing type or value")
        elif vital_type not in VITAL_TYPES:
            warnings.append(f"Unknown vital type: {vital_type}")


def _validate_general(payload: Dict[str, Any], errors: List[str], warnings: List[str]):
    if not payload.get("sections"):
        warnings.append("No document sections found")


VALIDATORS = {
    "lab": _validate_lab,
    "prescription": _validate_prescription,
    "radiology": _validate_radiology,
    "vitals": _validate_vitals,
    "general": _validate_general,
}


def validate_record(report_type: str, payload: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """
    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if "rawResponse" in payload:
        warnings.append("Structured extraction unavailable, raw model response stored")
        return errors, warnings

    VALIDATORS.get(report_type, _validate_general)(payload, errors, warnings)
    return errors, warnings


class RecordValidationStage(Stage):

    def get_name(self) -> str:
        return "RecordValidationStage"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        record = context.record
        if record is None:
            raise ValueError("RecordValidationStage requires a merged record")

        errors, warnings = validate_record(record.report_type, record.payload)
        record.validation_errors = errors
        record.validation_warnings = warnings
        record.confidence = ConfidenceCalculator.apply_validation_penalty(
            record.confidence, errors, warnings
        )

        record.tags = generate_smart_tags(record.report_type, record.payload)
        record.quality = quality_metrics(
            record.report_type,
            record.payload,
            context.validated_entities,
            context.validation_summary,
            record.confidence,
        )

        if errors:
            self.logger.warning(f"Record for {context.document_id} has {len(errors)} validation errors")

        return {
            "decision": "invalid" if errors else "valid",
            "confidence": record.confidence,
            "errors": len(errors),
            "warnings": len(warnings),
        }
