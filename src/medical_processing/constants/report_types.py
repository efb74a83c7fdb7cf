# ============================================================================
# src/medical_processing/constants/report_types.py
# ============================================================================
"""
Report Types
- Supported report types for structured extraction
- Aliases accepted on uploaded documents
- Keyword / header patterns for text classification
"""

from enum import Enum
from typing import Optional


class ReportType(str, Enum):
    """
    Report types with their own extraction prompt and payload schema.
    """
    LAB = "lab"
    PRESCRIPTION = "prescription"
    RADIOLOGY = "radiology"
    VITALS = "vitals"
    GENERAL = "general"


REPORT_TYPE_ALIASES = {
    "lab": ReportType.LAB,
    "labs": ReportType.LAB,
    "lab_results": ReportType.LAB,
    "lab_result": ReportType.LAB,
    "laboratory": ReportType.LAB,
    "blood_test": ReportType.LAB,
    "prescription": ReportType.PRESCRIPTION,
    "prescriptions": ReportType.PRESCRIPTION,
    "pharmacy": ReportType.PRESCRIPTION,
    "medication": ReportType.PRESCRIPTION,
    "medications": ReportType.PRESCRIPTION,
    "radiology": ReportType.RADIOLOGY,
    "imaging": ReportType.RADIOLOGY,
    "xray": ReportType.RADIOLOGY,
    "x_ray": ReportType.RADIOLOGY,
    "vitals": ReportType.VITALS,
    "vital_signs": ReportType.VITALS,
    "general": ReportType.GENERAL,
    "consultation": ReportType.GENERAL,
    "discharge_summary": ReportType.GENERAL,
    "progress_note": ReportType.GENERAL,
}


def resolve_report_type(value: Optional[str]) -> Optional[ReportType]:
    """Map a stored report type (any alias, any case) to a ReportType."""
    if not value:
        return None
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    return REPORT_TYPE_ALIASES.get(key)


# Classification patterns. GENERAL is the fallback and has none.
REPORT_TYPE_PATTERNS = {
    ReportType.LAB: {
        "keywords": [
            "reference range", "reference interval", "specimen", "collected",
            "result", "units", "mg/dl", "mmol/l", "g/dl", "hemoglobin",
            "glucose", "cholesterol", "creatinine", "panel", "laboratory",
        ],
        "header_patterns": [
            r"\blab(oratory)?\s+(report|results?)\b",
            r"\b(test|component)\s+result\b",
            r"\bcomplete blood count\b|\bcbc\b",
            r"\bmetabolic panel\b|\blipid panel\b",
        ],
    },
    ReportType.PRESCRIPTION: {
        "keywords": [
            "rx", "sig", "refills", "dispense", "tablet", "capsule",
            "take", "daily", "twice", "mg", "pharmacy", "prescribed",
            "qty", "dea",
        ],
        "header_patterns": [
            r"\bprescription\b",
            r"\brx\b",
            r"\bpharmacy\b",
        ],
    },
    ReportType.RADIOLOGY: {
        "keywords": [
            "impression", "findings", "technique", "contrast", "radiologist",
            "ct", "mri", "x-ray", "ultrasound", "views", "comparison",
            "unremarkable",
        ],
        "header_patterns": [
            r"\bradiology\b|\bimaging\b",
            r"\b(ct|mri|x-ray|xray|ultrasound)\b",
            r"\bexam(ination)?:",
        ],
    },
    ReportType.VITALS: {
        "keywords": [
            "blood pressure", "heart rate", "pulse", "temperature",
            "respiratory rate", "oxygen saturation", "spo2", "bmi",
            "weight", "height", "mmhg", "bpm",
        ],
        "header_patterns": [
            r"\bvital(s| signs)\b",
            r"\bbp\s*:?\s*\d{2,3}/\d{2,3}\b",
        ],
    },
}

# Minimum fingerprint score before falling back to GENERAL
MIN_CLASSIFICATION_SCORE = 0.25
