# ============================================================================
# src/medical_processing/constants/__init__.py
# ============================================================================
"""
Convenient imports for all constants
"""

from .report_types import (
    ReportType,
    REPORT_TYPE_ALIASES,
    REPORT_TYPE_PATTERNS,
    resolve_report_type,
)
from .terminology import (
    SNOMED_CODES,
    LOINC_CODES,
    RXNORM_CODES,
    ICD10_CODES,
    CPT_CODES,
    DRUG_ALIASES,
    UNIT_ALIASES,
    VOCABULARIES,
    normalize_term,
    normalize_unit,
)
