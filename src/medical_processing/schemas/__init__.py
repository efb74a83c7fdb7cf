# src/medical_processing/schemas/__init__.py
"""
Typed payloads returned by structured extraction
"""

from .llm_payloads import (
    LLMPayload,
    LabPayload,
    PrescriptionPayload,
    RadiologyPayload,
    VitalsPayload,
    GeneralPayload,
    RawPayload,
    parse_payload,
    normalize_vital_type,
    VITAL_TYPES,
)
