# src/medical_processing/stages/__init__.py
"""
Pipeline stages

OCR -> {entities -> terminology} || LLM extraction -> merge -> record validation
"""

from .ocr_stage import OCRStage
from .entity_stage import EntityExtractionStage
from .terminology_stage import TerminologyValidationStage
from .llm_stage import LLMExtractionStage, extract_json
from .merger import ResultMerger
from .record_validator import RecordValidationStage, validate_record
