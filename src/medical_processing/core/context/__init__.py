from .enums import ProcessingPhase, ErrorCategory, ConfidenceLevel, Provenance, RETRYABLE_CATEGORIES
from .extraction import (
    ExtractedTable,
    FormField,
    OCRResult,
    EntityAttribute,
    ExtractedEntity,
    EntityRelationship,
    EntityExtraction,
    TerminologyValidation,
    ValidationSummary,
    TerminologyResult,
    ValidatedEntity,
)
from .record import StructuredRecord
from .job import ProcessingJob, ProcessingResult
from .processing_context import ProcessingContext
