# ============================================================================
# src/medical_processing/utils/exceptions.py
# ============================================================================
"""
Custom exceptions for the medical document processing pipeline.

Every exception carries an ErrorCategory; retryability is derived from it.
"""

from typing import Optional

from ..core.context.enums import ErrorCategory, RETRYABLE_CATEGORIES


class MedicalProcessingError(Exception):
    """Base exception for all processing errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, category: Optional[ErrorCategory] = None):
        super().__init__(message)
        if category is not None:
            self.category = category

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES


# ----------------------------------------------------------------------------
# Transient
# ----------------------------------------------------------------------------

class TransientServiceError(MedicalProcessingError):
    """Network failure, 5xx or throttling from an external service."""
    category = ErrorCategory.SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        service: str = "unknown",
        status_code: Optional[int] = None,
        category: Optional[ErrorCategory] = None
    ):
        super().__init__(message, category)
        self.service = service
        self.status_code = status_code


class ProcessingTimeoutError(MedicalProcessingError):
    """Processing attempt exceeded its time limit."""
    category = ErrorCategory.TIMEOUT


class AlreadyProcessingError(MedicalProcessingError):
    """Another run holds the document lock."""
    category = ErrorCategory.ALREADY_PROCESSING

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} is already processing")
        self.document_id = document_id


# ----------------------------------------------------------------------------
# Permanent
# ----------------------------------------------------------------------------

class UnreadableDocumentError(MedicalProcessingError):
    """No OCR method could read text from the document."""
    category = ErrorCategory.UNREADABLE_DOCUMENT


class UnsupportedFileTypeError(MedicalProcessingError):
    """File type is not accepted by the pipeline."""
    category = ErrorCategory.UNSUPPORTED_FILE

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported file type: {mime_type}")
        self.mime_type = mime_type


class FileTooLargeError(MedicalProcessingError):
    """File exceeds the configured size cap."""
    category = ErrorCategory.FILE_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"File size {size} bytes exceeds the {limit // (1024 * 1024)}MB limit"
        )
        self.size = size
        self.limit = limit


class CredentialsError(MedicalProcessingError):
    """Service credentials missing or rejected."""
    category = ErrorCategory.AUTHENTICATION


class MalformedRequestError(MedicalProcessingError):
    """Request rejected by a service as invalid."""
    category = ErrorCategory.MALFORMED_REQUEST


class DocumentNotFoundError(MedicalProcessingError):
    """Document or its file does not exist."""
    category = ErrorCategory.NOT_FOUND

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ServiceError(MedicalProcessingError):
    """Non-transient failure reported by an external service."""
    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, service: str = "unknown"):
        super().__init__(message)
        self.service = service


class ConfigurationError(MedicalProcessingError):
    """Invalid configuration."""
    category = ErrorCategory.MALFORMED_REQUEST
