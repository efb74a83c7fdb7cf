# ============================================================================
# src/medical_processing/core/context/enums.py
# ============================================================================
"""
Processing Enums
- Job phases
- Error categories
- Confidence levels
- Provenance sources
"""

from enum import Enum


class ProcessingPhase(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorCategory(str, Enum):
    # Transient / retryable
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ALREADY_PROCESSING = "already_processing"

    # Permanent
    UNREADABLE_DOCUMENT = "unreadable_document"
    UNSUPPORTED_FILE = "unsupported_file"
    FILE_TOO_LARGE = "file_too_large"
    AUTHENTICATION = "authentication"
    MALFORMED_REQUEST = "malformed_request"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.SERVICE_UNAVAILABLE,
    ErrorCategory.ALREADY_PROCESSING,
})


class ConfidenceLevel(str, Enum):
    HIGH = "high"       # >= 0.85
    MEDIUM = "medium"   # 0.70 - 0.85
    LOW = "low"         # < 0.70


class Provenance(str, Enum):
    """Pipeline stage that contributed a value to the merged record."""
    LLM = "llm"
    ENTITY = "entity"
    TABLE = "table"
    FORM = "form"
