# ============================================================================
# src/medical_processing/config/pipeline_config.py
# ============================================================================
"""
Pipeline Policy
- Timeouts and retry/backoff
- Lock TTL and stuck-job recovery
- OCR limits
- Confidence blend weights
- Merge heuristics
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class PipelineSettings(BaseSettings):
    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    PROCESSING_TIMEOUT_SECONDS: float = Field(
        default=90.0,
        gt=0,
        description="Upper bound for one processing attempt of a document"
    )
    MAX_RETRIES: int = Field(
        default=3,
        ge=0,
        description="Re-attempts after the first try for retryable failures"
    )
    RETRY_BASE_DELAY_SECONDS: float = Field(
        default=3.0,
        ge=0,
        description="Backoff delay before the first retry"
    )
    RETRY_MAX_DELAY_SECONDS: float = Field(
        default=10.0,
        ge=0,
        description="Backoff cap"
    )
    LOCK_TTL_SECONDS: int = Field(
        default=600,
        gt=0,
        description="Processing locks expire after this long even if never released"
    )
    STUCK_PROCESSING_MINUTES: int = Field(
        default=20,
        gt=0,
        description="Jobs processing longer than this are reset by maintenance"
    )

    # ------------------------------------------------------------------
    # OCR
    # ------------------------------------------------------------------
    MAX_FILE_SIZE_MB: int = Field(
        default=20,
        gt=0,
        description="Hard cap on downloaded document size"
    )
    MIN_PDF_TEXT_CHARS: int = Field(
        default=50,
        ge=0,
        description="Direct PDF text shorter than this falls through to image OCR"
    )
    ENHANCE_OCR_TEXT: bool = Field(
        default=True,
        description="Run the OCR spacing/whitespace normalization pass"
    )
    MAX_ENTITY_TEXT_CHARS: int = Field(
        default=20000,
        gt=0,
        description="Medical NLP input limit; longer text is truncated"
    )

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------
    OCR_CONFIDENCE_WEIGHT: float = Field(default=0.3, ge=0.0, le=1.0)
    ENTITY_WEIGHT_RICH: float = Field(
        default=0.4, ge=0.0, le=1.0,
        description="Entity/validation weight when entity data is plentiful"
    )
    ENTITY_WEIGHT_SPARSE: float = Field(
        default=0.2, ge=0.0, le=1.0,
        description="Entity/validation weight when few entities were found"
    )
    SPARSE_ENTITY_THRESHOLD: int = Field(
        default=3, ge=0,
        description="Fewer entities than this counts as sparse"
    )
    DEFAULT_LLM_CONFIDENCE: float = Field(
        default=0.8, ge=0.0, le=1.0,
        description="Used when the model omits its self-reported confidence"
    )
    DEGRADED_LLM_CONFIDENCE: float = Field(
        default=0.3, ge=0.0, le=1.0,
        description="LLM confidence assigned to the raw-response fallback"
    )
    LLM_INCLUDE_IMAGE: bool = Field(
        default=False,
        description="Send image uploads to the model alongside the OCR text"
    )

    # ------------------------------------------------------------------
    # Merge heuristics
    # ------------------------------------------------------------------
    MIN_FUZZY_MATCH_CHARS: int = Field(
        default=3, ge=1,
        description="Names shorter than this only merge on exact match"
    )
    DOSAGE_WINDOW_CHARS: int = Field(default=50, ge=0)
    FREQUENCY_WINDOW_CHARS: int = Field(default=100, ge=0)
    TEST_VALUE_WINDOW_CHARS: int = Field(default=200, ge=0)
    TEST_UNIT_WINDOW_CHARS: int = Field(default=50, ge=0)


pipeline_settings = PipelineSettings()
