# ============================================================================
# src/medical_processing/config/service_config.py
# ============================================================================
"""
External Service Settings
- OpenAI (structured extraction)
- AWS (Textract, Comprehend Medical)
- Google Vision (image OCR)
"""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class ServiceSettings(BaseSettings):
    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        description="OpenAI API key; structured extraction fails permanently without it"
    )
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Chat completion model used for structured extraction"
    )
    OPENAI_MAX_TOKENS: int = Field(default=2000, gt=0)
    OPENAI_TEMPERATURE: float = Field(default=0.1, ge=0.0, le=2.0)

    AWS_REGION: str = Field(default="us-east-1")
    USE_TEXTRACT: bool = Field(
        default=True,
        description="Try Textract structured extraction before fallbacks"
    )

    GOOGLE_VISION_API_KEY: Optional[str] = Field(default=None)
    IMAGE_OCR_ENGINE: str = Field(
        default="google_vision",
        description="Image OCR engine: google_vision | tesseract"
    )
    SERVICE_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout for HTTP services"
    )


service_settings = ServiceSettings()
