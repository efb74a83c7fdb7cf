# ============================================================================
# src/medical_processing/services/bundle.py
# ============================================================================
"""
Service wiring.

All external clients are constructed once per process by build_services()
and handed to the ProcessingController. Tests build a ServiceBundle from
fakes directly.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .base import (
    EntityExtractor,
    LLMClient,
    ObjectStorage,
    OCREngine,
    TerminologyValidator,
)
from ..core.config import get_config
from ..utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ServiceBundle:
    storage: ObjectStorage
    entity_extractor: EntityExtractor
    terminology: TerminologyValidator
    llm: LLMClient
    image_ocr: OCREngine
    structured_ocr: Optional[OCREngine] = None
    pdf_text: Optional[OCREngine] = None

    async def close(self):
        """Close services holding network sessions."""
        for service in (self.image_ocr, self.structured_ocr, self.llm):
            close = getattr(service, "close", None)
            if close is not None:
                await close()


def build_services(config: Optional[Dict[str, Any]] = None) -> ServiceBundle:
    """Construct the production adapters from configuration."""
    # Adapters pull in boto3/aiohttp/openai; import only when wiring for real
    from .comprehend_medical import ComprehendMedicalExtractor
    from .openai_client import OpenAILLMClient
    from .pdf_text import PdfTextEngine
    from .storage import LocalObjectStorage
    from .terminology import LocalTerminologyValidator
    from .textract import TextractOCREngine
    from .vision_ocr import GoogleVisionOCREngine, TesseractOCREngine

    config = {**get_config(), **(config or {})}
    timeout = config.get("service_timeout_seconds", 60.0)

    engine_name = config.get("image_ocr_engine", "google_vision")
    if engine_name == "google_vision":
        image_ocr: OCREngine = GoogleVisionOCREngine(
            api_key=config.get("google_vision_api_key"),
            timeout=timeout,
        )
    elif engine_name == "tesseract":
        image_ocr = TesseractOCREngine()
    else:
        raise ConfigurationError(f"Unknown image OCR engine: {engine_name}")

    region = config.get("aws_region", "us-east-1")
    structured_ocr = TextractOCREngine(region=region) if config.get("use_textract", True) else None

    bundle = ServiceBundle(
        storage=LocalObjectStorage(
            Path(config.get("storage_root", "data/medical-documents")),
            max_bytes=config.get("max_file_size_mb", 20) * 1024 * 1024,
        ),
        entity_extractor=ComprehendMedicalExtractor(
            region=region,
            max_chars=config.get("max_entity_text_chars", 20000),
        ),
        terminology=LocalTerminologyValidator(config),
        llm=OpenAILLMClient(
            api_key=config.get("openai_api_key"),
            model=config.get("openai_model", "gpt-4o-mini"),
            max_tokens=config.get("openai_max_tokens", 2000),
            temperature=config.get("openai_temperature", 0.1),
            timeout=timeout,
        ),
        image_ocr=image_ocr,
        structured_ocr=structured_ocr,
        pdf_text=PdfTextEngine(),
    )
    logger.info(
        f"Services built: structured_ocr={'textract' if structured_ocr else 'off'}, "
        f"image_ocr={engine_name}, llm={bundle.llm.model_name}"
    )
    return bundle
