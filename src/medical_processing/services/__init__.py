# src/medical_processing/services/__init__.py
"""
External services

Interfaces the pipeline depends on, plus the production adapters:
- Object storage (local filesystem)
- OCR (AWS Textract, direct PDF text, Google Vision / Tesseract)
- Medical NLP (AWS Comprehend Medical)
- Terminology validation (bundled vocabularies)
- Generative model (OpenAI)
"""

from .base import (
    ObjectStorage,
    OCREngine,
    EntityExtractor,
    TerminologyValidator,
    LLMClient,
)
from .bundle import ServiceBundle, build_services
