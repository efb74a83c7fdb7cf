# ============================================================================
# src/medical_processing/services/base.py
# ============================================================================
"""
Service interfaces used by the pipeline stages.

Concrete adapters wrap external APIs (Textract, Comprehend Medical,
Google Vision, OpenAI) or local libraries. Stages only see these
interfaces, so tests substitute in-memory fakes.

Adapters raise TransientServiceError for failures worth retrying and
the other MedicalProcessingError subclasses for permanent ones.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.context.extraction import (
    OCRResult,
    EntityExtraction,
    TerminologyResult,
)


class ObjectStorage(ABC):
    """Source of uploaded document bytes."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        pass


class OCREngine(ABC):
    """Turns document bytes into text (and optionally tables/forms)."""

    name: str = "ocr"

    @abstractmethod
    async def extract(
        self,
        data: bytes,
        mime_type: str,
        language: Optional[str] = None
    ) -> OCRResult:
        pass

    def supports(self, mime_type: str, size: int) -> bool:
        """Whether this engine can take the file at all."""
        return True


class EntityExtractor(ABC):
    """Medical NLP: typed entities and their relationships."""

    @abstractmethod
    async def extract_entities(self, text: str) -> EntityExtraction:
        pass


class TerminologyValidator(ABC):
    """
    Maps entities to coding systems.

    validate() must return exactly one validation per input entity,
    in input order.
    """

    @abstractmethod
    async def validate(self, entities: List[Dict[str, Any]]) -> TerminologyResult:
        pass


class LLMClient(ABC):
    """Generative model expected to answer with JSON text."""

    model_name: str = "llm"

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        text: Optional[str] = None,
        image: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        pass
