# ============================================================================
# FILE: tests/conftest.py
# ============================================================================
"""
Pytest configuration and shared fixtures for testing.

Every external service is replaced by an in-memory fake; nothing here
touches the network.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from medical_processing.core.context import (
    EntityAttribute,
    EntityExtraction,
    ExtractedEntity,
    OCRResult,
    ProcessingContext,
    TerminologyResult,
)
from medical_processing.core.record_store import RecordStore
from medical_processing.services.base import (
    EntityExtractor,
    LLMClient,
    ObjectStorage,
    OCREngine,
    TerminologyValidator,
)
from medical_processing.services.bundle import ServiceBundle
from medical_processing.services.terminology import LocalTerminologyValidator
from medical_processing.utils.exceptions import DocumentNotFoundError


# ============================================================================
# Fakes
# ============================================================================

def _next_outcome(outcomes: List[Any]):
    """Pop the next scripted outcome (the last one repeats); raise exceptions."""
    outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


class FakeStorage(ObjectStorage):

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files = dict(files or {})
        self.downloads: List[str] = []

    async def download(self, path: str) -> bytes:
        self.downloads.append(path)
        if path not in self.files:
            raise DocumentNotFoundError(path)
        return self.files[path]


class FakeOCREngine(OCREngine):

    def __init__(self, name: str, *outcomes, supported: bool = True):
        self.name = name
        self.outcomes = list(outcomes) or [OCRResult(text="", extraction_method=name)]
        self.supported = supported
        self.calls = 0

    def supports(self, mime_type: str, size: int) -> bool:
        return self.supported

    async def extract(self, data: bytes, mime_type: str, language: Optional[str] = None) -> OCRResult:
        self.calls += 1
        return _next_outcome(self.outcomes)


class FakeEntityExtractor(EntityExtractor):

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [EntityExtraction()]
        self.calls = 0

    async def extract_entities(self, text: str) -> EntityExtraction:
        self.calls += 1
        return _next_outcome(self.outcomes)


class FailingTerminologyValidator(TerminologyValidator):

    def __init__(self, error: Exception):
        self.error = error

    async def validate(self, entities: List[Dict[str, Any]]) -> TerminologyResult:
        raise self.error


class FakeLLM(LLMClient):

    model_name = "fake-llm"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or ["{}"]
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, prompt, text=None, image=None, mime_type=None) -> str:
        self.calls.append({"prompt": prompt, "text": text, "image": image, "mime_type": mime_type})
        return _next_outcome(self.outcomes)


class RecordingSleep:
    """Injected in place of asyncio.sleep so retry tests run instantly."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class FakeClock:

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# ============================================================================
# Builders
# ============================================================================

def make_entity(
    text: str,
    entity_type: str,
    category: str = "MEDICATION",
    begin: Optional[int] = None,
    confidence: float = 0.9,
    attributes: Optional[List[EntityAttribute]] = None,
    entity_id: Optional[int] = None,
) -> ExtractedEntity:
    return ExtractedEntity(
        text=text,
        category=category,
        type=entity_type,
        confidence=confidence,
        begin_offset=begin,
        end_offset=begin + len(text) if begin is not None else None,
        id=entity_id,
        attributes=attributes or [],
    )


def ocr_result(text: str, confidence: float = 0.95, method: str = "fake_ocr", **kwargs) -> OCRResult:
    return OCRResult(text=text, confidence=confidence, extraction_method=method, **kwargs)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def sample_prescription_text():
    """Sample prescription text"""
    return (
        "City Pharmacy\n"
        "Patient: John Doe\n"
        "Rx: Lisinopril 10mg take once daily\n"
        "Metformin 500mg twice daily with meals\n"
        "Refills: 2"
    )


@pytest.fixture
def sample_lab_text():
    """Sample lab report text"""
    return (
        "Quest Diagnostics Laboratory Report\n"
        "Patient: Jane Roe\n"
        "COMPLETE BLOOD COUNT (CBC)\n"
        "Test Result Reference Range\n"
        "Hemoglobin 14.2 g/dL 13.5-17.5\n"
        "Glucose 95 mg/dL 70-99\n"
        "Specimen collected 2024-01-15"
    )


@pytest.fixture
def prescription_llm_response():
    return (
        '{"reportType": "prescription", "documentName": "Lisinopril Prescription", '
        '"confidence": 92, "patient": {"name": "John Doe"}, '
        '"prescribingProvider": {"name": "Dr. Smith", "specialty": "Cardiology"}, '
        '"medications": [{"name": "Lisinopril", "dosage": "10mg", "frequency": "once daily"}]}'
    )


@pytest.fixture
def prescription_entities():
    """Lisinopril (also in the LLM answer) and Metformin (entity-only)."""
    text = (
        "Rx: Lisinopril 10mg take once daily\n"
        "Metformin 500mg twice daily with meals"
    )
    lisinopril = text.index("Lisinopril")
    metformin = text.index("Metformin")
    return EntityExtraction(
        entities=[
            make_entity("Lisinopril", "GENERIC_NAME", begin=lisinopril, entity_id=0,
                        attributes=[EntityAttribute(type="DOSAGE", text="10mg", score=0.9)]),
            make_entity("Metformin", "GENERIC_NAME", begin=metformin, entity_id=1),
            make_entity("500mg", "DOSAGE", begin=text.index("500mg"), entity_id=2),
            make_entity("twice daily", "FREQUENCY", begin=text.index("twice daily"), entity_id=3),
        ],
        confidence=0.9,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def store(tmp_path):
    return RecordStore(tmp_path / "records.db")


@pytest.fixture
def fake_services(sample_prescription_text, prescription_llm_response, prescription_entities):
    """Bundle where every service succeeds on a prescription image."""
    return ServiceBundle(
        storage=FakeStorage({"uploads/rx.png": b"fake-png-bytes"}),
        entity_extractor=FakeEntityExtractor(prescription_entities),
        terminology=LocalTerminologyValidator(),
        llm=FakeLLM(prescription_llm_response),
        image_ocr=FakeOCREngine("fake_ocr", ocr_result(sample_prescription_text)),
    )


@pytest.fixture
def pipeline_config():
    """Config overrides that keep tests independent of the environment."""
    return {
        "max_retries": 3,
        "retry_base_delay_seconds": 3.0,
        "retry_max_delay_seconds": 10.0,
        "processing_timeout_seconds": 5.0,
        "lock_ttl_seconds": 600,
        "llm_include_image": False,
        "enhance_ocr_text": True,
    }


@pytest.fixture
def sample_context(sample_prescription_text):
    """Processing context with OCR already done"""
    context = ProcessingContext(
        document_id="doc-1",
        file_path="uploads/rx.png",
        mime_type="image/png",
    )
    context.file_bytes = b"fake-png-bytes"
    context.ocr = ocr_result(sample_prescription_text)
    return context
