# ============================================================================
# FILE: tests/unit/test_llm_stage.py
# ============================================================================
"""
Unit tests for LLM structured extraction and JSON recovery
"""

import pytest

from medical_processing.prompts import REPORT_PROMPTS
from medical_processing.constants.report_types import ReportType
from medical_processing.stages import LLMExtractionStage, extract_json
from medical_processing.utils.exceptions import TransientServiceError

from conftest import FakeLLM


def test_extract_json_direct():
    assert extract_json('{"name": "Glucose"}') == ({"name": "Glucose"}, False)


def test_extract_json_code_fence():
    assert extract_json('```json\n{"value": 95}\n```') == ({"value": 95}, False)


def test_extract_json_surrounded_by_prose():
    text = 'Here is the extraction: {"patient": {"name": "Jane"}} Let me know!'
    assert extract_json(text) == ({"patient": {"name": "Jane"}}, False)


def test_extract_json_repairs_truncated_output():
    data, repaired = extract_json('{"tests": [{"name": "Glucose", "value": "95"')

    assert repaired is True
    assert data["tests"][0]["name"] == "Glucose"


@pytest.mark.parametrize("text", ["", "   ", "I could not read this document.", "[1, 2, 3]"])
def test_extract_json_nothing_usable(text):
    assert extract_json(text) == (None, False)


@pytest.mark.asyncio
async def test_structured_payload(sample_context, prescription_llm_response):
    llm = FakeLLM(prescription_llm_response)
    sample_context.report_type_hint = "prescription"
    stage = LLMExtractionStage(llm, {"llm_include_image": False})

    result = await stage.run(sample_context)

    assert result["decision"] == "structured"
    assert sample_context.report_type == "prescription"
    assert sample_context.llm_degraded is False
    assert sample_context.llm_confidence == pytest.approx(0.92)
    assert sample_context.llm_payload["confidence"] == pytest.approx(0.92)
    assert sample_context.llm_payload["medications"][0]["name"] == "Lisinopril"
    assert llm.calls[0]["prompt"] == REPORT_PROMPTS[ReportType.PRESCRIPTION]
    assert llm.calls[0]["text"] == sample_context.text
    assert llm.calls[0]["image"] is None


@pytest.mark.asyncio
async def test_missing_confidence_uses_default(sample_context):
    sample_context.report_type_hint = "prescription"
    stage = LLMExtractionStage(FakeLLM('{"medications": []}'), {"default_llm_confidence": 0.8})

    await stage.run(sample_context)

    assert sample_context.llm_confidence == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_unparseable_output_is_kept_raw(sample_context):
    """Model answers with prose: raw response stored, degraded, no exception."""
    sample_context.report_type_hint = "lab"
    stage = LLMExtractionStage(FakeLLM("Sorry, the image is too blurry to read."),
                               {"degraded_llm_confidence": 0.3})

    result = await stage.run(sample_context)

    assert result["decision"] == "raw_response"
    assert sample_context.llm_degraded is True
    assert sample_context.llm_confidence == pytest.approx(0.3)
    assert sample_context.llm_payload == {
        "rawResponse": "Sorry, the image is too blurry to read.",
        "reportType": "lab",
    }
    assert sample_context.warnings


@pytest.mark.asyncio
async def test_schema_mismatch_is_kept_raw(sample_context):
    sample_context.report_type_hint = "lab"
    stage = LLMExtractionStage(FakeLLM('{"patient": "John Doe"}'))

    await stage.run(sample_context)

    assert sample_context.llm_degraded is True
    assert sample_context.llm_payload["rawResponse"] == '{"patient": "John Doe"}'


@pytest.mark.asyncio
async def test_report_type_classified_from_text(sample_context, sample_lab_text):
    sample_context.ocr.text = sample_lab_text
    llm = FakeLLM('{"tests": [{"name": "Glucose", "value": "95"}], "confidence": 0.9}')

    await LLMExtractionStage(llm).run(sample_context)

    assert sample_context.report_type == "lab"
    assert llm.calls[0]["prompt"] == REPORT_PROMPTS[ReportType.LAB]


@pytest.mark.asyncio
async def test_image_sent_when_enabled(sample_context, prescription_llm_response):
    llm = FakeLLM(prescription_llm_response)
    stage = LLMExtractionStage(llm, {"llm_include_image": True})

    await stage.run(sample_context)

    assert llm.calls[0]["image"] == b"fake-png-bytes"
    assert llm.calls[0]["mime_type"] == "image/png"


@pytest.mark.asyncio
async def test_service_errors_propagate(sample_context):
    stage = LLMExtractionStage(FakeLLM(TransientServiceError("OpenAI 503", service="openai")))

    with pytest.raises(TransientServiceError):
        await stage.run(sample_context)

    assert sample_context.stage_executions[-1]["error"] == "OpenAI 503"
