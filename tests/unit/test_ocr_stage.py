# ============================================================================
# FILE: tests/unit/test_ocr_stage.py
# ============================================================================
"""
Unit tests for the OCR cascade
"""

import pytest

from medical_processing.core.context import ExtractedTable, ProcessingContext
from medical_processing.stages import OCRStage
from medical_processing.stages.ocr_stage import detect_mime_type
from medical_processing.utils.exceptions import (
    FileTooLargeError,
    TransientServiceError,
    UnreadableDocumentError,
    UnsupportedFileTypeError,
)

from conftest import FakeOCREngine, ocr_result

LONG_TEXT = "Glucose 95 mg/dL reference range 70-99 collected 2024-01-15 fasting specimen"


def _context(file_path="uploads/report.pdf", mime_type="application/pdf", data=b"%PDF-1.7 bytes"):
    context = ProcessingContext(document_id="doc-1", file_path=file_path, mime_type=mime_type)
    context.file_bytes = data
    return context


@pytest.mark.asyncio
async def test_image_goes_to_image_ocr():
    image_ocr = FakeOCREngine("google_vision_ocr", ocr_result("Glucose:95mg/dL", 0.85, "google_vision_ocr"))
    pdf_text = FakeOCREngine("pdf_text", ocr_result(LONG_TEXT))
    stage = OCRStage(image_ocr=image_ocr, pdf_text=pdf_text, config={"enhance_ocr_text": True})
    context = _context("uploads/scan.png", "image/png", b"png")

    result = await stage.run(context)

    assert result["decision"] == "google_vision_ocr"
    assert result["methods_tried"] == ["google_vision_ocr"]
    assert pdf_text.calls == 0
    assert context.ocr.text == "Glucose:95 mg/dL"
    assert context.ocr_confidence == pytest.approx(0.85)


@pytest.mark.asyncio
async def test_structured_engine_preferred():
    table = ExtractedTable(headers=["Test", "Result"], rows=[["Glucose", "95"]])
    structured = FakeOCREngine("textract", ocr_result(LONG_TEXT, 0.97, "textract", tables=[table]))
    image_ocr = FakeOCREngine("image_ocr", ocr_result(LONG_TEXT))
    stage = OCRStage(image_ocr=image_ocr, structured_ocr=structured)
    context = _context()

    result = await stage.run(context)

    assert result["decision"] == "textract"
    assert result["structured_data_found"] is True
    assert image_ocr.calls == 0
    assert context.ocr.tables[0].rows == [["Glucose", "95"]]


@pytest.mark.asyncio
async def test_pdf_falls_back_through_cascade():
    """Structured OCR errors, text layer too short, image OCR succeeds."""
    structured = FakeOCREngine("textract", TransientServiceError("Textract 503", service="textract"))
    pdf_text = FakeOCREngine("pdf_text", ocr_result("Page 1"))
    image_ocr = FakeOCREngine("tesseract_ocr", ocr_result(LONG_TEXT, 0.7, "tesseract_ocr"))
    stage = OCRStage(image_ocr=image_ocr, structured_ocr=structured, pdf_text=pdf_text,
                     config={"min_pdf_text_chars": 50})
    context = _context()

    result = await stage.run(context)

    assert result["methods_tried"] == ["textract", "pdf_text", "tesseract_ocr"]
    assert result["decision"] == "tesseract_ocr"
    assert len(context.ocr.warnings) == 2
    assert "Textract 503" in context.ocr.warnings[0]


@pytest.mark.asyncio
async def test_pdf_text_layer_accepted():
    pdf_text = FakeOCREngine("pdf_text", ocr_result(LONG_TEXT, 0.95, "pdf_text"))
    image_ocr = FakeOCREngine("image_ocr", ocr_result(LONG_TEXT))
    stage = OCRStage(image_ocr=image_ocr, pdf_text=pdf_text, config={"min_pdf_text_chars": 50})

    result = await stage.run(_context())

    assert result["decision"] == "pdf_text"
    assert image_ocr.calls == 0


@pytest.mark.asyncio
async def test_unsupported_structured_engine_skipped():
    structured = FakeOCREngine("textract", ocr_result(LONG_TEXT), supported=False)
    image_ocr = FakeOCREngine("image_ocr", ocr_result(LONG_TEXT, method="image_ocr"))
    stage = OCRStage(image_ocr=image_ocr, structured_ocr=structured)

    result = await stage.run(_context("uploads/scan.jpg", "image/jpeg"))

    assert result["methods_tried"] == ["image_ocr"]
    assert structured.calls == 0


@pytest.mark.asyncio
async def test_all_methods_fail_is_unreadable():
    image_ocr = FakeOCREngine("image_ocr", ocr_result("   "))
    stage = OCRStage(image_ocr=image_ocr)

    with pytest.raises(UnreadableDocumentError):
        await stage.run(_context("uploads/blank.png", "image/png"))


@pytest.mark.asyncio
async def test_unsupported_file_type():
    stage = OCRStage(image_ocr=FakeOCREngine("image_ocr", ocr_result(LONG_TEXT)))

    with pytest.raises(UnsupportedFileTypeError):
        await stage.run(_context("uploads/archive.zip", "application/zip"))


@pytest.mark.asyncio
async def test_file_too_large():
    stage = OCRStage(image_ocr=FakeOCREngine("image_ocr", ocr_result(LONG_TEXT)),
                     config={"max_file_size_mb": 1})

    with pytest.raises(FileTooLargeError):
        await stage.run(_context(data=b"x" * (2 * 1024 * 1024)))


def test_detect_mime_type():
    assert detect_mime_type("uploads/scan.png") == "image/png"
    assert detect_mime_type("uploads/report.PDF") == "application/pdf"
    assert detect_mime_type("uploads/report.pdf", "Application/PDF") == "application/pdf"
    assert detect_mime_type("uploads/noext") == "application/octet-stream"
