# ============================================================================
# src/medical_processing/stages/ocr_stage.py
# ============================================================================
"""
OCR Stage - Text, tables and forms from document bytes

Cascade:
1. Structured engine (Textract) when configured and the file fits its limits
2. PDF only: direct text layer, accepted when longer than MIN_PDF_TEXT_CHARS
3. Image OCR (Google Vision or Tesseract)

Any failure or empty result moves on to the next method. When every method
fails the document is unreadable, which is permanent.
"""

import mimetypes
from typing import Any, Dict, List, Optional

from ..core.stage_base import Stage
from ..core.context import ProcessingContext, OCRResult
from ..services.base import OCREngine
from ..utils.exceptions import (
    FileTooLargeError,
    UnreadableDocumentError,
    UnsupportedFileTypeError,
)
from ..utils.text_normalizer import enhance_extracted_text

SUPPORTED_MIME_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/tiff",
    "image/gif",
    "image/bmp",
    "image/webp",
}


def detect_mime_type(file_path: str, declared: Optional[str] = None) -> str:
    if declared:
        return declared.lower()
    guessed, _ = mimetypes.guess_type(file_path)
    return (guessed or "application/octet-stream").lower()


class OCRStage(Stage):
    """
    Runs the OCR cascade and stores the OCRResult on the context.
    """

    def __init__(
        self,
        image_ocr: OCREngine,
        structured_ocr: Optional[OCREngine] = None,
        pdf_text: Optional[OCREngine] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.image_ocr = image_ocr
        self.structured_ocr = structured_ocr
        self.pdf_text = pdf_text
        self.max_bytes = int(self.config.get("max_file_size_mb", 20)) * 1024 * 1024
        self.min_pdf_chars = self.config.get("min_pdf_text_chars", 50)
        self.enhance_text = self.config.get("enhance_ocr_text", True)

    def get_name(self) -> str:
        return "OCRStage"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        """
        Returns:
            {
                "decision": extraction method used,
                "confidence": OCR confidence,
                "text_length": int,
                "methods_tried": [...]
            }
        """
        data = context.file_bytes
        if len(data) > self.max_bytes:
            raise FileTooLargeError(len(data), self.max_bytes)

        mime_type = detect_mime_type(context.file_path, context.mime_type)
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise UnsupportedFileTypeError(mime_type)
        context.mime_type = mime_type

        failures: List[str] = []
        methods_tried: List[str] = []
        result: Optional[OCRResult] = None

        for engine, min_chars in self._cascade(mime_type, len(data)):
            methods_tried.append(engine.name)
            try:
                candidate = await engine.extract(data, mime_type, context.language_hint)
            except Exception as e:
                self.logger.warning(f"{engine.name} failed for {context.document_id}: {e}")
                failures.append(f"{engine.name}: {e}")
                continue

            text_length = len(candidate.text.strip())
            if text_length > min_chars:
                result = candidate
                break

            self.logger.info(
                f"{engine.name} returned {text_length} chars for {context.document_id}, falling back"
            )
            failures.append(f"{engine.name}: insufficient text ({text_length} chars)")

        if result is None:
            raise UnreadableDocumentError(
                f"Could not extract text from document. Tried: {'; '.join(failures) or 'no OCR method'}"
            )

        if self.enhance_text:
            result.text = enhance_extracted_text(result.text)
        result.warnings.extend(failures)
        context.ocr = result

        return {
            "decision": result.extraction_method,
            "confidence": result.confidence,
            "text_length": len(result.text),
            "structured_data_found": result.structured_data_found,
            "methods_tried": methods_tried,
        }

    def _cascade(self, mime_type: str, size: int):
        """(engine, minimum stripped text length to accept) in trial order."""
        steps = []
        if self.structured_ocr is not None and self.structured_ocr.supports(mime_type, size):
            steps.append((self.structured_ocr, 0))
        if mime_type == "application/pdf" and self.pdf_text is not None:
            steps.append((self.pdf_text, self.min_pdf_chars))
        if self.image_ocr.supports(mime_type, size):
            steps.append((self.image_ocr, 0))
        return steps
