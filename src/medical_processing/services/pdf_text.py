# ============================================================================
# src/medical_processing/services/pdf_text.py
# ============================================================================
"""
Direct PDF text-layer extraction.

Text cascade: pypdfium2 (fast, good Unicode) -> pdfplumber.
Ruled tables are picked up with pdfplumber. Scanned PDFs have no text layer
and come back (nearly) empty; the OCR stage then falls through to image OCR.
"""

import asyncio
import io
import logging
import time
from typing import List, Optional, Tuple

import pdfplumber
import pypdfium2

from .base import OCREngine
from ..core.context.extraction import OCRResult, ExtractedTable
from ..utils.exceptions import UnreadableDocumentError

logger = logging.getLogger(__name__)

DIRECT_PDF_CONFIDENCE = 0.9

TABLE_SETTINGS = {
    "vertical_strategy": "lines_strict",
    "horizontal_strategy": "lines_strict",
    "snap_tolerance": 5,
    "join_tolerance": 5,
    "edge_min_length": 10,
}


class PdfTextEngine(OCREngine):

    name = "direct_pdf"

    def __init__(self, extract_tables: bool = True):
        self.extract_tables = extract_tables

    def supports(self, mime_type: str, size: int) -> bool:
        return mime_type == "application/pdf"

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        language: Optional[str] = None
    ) -> OCRResult:
        start = time.time()
        loop = asyncio.get_running_loop()
        text, page_count, tables = await loop.run_in_executor(None, self._extract_sync, data)

        return OCRResult(
            text=text,
            confidence=DIRECT_PDF_CONFIDENCE,
            tables=tables,
            extraction_method=self.name,
            page_count=page_count,
            detected_language=language,
            processing_time=time.time() - start,
        )

    def _extract_sync(self, data: bytes) -> Tuple[str, int, List[ExtractedTable]]:
        try:
            text, page_count = self._extract_with_pypdfium2(data)
        except Exception as e:
            logger.warning(f"pypdfium2 failed, trying pdfplumber: {e}")
            try:
                text, page_count = self._extract_with_pdfplumber(data)
            except Exception as e2:
                raise UnreadableDocumentError(
                    f"PDF text extraction failed. pypdfium2: {e}, pdfplumber: {e2}"
                ) from e2

        tables: List[ExtractedTable] = []
        if self.extract_tables and text.strip():
            try:
                tables = self._extract_tables(data)
            except Exception as e:
                logger.warning(f"pdfplumber table extraction failed: {e}")

        return text, page_count, tables

    @staticmethod
    def _extract_with_pypdfium2(data: bytes) -> Tuple[str, int]:
        pdf = pypdfium2.PdfDocument(data)
        try:
            pages = []
            for page_num in range(len(pdf)):
                textpage = pdf[page_num].get_textpage()
                pages.append((textpage.get_text_range() or "").strip())
            return "\n\n".join(pages), len(pdf)
        finally:
            pdf.close()

    @staticmethod
    def _extract_with_pdfplumber(data: bytes) -> Tuple[str, int]:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [(page.extract_text() or "").strip() for page in pdf.pages]
            return "\n\n".join(pages), len(pdf.pages)

    @staticmethod
    def _extract_tables(data: bytes) -> List[ExtractedTable]:
        tables = []
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                for table_obj in page.find_tables(TABLE_SETTINGS):
                    table_data = table_obj.extract()
                    if not table_data or len(table_data) < 2:
                        continue
                    headers = [str(cell or '').strip() for cell in table_data[0]]
                    rows = [[str(cell or '').strip() for cell in row] for row in table_data[1:]]
                    rows = [row for row in rows if any(row)]
                    if rows:
                        tables.append(ExtractedTable(
                            headers=headers,
                            rows=rows,
                            confidence=DIRECT_PDF_CONFIDENCE,
                        ))
        return tables
