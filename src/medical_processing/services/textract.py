# ============================================================================
# src/medical_processing/services/textract.py
# ============================================================================
"""
AWS Textract structured OCR.

Uses the synchronous analyze_document API with TABLES and FORMS so one call
returns text lines, table cells and key/value pairs. The synchronous API
accepts images and single-page PDFs up to 5MB; larger files are left to the
fallback engines.
"""

import asyncio
import logging
import statistics
import time
from typing import Any, Dict, List, Optional

import boto3
import botocore.exceptions

from .base import OCREngine
from ..core.context.enums import ErrorCategory
from ..core.context.extraction import OCRResult, ExtractedTable, FormField
from ..utils.exceptions import TransientServiceError, ServiceError, CredentialsError

logger = logging.getLogger(__name__)

# botocore errors raised before a response arrives; everything else is a bad request
_TIMEOUT_ERRORS = (
    botocore.exceptions.ReadTimeoutError,
    botocore.exceptions.ConnectTimeoutError,
)
_CONNECTION_ERRORS = _TIMEOUT_ERRORS + (
    botocore.exceptions.EndpointConnectionError,
    botocore.exceptions.ConnectionClosedError,
)

TEXTRACT_MAX_BYTES = 5 * 1024 * 1024
TEXTRACT_MIME_TYPES = {"application/pdf", "image/png", "image/jpeg", "image/jpg", "image/tiff"}


class TextractOCREngine(OCREngine):

    name = "aws_textract"

    def __init__(self, region: str = "us-east-1", client: Any = None):
        self.region = region
        self._client = client

    @property
    def client(self):
        """Lazy load the boto3 client."""
        if self._client is None:
            self._client = boto3.client("textract", region_name=self.region)
        return self._client

    def supports(self, mime_type: str, size: int) -> bool:
        return mime_type in TEXTRACT_MIME_TYPES and size <= TEXTRACT_MAX_BYTES

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        language: Optional[str] = None
    ) -> OCRResult:
        start = time.time()

        def call_api():
            return self.client.analyze_document(
                Document={"Bytes": data},
                FeatureTypes=["TABLES", "FORMS"],
            )

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, call_api)
        except botocore.exceptions.NoCredentialsError as e:
            raise CredentialsError(f"AWS credentials not configured: {e}") from e
        except botocore.exceptions.ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("ThrottlingException", "ProvisionedThroughputExceededException",
                        "InternalServerError", "ServiceUnavailableException"):
                raise TransientServiceError(f"Textract {code}: {e}", service="textract") from e
            raise ServiceError(f"Textract {code}: {e}", service="textract") from e
        except _CONNECTION_ERRORS as e:
            category = ErrorCategory.TIMEOUT if isinstance(e, _TIMEOUT_ERRORS) else ErrorCategory.NETWORK
            raise TransientServiceError(
                f"Textract network error: {e}", service="textract", category=category
            ) from e
        except botocore.exceptions.BotoCoreError as e:
            raise ServiceError(f"Textract request failed: {e}", service="textract") from e

        result = parse_textract_blocks(response.get("Blocks", []))
        result.page_count = response.get("DocumentMetadata", {}).get("Pages", 1)
        result.detected_language = language
        result.processing_time = time.time() - start

        logger.info(
            f"Textract extracted {len(result.text)} chars, "
            f"{len(result.tables)} tables, {len(result.forms)} form fields"
        )
        return result


# ----------------------------------------------------------------------------
# Block parsing
# ----------------------------------------------------------------------------

def _child_ids(block: Dict[str, Any], relationship_type: str = "CHILD") -> List[str]:
    ids: List[str] = []
    for relationship in block.get("Relationships", []):
        if relationship.get("Type") == relationship_type:
            ids.extend(relationship.get("Ids", []))
    return ids


def _block_text(block: Dict[str, Any], blocks_by_id: Dict[str, Dict[str, Any]]) -> str:
    words = []
    for child_id in _child_ids(block):
        child = blocks_by_id.get(child_id, {})
        if child.get("BlockType") == "WORD":
            words.append(child.get("Text", ""))
        elif child.get("BlockType") == "SELECTION_ELEMENT" and child.get("SelectionStatus") == "SELECTED":
            words.append("X")
    return " ".join(words)


def _parse_table(table_block: Dict[str, Any], blocks_by_id: Dict[str, Dict[str, Any]]) -> ExtractedTable:
    cells: Dict[tuple, str] = {}
    cell_confidence: Dict[str, float] = {}
    max_row = max_col = 0

    for cell_id in _child_ids(table_block):
        cell = blocks_by_id.get(cell_id, {})
        if cell.get("BlockType") != "CELL":
            continue
        # Textract indices are 1-based
        row = cell.get("RowIndex", 1) - 1
        col = cell.get("ColumnIndex", 1) - 1
        cells[(row, col)] = _block_text(cell, blocks_by_id)
        cell_confidence[f"{row}:{col}"] = cell.get("Confidence", 80.0) / 100.0
        max_row = max(max_row, row)
        max_col = max(max_col, col)

    grid = [
        [cells.get((r, c), "") for c in range(max_col + 1)]
        for r in range(max_row + 1)
    ]
    headers = grid[0] if grid else []
    rows = grid[1:] if len(grid) > 1 else []

    return ExtractedTable(
        headers=headers,
        rows=rows,
        confidence=table_block.get("Confidence", 90.0) / 100.0,
        cell_confidence=cell_confidence,
    )


def _parse_forms(blocks: List[Dict[str, Any]], blocks_by_id: Dict[str, Dict[str, Any]]) -> List[FormField]:
    forms: List[FormField] = []
    for block in blocks:
        if block.get("BlockType") != "KEY_VALUE_SET" or "KEY" not in block.get("EntityTypes", []):
            continue
        key = _block_text(block, blocks_by_id)
        value_parts = []
        confidences = [block.get("Confidence", 80.0)]
        for value_id in _child_ids(block, "VALUE"):
            value_block = blocks_by_id.get(value_id, {})
            value_parts.append(_block_text(value_block, blocks_by_id))
            confidences.append(value_block.get("Confidence", 80.0))
        if key:
            forms.append(FormField(
                key=key.strip().rstrip(":"),
                value=" ".join(v for v in value_parts if v).strip(),
                confidence=min(confidences) / 100.0,
            ))
    return forms


def parse_textract_blocks(blocks: List[Dict[str, Any]]) -> OCRResult:
    """Build an OCRResult from analyze_document blocks."""
    blocks_by_id = {b["Id"]: b for b in blocks if "Id" in b}

    lines = [b for b in blocks if b.get("BlockType") == "LINE"]
    text = "\n".join(line.get("Text", "") for line in lines)
    confidence = (
        statistics.mean(line.get("Confidence", 0.0) for line in lines) / 100.0
        if lines else 0.0
    )

    tables = [
        _parse_table(b, blocks_by_id)
        for b in blocks if b.get("BlockType") == "TABLE"
    ]

    return OCRResult(
        text=text,
        confidence=confidence,
        tables=tables,
        forms=_parse_forms(blocks, blocks_by_id),
        extraction_method=TextractOCREngine.name,
    )
