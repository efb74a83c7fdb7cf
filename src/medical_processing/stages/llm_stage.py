# ============================================================================
# src/medical_processing/stages/llm_stage.py
# ============================================================================
"""
LLM Structured-Extraction Stage

1. Resolve the report type (explicit on the job, else keyword classification)
2. Send the report-type prompt with the OCR text (and optionally the image)
3. Parse the JSON answer into the payload variant for that report type

Unparseable output never raises: the stage stores {"rawResponse": text}
with a degraded confidence so there is always something to merge.
Service errors (network, auth, rate limits) do raise and are classified
by the controller.
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from json_repair import repair_json
from pydantic import ValidationError

from ..core.stage_base import Stage
from ..core.context import ProcessingContext
from ..core.confidence import normalize_confidence
from ..prompts import determine_report_type, get_prompt
from ..schemas import RawPayload, parse_payload
from ..services.base import LLMClient

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _find_json_block(text: str) -> Optional[str]:
    """Outermost {...} block by brace matching."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    for i, char in enumerate(text[start:], start=start):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def extract_json(text: str) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Extract a JSON object from model output with repair fallback.

    Returns:
        Tuple of (parsed dict or None, json_was_repaired)
    """
    if not text or not text.strip():
        return None, False
    cleaned = _CODE_FENCE.sub("", text.strip())

    # Try 1: Direct parse
    try:
        parsed = json.loads(cleaned)
        return (parsed, False) if isinstance(parsed, dict) else (None, False)
    except json.JSONDecodeError:
        pass

    # Try 2: Outermost brace block, parsed then repaired
    block = _find_json_block(cleaned)
    if block is None:
        return None, False

    try:
        parsed = json.loads(block)
        return (parsed, False) if isinstance(parsed, dict) else (None, False)
    except json.JSONDecodeError:
        pass

    repaired = repair_json(block, return_objects=True)
    if isinstance(repaired, dict):
        return repaired, True
    return None, False


class LLMExtractionStage(Stage):

    def __init__(self, llm: LLMClient, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.llm = llm
        self.default_confidence = self.config.get("default_llm_confidence", 0.8)
        self.degraded_confidence = self.config.get("degraded_llm_confidence", 0.3)
        self.include_image = self.config.get("llm_include_image", False)

    def get_name(self) -> str:
        return "LLMExtractionStage"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        report_type = determine_report_type(context.report_type_hint, context.text)
        context.report_type = report_type.value

        image = None
        if self.include_image and (context.mime_type or "").startswith("image/"):
            image = context.file_bytes

        raw_response = await self.llm.complete(
            get_prompt(report_type),
            text=context.text or None,
            image=image,
            mime_type=context.mime_type,
        )

        data, repaired = extract_json(raw_response)
        if repaired:
            self.logger.warning(
                f"json_repair fixed response for {context.document_id} - potential data loss"
            )

        payload = None
        if data:
            try:
                payload = parse_payload(data, report_type)
            except ValidationError as e:
                self.logger.warning(
                    f"{report_type.value} payload failed validation for {context.document_id}: "
                    f"{e.error_count()} errors"
                )

        if payload is None:
            self.logger.warning(
                f"Unparseable model output for {context.document_id}, "
                f"keeping raw response ({len(raw_response)} chars)"
            )
            context.add_warning("Structured extraction returned unparseable output")
            context.llm_payload = RawPayload(
                raw_response=raw_response,
                report_type=report_type.value,
            ).to_dict()
            context.llm_confidence = self.degraded_confidence
            context.llm_degraded = True
            return {
                "decision": "raw_response",
                "confidence": self.degraded_confidence,
                "report_type": report_type.value,
            }

        confidence = normalize_confidence(payload.confidence, self.default_confidence)
        payload_dict = payload.to_dict()
        payload_dict["confidence"] = confidence

        context.llm_payload = payload_dict
        context.llm_confidence = confidence
        context.llm_degraded = False

        return {
            "decision": "structured",
            "confidence": confidence,
            "report_type": report_type.value,
            "json_repaired": repaired,
            "model": self.llm.model_name,
        }
