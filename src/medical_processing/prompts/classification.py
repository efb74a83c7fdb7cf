# ============================================================================
# src/medical_processing/prompts/classification.py
# ============================================================================
"""
Report type resolution.

An explicit report type stored on the job always wins. Otherwise the OCR
text is fingerprinted against keyword and header patterns; the best score
below MIN_CLASSIFICATION_SCORE falls back to GENERAL.
"""

import re
from typing import Any, Dict, Optional

from ..constants.report_types import (
    MIN_CLASSIFICATION_SCORE,
    REPORT_TYPE_PATTERNS,
    ReportType,
    resolve_report_type,
)

KEYWORD_WEIGHT = 0.6
HEADER_WEIGHT = 0.4
HEADER_CHARS = 500


def classify_report_type(text: str) -> Dict[str, Any]:
    """
    Fingerprint text against the report type patterns.

    Returns:
        {"type": ReportType, "confidence": float, "all_scores": {...}}
    """
    text_lower = (text or "").lower()
    header_text = text_lower[:HEADER_CHARS]
    scores: Dict[ReportType, float] = {}

    for report_type, patterns in REPORT_TYPE_PATTERNS.items():
        # 5 strong keywords is already definitive
        keywords = patterns["keywords"]
        keyword_matches = sum(
            1 for kw in keywords
            if re.search(rf"\b{re.escape(kw)}\b", text_lower)
        )
        keyword_score = min(1.0, keyword_matches / 5)

        header_patterns = patterns["header_patterns"]
        header_matches = sum(
            1 for pattern in header_patterns
            if re.search(pattern, header_text, re.IGNORECASE)
        )
        header_score = min(1.0, header_matches / max(1, len(header_patterns)))

        scores[report_type] = KEYWORD_WEIGHT * keyword_score + HEADER_WEIGHT * header_score

    best_type = max(scores, key=scores.get)
    best_score = scores[best_type]
    if best_score < MIN_CLASSIFICATION_SCORE:
        best_type = ReportType.GENERAL

    return {
        "type": best_type,
        "confidence": best_score,
        "all_scores": {k.value: round(v, 3) for k, v in scores.items()},
    }


def determine_report_type(explicit: Optional[str], text: str) -> ReportType:
    report_type = resolve_report_type(explicit)
    if report_type is not None:
        return report_type
    return classify_report_type(text)["type"]
