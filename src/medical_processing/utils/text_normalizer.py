# ============================================================================
# src/medical_processing/utils/text_normalizer.py
# ============================================================================
"""
Text Normalization Utilities

Cleans up extracted text from OCR/PDF extraction:
- Collapses whitespace runs and blank-line runs
- Restores word boundaries lost by OCR (glued words, glued numbers + units)
- Removes footnote markers from table cell names
- Splits "95 mg/dL" style cells into value and unit

Only formatting changes: tokens such as "HbA1c", "mg/dL", "CO2" or "pH"
are never split.
"""

import re
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Units a number may be glued to in OCR output ("500mg" -> "500 mg")
_GLUED_UNITS = r"(?:mg|mcg|µg|g|kg|ml|mL|L|lbs?|mmHg|bpm|units?|IU|mEq|mmol)"

OCR_SPACING_PATTERNS = [
    (re.compile(r"[ \t\f\v]+"), " "),                        # Horizontal runs -> single space
    (re.compile(r" *\n *"), "\n"),                           # Trim around newlines
    (re.compile(r"\n{3,}"), "\n\n"),                         # Blank-line runs -> one blank line
    (re.compile(r"(?<=[a-z]{3})(?=[A-Z][a-z]{2})"), " "),    # "ResultsGlucose" -> "Results Glucose"
    (re.compile(rf"(?<=\d)(?={_GLUED_UNITS}\b)"), " "),      # "500mg" -> "500 mg"
    (re.compile(r"(?<=[a-z]{2}),(?=[A-Za-z])"), ", "),       # "daily,with" -> "daily, with"
    (re.compile(r"(?<=[a-z]{2})\.(?=[A-Z][a-z])"), ". "),    # "normal.Glucose" -> "normal. Glucose"
]

# Patterns for footnote/superscript markers
FOOTNOTE_PATTERNS = [
    r'[¹²³⁴⁵⁶⁷⁸⁹⁰]+$',           # Unicode superscripts
    r'\s*[\(\[]\d+[\)\]]$',        # (1), [2], etc.
    r'\s*\*+$',                     # Asterisks
    r'\s*†+$',                      # Daggers
    r'\s*‡+$',                      # Double daggers
]

_VALUE_UNIT = re.compile(r"^([<>]?\s*[0-9][0-9.,]*)\s*([a-zA-Zµ/%][a-zA-Zµ/%0-9^.]*)?\s*$")


def enhance_extracted_text(text: str) -> str:
    """
    Fix spacing artifacts typical of OCR output.

    Examples:
        "Glucose:95mg/dL" -> "Glucose:95 mg/dL"
        "Lab ResultsGlucose" -> "Lab Results Glucose"
    """
    if not text or not isinstance(text, str):
        return text

    result = text
    for pattern, replacement in OCR_SPACING_PATTERNS:
        result = pattern.sub(replacement, result)

    return result.strip()


def remove_footnote_markers(text: str) -> str:
    """
    Remove footnote/superscript markers from a cell name.

    Examples:
        "Glucose¹" -> "Glucose"
        "WBC (1)" -> "WBC"
    """
    if not text:
        return text

    result = text.strip()

    for pattern in FOOTNOTE_PATTERNS:
        result = re.sub(pattern, '', result)

    return result.strip()


def split_value_unit(cell: str) -> Tuple[str, Optional[str]]:
    """
    Split a result cell into value and unit.

    Examples:
        "95 mg/dL" -> ("95", "mg/dL")
        "12.5"     -> ("12.5", None)
        "Negative" -> ("Negative", None)
    """
    if not cell:
        return cell, None

    match = _VALUE_UNIT.match(cell.strip())
    if not match:
        return cell.strip(), None

    value = match.group(1).replace(" ", "")
    return value, match.group(2)


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, underscores to spaces, collapsed whitespace. Used for matching."""
    if not name:
        return ""
    return " ".join(str(name).replace("_", " ").lower().split())
