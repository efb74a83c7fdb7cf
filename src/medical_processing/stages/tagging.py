# ============================================================================
# src/medical_processing/stages/tagging.py
# ============================================================================
"""
Smart tags and quality metrics for a merged record.
"""

from typing import Any, Dict, List, Optional

from ..core.context import ValidatedEntity, ValidationSummary

# Payload keys holding providers, in priority order
PROVIDER_KEYS = ["provider", "orderingProvider", "prescribingProvider", "radiologist", "measuredBy"]

# Primary item list per report type, used for completeness
PRIMARY_ITEMS = {
    "lab": "tests",
    "prescription": "medications",
    "radiology": "findings",
    "vitals": "vitals",
    "general": "sections",
}

COMPLETENESS_TARGET = 5


def generate_smart_tags(report_type: str, payload: Dict[str, Any]) -> List[str]:
    """Report type, facility name, provider names and specialties, de-duplicated."""
    tags: List[str] = [report_type]

    facility = payload.get("facility")
    if isinstance(facility, dict) and facility.get("name"):
        tags.append(facility["name"])

    for key in PROVIDER_KEYS:
        provider = payload.get(key)
        if not isinstance(provider, dict):
            continue
        if provider.get("name"):
            tags.append(provider["name"])
        if provider.get("specialty"):
            tags.append(provider["specialty"])

    return list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))


def count_primary_items(report_type: str, payload: Dict[str, Any]) -> int:
    if report_type == "lab":
        count = len(payload.get("tests", []))
        for panel in payload.get("testPanels", []):
            count += len(panel.get("tests", []))
        return count
    return len(payload.get(PRIMARY_ITEMS.get(report_type, "sections"), []) or [])


def quality_metrics(
    report_type: str,
    payload: Dict[str, Any],
    entities: List[ValidatedEntity],
    summary: Optional[ValidationSummary],
    overall_confidence: float,
) -> Dict[str, float]:
    item_count = count_primary_items(report_type, payload)
    valid = sum(1 for e in entities if e.is_valid)
    return {
        "completeness": min(item_count / COMPLETENESS_TARGET, 1.0),
        "consistency": summary.validation_rate if summary else 0.0,
        "medicalValidity": valid / max(len(entities), 1),
        "accuracy": overall_confidence,
    }
