# ============================================================================
# FILE: tests/unit/test_classification.py
# ============================================================================
"""
Unit tests for report type resolution and prompt selection
"""

import pytest

from medical_processing.constants.report_types import ReportType, resolve_report_type
from medical_processing.prompts import REPORT_PROMPTS, classify_report_type, determine_report_type, get_prompt


def test_classify_lab(sample_lab_text):
    result = classify_report_type(sample_lab_text)

    assert result["type"] == ReportType.LAB
    assert result["confidence"] > 0.5
    assert set(result["all_scores"]) == {"lab", "prescription", "radiology", "vitals"}


def test_classify_prescription(sample_prescription_text):
    assert classify_report_type(sample_prescription_text)["type"] == ReportType.PRESCRIPTION


def test_classify_radiology():
    text = (
        "RADIOLOGY REPORT\n"
        "Examination: Chest X-Ray PA and lateral views\n"
        "Comparison: None\n"
        "Findings: The lungs are clear.\n"
        "Impression: Unremarkable chest radiograph."
    )
    assert classify_report_type(text)["type"] == ReportType.RADIOLOGY


def test_classify_vitals():
    text = (
        "Vital Signs\n"
        "BP: 120/80 mmHg\n"
        "Heart rate 72 bpm, temperature 98.6 F, oxygen saturation 98%"
    )
    assert classify_report_type(text)["type"] == ReportType.VITALS


def test_unrecognized_text_is_general():
    assert classify_report_type("Thank you for visiting our clinic.")["type"] == ReportType.GENERAL
    assert classify_report_type("")["type"] == ReportType.GENERAL


@pytest.mark.parametrize("alias, expected", [
    ("lab_results", ReportType.LAB),
    ("Lab Results", ReportType.LAB),
    ("pharmacy", ReportType.PRESCRIPTION),
    ("vital-signs", ReportType.VITALS),
    ("x_ray", ReportType.RADIOLOGY),
    ("discharge_summary", ReportType.GENERAL),
    ("unknown", None),
    (None, None),
])
def test_resolve_report_type(alias, expected):
    assert resolve_report_type(alias) == expected


def test_explicit_report_type_wins(sample_lab_text):
    assert determine_report_type("prescription", sample_lab_text) == ReportType.PRESCRIPTION
    assert determine_report_type("not-a-type", sample_lab_text) == ReportType.LAB


def test_every_report_type_has_a_prompt():
    for report_type in ReportType:
        prompt = get_prompt(report_type)
        assert prompt is REPORT_PROMPTS[report_type]
        assert "documentName" in prompt
        assert "confidence" in prompt
