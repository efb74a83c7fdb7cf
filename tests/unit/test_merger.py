# ============================================================================
# FILE: tests/unit/test_merger.py
# ============================================================================
"""
Unit tests for merging LLM, entity, table and form results
"""

import pytest

from medical_processing.core.context import (
    EntityAttribute,
    EntityExtraction,
    ExtractedTable,
    FormField,
    ProcessingContext,
    ValidatedEntity,
)
from medical_processing.stages import ResultMerger
from medical_processing.stages.merger import (
    find_match,
    lab_test_candidates,
    medication_candidates,
    names_match,
    patient_from_forms,
    table_test_rows,
)

from conftest import make_entity, ocr_result


def validated(entity, codes=None, valid=None, validation_confidence=0.5):
    codes = codes or {}
    return ValidatedEntity(
        entity=entity,
        normalized_text=entity.text.lower(),
        codes=codes,
        validation_confidence=validation_confidence,
        is_valid=bool(codes) if valid is None else valid,
    )


def _context(report_type, payload, entities=(), ocr=None, llm_confidence=0.9, degraded=False):
    context = ProcessingContext(document_id="doc-1", file_path="uploads/report.pdf")
    context.report_type = report_type
    context.llm_payload = payload
    context.llm_confidence = llm_confidence
    context.llm_degraded = degraded
    context.ocr = ocr or ocr_result("text", confidence=0.9)
    context.entities = EntityExtraction(entities=[v.entity for v in entities])
    context.validated_entities = list(entities)
    return context


# ============================================================================
# Matching
# ============================================================================

@pytest.mark.parametrize("a, b, expected", [
    ("Lisinopril", "lisinopril", True),
    ("Lisinopril", "Lisinopril 10mg", True),
    ("hemoglobin a1c", "Hemoglobin", True),
    ("Blood_Pressure", "blood pressure", True),
    ("Fe", "Ferritin", False),
    ("K", "k", True),
    ("Metformin", "Lisinopril", False),
    ("", "Lisinopril", False),
    (None, None, False),
])
def test_names_match(a, b, expected):
    assert names_match(a, b) is expected


def test_find_match_resolves_brand_names():
    items = [{"name": "Lipitor"}, {"name": "Metformin"}]

    assert find_match(items, "Atorvastatin") is None
    assert find_match(items, "Atorvastatin", resolve_aliases=True) == 0
    assert find_match(items, "metformin") == 1


# ============================================================================
# Candidates
# ============================================================================

def test_medication_candidates_use_attributes_then_proximity():
    text = "Lisinopril 10mg once daily. Metformin 500mg twice daily"
    entities = [
        validated(make_entity("Lisinopril", "GENERIC_NAME", begin=0,
                              attributes=[EntityAttribute(type="DOSAGE", text="10mg")]),
                  codes={"rxnorm": "29046"}),
        validated(make_entity("Metformin", "GENERIC_NAME", begin=text.index("Metformin"))),
        validated(make_entity("500mg", "DOSAGE", begin=text.index("500mg"))),
        validated(make_entity("twice daily", "FREQUENCY", begin=text.index("twice daily"))),
    ]

    candidates = medication_candidates(entities, {"dosage_window_chars": 50, "frequency_window_chars": 100})

    assert [c["name"] for c in candidates] == ["Lisinopril", "Metformin"]
    assert candidates[0]["dosage"] == "10mg"
    assert candidates[0]["codes"] == {"rxnorm": "29046"}
    assert candidates[1]["dosage"] == "500mg"
    assert candidates[1]["frequency"] == "twice daily"


def test_dosage_outside_window_ignored():
    entities = [
        validated(make_entity("Metformin", "GENERIC_NAME", begin=0)),
        validated(make_entity("500mg", "DOSAGE", begin=200)),
    ]

    candidates = medication_candidates(entities, {"dosage_window_chars": 50})

    assert "dosage" not in candidates[0]


def test_lab_test_candidates_pair_value_and_unit():
    entities = [
        validated(make_entity("Glucose", "TEST_NAME", category="TEST_TREATMENT_PROCEDURE", begin=0)),
        validated(make_entity("95", "TEST_VALUE", category="TEST_TREATMENT_PROCEDURE", begin=8)),
        validated(make_entity("mg/dL", "TEST_UNIT", category="TEST_TREATMENT_PROCEDURE", begin=11)),
        validated(make_entity("colonoscopy", "PROCEDURE_NAME", category="TEST_TREATMENT_PROCEDURE", begin=40)),
    ]

    candidates = lab_test_candidates(entities, {})

    assert candidates == [
        {"name": "Glucose", "confidence": 0.9, "value": "95", "unit": "mg/dL"},
        {"name": "colonoscopy", "confidence": 0.9},
    ]



def test_table_rows_with_header_heuristics():
    table = ExtractedTable(
        headers=["Test Name", "Result", "Units", "Reference Range"],
        rows=[
            ["Hemoglobin¹", "14.2", "g/dL", "13.5-17.5"],
            ["Cholesterol", "180 mg/dL", "", "<200"],
            ["", "", "", ""],
        ],
        cell_confidence={"2:0": 0.95, "2:1": 0.6},
    )

    rows = table_test_rows(table)

    assert rows[0] == {
        "name": "Hemoglobin",
        "value": "14.2",
        "unit": "g/dL",
        "referenceRange": "13.5-17.5",
        "confidence": 0.8,
    }
    assert rows[1]["value"] == "180"
    assert rows[1]["unit"] == "mg/dL"
    assert rows[1]["confidence"] == pytest.approx(0.6)
    assert len(rows) == 2


def test_table_without_recognizable_columns():
    table = ExtractedTable(headers=["Date", "Comment"], rows=[["2024-01-15", "ok"]])

    assert table_test_rows(table) == []


def test_patient_from_forms():
    forms = [
        FormField(key="Patient Name:", value="Jane Roe"),
        FormField(key="DOB", value="1980-02-01"),
        FormField(key="MRN", value="12345"),
        FormField(key="Insurance", value="Acme"),
    ]

    assert patient_from_forms(forms) == {"name": "Jane Roe", "dateOfBirth": "1980-02-01", "id": "12345"}


# ============================================================================
# Stage
# ============================================================================

@pytest.mark.asyncio
async def test_prescription_union_without_duplicates():
    """LLM found Lisinopril, entities found Lisinopril and Metformin."""
    payload = {
        "reportType": "prescription",
        "documentName": "Lisinopril Prescription",
        "confidence": 0.92,
        "prescribingProvider": {"name": "Dr. Smith", "specialty": "Cardiology"},
        "medications": [{"name": "Lisinopril", "dosage": "10mg", "frequency": "once daily"}],
    }
    entities = [
        validated(make_entity("Lisinopril", "GENERIC_NAME", begin=4), codes={"rxnorm": "29046"}),
        validated(make_entity("Metformin", "GENERIC_NAME", begin=40, confidence=0.8), codes={"rxnorm": "6809"}),
    ]
    context = _context("prescription", payload, entities)

    result = await ResultMerger().run(context)

    medications = context.record.payload["medications"]
    assert [m["name"] for m in medications] == ["Lisinopril", "Metformin"]
    assert medications[0]["sources"] == ["llm", "entity"]
    assert medications[0]["dosage"] == "10mg"
    assert medications[0]["codes"] == {"rxnorm": "29046"}
    assert medications[0]["entityConfidence"] == pytest.approx(0.9)
    assert medications[1]["sources"] == ["entity"]
    assert set(context.record.provenance["medications"]) == {"llm", "entity"}
    assert result["items_added"] == {"medications": 1}
    # The LLM payload on the context is left untouched
    assert len(context.llm_payload["medications"]) == 1


@pytest.mark.asyncio
async def test_prescription_record_fields():
    payload = {
        "documentName": "Lisinopril Prescription",
        "patient": {"name": "John Doe"},
        "facility": {"name": "City Clinic"},
        "prescribingProvider": {"name": "Dr. Smith"},
        "medications": [{"name": "Lisinopril"}],
    }
    context = _context("prescription", payload)

    await ResultMerger().run(context)

    record = context.record
    assert record.report_type == "prescription"
    assert record.document_name == "Lisinopril Prescription"
    assert record.patient == {"name": "John Doe"}
    assert record.facility == {"name": "City Clinic"}
    assert record.provider == {"name": "Dr. Smith", "role": "prescribingProvider"}
    assert 0.0 <= record.confidence <= 1.0
    assert set(record.stage_confidence) == {"ocr", "entity", "llm"}
    assert record.degraded is False


@pytest.mark.asyncio
async def test_string_diagnosis_promoted_when_matched():
    payload = {"medications": [], "diagnosis": ["Hypertension"]}
    entities = [
        validated(make_entity("Hypertension", "DX_NAME", category="MEDICAL_CONDITION", begin=0),
                  codes={"snomed": "38341003", "icd10": "I10"}),
    ]
    context = _context("prescription", payload, entities)

    await ResultMerger().run(context)

    diagnosis = context.record.payload["diagnosis"]
    assert len(diagnosis) == 1
    assert diagnosis[0]["description"] == "Hypertension"
    assert diagnosis[0]["code"] == "I10"
    assert diagnosis[0]["sources"] == ["llm", "entity"]


@pytest.mark.asyncio
async def test_lab_merges_panels_entities_and_tables():
    payload = {
        "testPanels": [{"name": "CBC", "tests": [{"name": "Hemoglobin", "value": "14.2"}]}],
        "tests": [],
    }
    entities = [
        validated(make_entity("Glucose", "TEST_NAME", category="TEST_TREATMENT_PROCEDURE", begin=0)),
        validated(make_entity("95", "TEST_VALUE", category="TEST_TREATMENT_PROCEDURE", begin=8)),
        validated(make_entity("mg/dL", "TEST_UNIT", category="TEST_TREATMENT_PROCEDURE", begin=11)),
    ]
    table = ExtractedTable(
        headers=["Test", "Result", "Units", "Reference Range"],
        rows=[["Hemoglobin", "14.2", "g/dL", "13.5-17.5"], ["Cholesterol", "180", "mg/dL", "<200"]],
    )
    context = _context("lab", payload, entities, ocr=ocr_result("Glucose 95 mg/dL", tables=[table]))

    await ResultMerger().run(context)

    record_payload = context.record.payload
    panel_test = record_payload["testPanels"][0]["tests"][0]
    assert panel_test["sources"] == ["llm", "table"]
    assert panel_test["unit"] == "g/dL"
    assert panel_test["referenceRange"] == "13.5-17.5"
    assert [t["name"] for t in record_payload["tests"]] == ["Glucose", "Cholesterol"]
    assert record_payload["tests"][0]["sources"] == ["entity"]
    assert record_payload["tests"][1]["sources"] == ["table"]
    assert set(context.record.provenance["tests"]) == {"entity", "table"}
    assert context.record.provenance["testPanels"] == ["llm"]


@pytest.mark.asyncio
async def test_forms_fill_missing_patient_fields():
    payload = {"medications": [], "patient": {"name": "John Doe"}}
    forms = [FormField(key="Patient Name", value="J. Doe"), FormField(key="Date of Birth", value="1970-05-05")]
    context = _context("prescription", payload, ocr=ocr_result("text", forms=forms))

    await ResultMerger().run(context)

    assert context.record.patient == {"name": "John Doe", "dateOfBirth": "1970-05-05"}
    assert "form" in context.record.provenance["patient"]


@pytest.mark.asyncio
async def test_degraded_payload_not_merged():
    payload = {"rawResponse": "garbled", "reportType": "prescription"}
    entities = [validated(make_entity("Metformin", "GENERIC_NAME", begin=0))]
    context = _context("prescription", payload, entities, llm_confidence=0.3, degraded=True)

    await ResultMerger().run(context)

    assert context.record.payload == payload
    assert context.record.degraded is True
    assert context.record.is_raw


@pytest.mark.asyncio
async def test_record_confidence_rises_with_llm_confidence():
    payload = {"medications": [{"name": "Lisinopril"}]}
    low = _context("prescription", dict(payload), llm_confidence=0.4)
    high = _context("prescription", dict(payload), llm_confidence=0.9)

    await ResultMerger().run(low)
    await ResultMerger().run(high)

    assert high.record.confidence > low.record.confidence


@pytest.mark.asyncio
async def test_radiology_merges_entities_and_summarizes_findings():
    payload = {
        "findings": [{"description": "No acute cardiopulmonary process"}],
        "impression": "Normal chest radiograph",
        "diagnosis": [],
    }
    entities = [
        validated(make_entity("Pneumonia", "DX_NAME", category="MEDICAL_CONDITION", begin=0),
                  codes={"icd10": "J18.9"}),
        validated(make_entity("Chest X-ray", "PROCEDURE_NAME", category="TEST_TREATMENT_PROCEDURE", begin=20)),
        validated(make_entity("Albuterol", "GENERIC_NAME", begin=40)),
        validated(make_entity("Dr. Patel", "NAME", category="PROTECTED_HEALTH_INFORMATION", begin=60)),
        validated(make_entity("lung", "SYSTEM_ORGAN_SITE", category="ANATOMY", begin=80)),
    ]
    context = _context("radiology", payload, entities)

    result = await ResultMerger().run(context)

    record_payload = context.record.payload
    assert record_payload["diagnosis"][0]["description"] == "Pneumonia"
    assert record_payload["diagnosis"][0]["sources"] == ["entity"]
    assert [m["name"] for m in record_payload["medications"]] == ["Albuterol"]
    assert record_payload["entityFindings"] == {
        "medications": [{"name": "Albuterol", "confidence": pytest.approx(0.9)}],
        "conditions": [{"name": "Pneumonia", "confidence": pytest.approx(0.9)}],
        "procedures": [{"name": "Chest X-ray", "confidence": pytest.approx(0.9)}],
        "providers": [{"name": "Dr. Patel", "confidence": pytest.approx(0.9)}],
    }
    provenance = context.record.provenance
    assert provenance["findings"] == ["llm"]
    assert provenance["diagnosis"] == ["entity"]
    assert provenance["entityFindings"] == ["entity"]
    assert result["items_added"] == {"medications": 1, "diagnosis": 1}


@pytest.mark.asyncio
async def test_radiology_without_entities_left_as_extracted():
    payload = {"findings": [{"description": "Clear lungs"}], "impression": "Normal"}
    context = _context("radiology", payload)

    await ResultMerger().run(context)

    assert context.record.payload == payload
    assert context.record.provenance == {"findings": ["llm"], "impression": ["llm"]}


@pytest.mark.asyncio
async def test_vitals_annotated_with_entity_confidence():
    payload = {"vitals": [
        {"type": "blood_pressure", "value": "120/80", "unit": "mmHg"},
        {"type": "heart_rate", "value": "72", "unit": "bpm"},
        {"type": "temperature", "value": "", "unit": "F"},
    ]}
    entities = [
        validated(make_entity("120/80", "TEST_VALUE", category="TEST_TREATMENT_PROCEDURE", begin=10,
                              confidence=0.85)),
        validated(make_entity("Blood pressure", "TEST_NAME", category="TEST_TREATMENT_PROCEDURE", begin=0)),
    ]
    context = _context("vitals", payload, entities)

    await ResultMerger().run(context)

    vitals = context.record.payload["vitals"]
    assert len(vitals) == 3
    assert vitals[0]["entityConfidence"] == pytest.approx(0.85)
    assert vitals[0]["sources"] == ["llm", "entity"]
    assert "entityConfidence" not in vitals[1]
    assert "sources" not in vitals[2]
    assert context.record.provenance["vitals"] == ["llm", "entity"]
    # Entity test names never become new readings or tests
    assert "tests" not in context.record.payload


@pytest.mark.asyncio
async def test_vitals_without_matching_entities_keep_llm_provenance():
    payload = {"vitals": [{"type": "heart_rate", "value": "72", "unit": "bpm"}]}
    entities = [validated(make_entity("98.6", "TEST_VALUE", category="TEST_TREATMENT_PROCEDURE", begin=0))]
    context = _context("vitals", payload, entities)

    await ResultMerger().run(context)

    assert context.record.payload == payload
    assert context.record.provenance == {"vitals": ["llm"]}
