# ============================================================================
# src/medical_processing/schemas/llm_payloads.py
# ============================================================================
"""
Structured-extraction payloads.

A tagged union keyed by reportType with one variant per report type, plus
RawPayload for model output that could not be parsed. Field names are
snake_case in Python and camelCase on the wire (the shape the prompts ask
for). Models accept extra keys so nothing the model returned is lost.

Values are coerced leniently: numbers become strings where the schema
expects text, a single finding string becomes a list, and the vitals
object form ({"bloodPressure": {...}, ...}) becomes a list of typed
readings.
"""

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..constants.report_types import ReportType


def _to_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(str(v) for v in value if v is not None)
    if isinstance(value, dict):
        return "; ".join(f"{k}: {v}" for k, v in value.items() if v is not None)
    return value


def _to_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        return [value] if value else []
    return value


Text = Annotated[Optional[str], BeforeValidator(_to_text)]


class PayloadModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# Shared parts
# ============================================================================

class Patient(PayloadModel):
    name: Text = None
    first_name: Text = None
    last_name: Text = None
    date_of_birth: Text = None
    age: Text = None
    gender: Text = None
    id: Text = None
    mrn: Text = None


class Party(PayloadModel):
    """A provider (ordering, prescribing, radiologist, measuring staff)."""
    name: Text = None
    title: Text = None
    specialty: Text = None
    npi: Text = None


class Facility(PayloadModel):
    name: Text = None
    address: Text = None
    phone: Text = None
    department: Text = None


class BasePayload(PayloadModel):
    document_name: Text = None
    confidence: Optional[Union[float, str]] = None
    patient: Optional[Patient] = None
    facility: Optional[Facility] = None


# ============================================================================
# Lab
# ============================================================================

class LabTest(PayloadModel):
    name: Text = None
    value: Text = None
    unit: Text = None
    reference_range: Text = None
    status: Text = None
    flags: Annotated[List[str], BeforeValidator(_to_list)] = Field(default_factory=list)
    notes: Text = None
    sub_tests: Annotated[List["LabTest"], BeforeValidator(_to_list)] = Field(default_factory=list)


class TestPanel(PayloadModel):
    name: Text = None
    category: Text = None
    tests: Annotated[List[LabTest], BeforeValidator(_to_list)] = Field(default_factory=list)


class LabPayload(BasePayload):
    report_type: Literal["lab"] = "lab"
    ordering_provider: Optional[Party] = None
    collection_date: Text = None
    report_date: Text = None
    accession_number: Text = None
    specimen_type: Text = None
    test_panels: Annotated[List[TestPanel], BeforeValidator(_to_list)] = Field(default_factory=list)
    tests: Annotated[List[LabTest], BeforeValidator(_to_list)] = Field(default_factory=list)
    clinical_info: Text = None
    comments: Text = None


# ============================================================================
# Prescription
# ============================================================================

class Medication(PayloadModel):
    name: Text = None
    generic_name: Text = None
    dosage: Text = None
    strength: Text = None
    form: Text = None
    frequency: Text = None
    duration: Text = None
    route: Text = None
    quantity: Text = None
    refills: Text = None
    instructions: Text = None
    indication: Text = None


class PrescriptionPayload(BasePayload):
    report_type: Literal["prescription"] = "prescription"
    prescribing_provider: Optional[Party] = None
    prescription_date: Text = None
    prescription_number: Text = None
    medications: Annotated[List[Medication], BeforeValidator(_to_list)] = Field(default_factory=list)
    diagnosis: Annotated[List[Any], BeforeValidator(_to_list)] = Field(default_factory=list)
    clinical_notes: Text = None


# ============================================================================
# Radiology
# ============================================================================

class RadiologyPayload(BasePayload):
    report_type: Literal["radiology"] = "radiology"
    radiologist: Optional[Party] = None
    ordering_provider: Optional[Party] = None
    study_date: Text = None
    report_date: Text = None
    accession_number: Text = None
    study_type: Text = None
    modality: Text = None
    body_part: Text = None
    technique: Text = None
    contrast: Optional[Dict[str, Any]] = None
    clinical_history: Text = None
    findings: List[str] = Field(default_factory=list)
    impression: Text = None
    recommendations: Annotated[List[str], BeforeValidator(_to_list)] = Field(default_factory=list)
    urgency: Text = None

    @field_validator("findings", mode="before")
    @classmethod
    def split_findings(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            parts = [p.strip() for p in re.split(r"\n+", value)]
            return [p for p in parts if p]
        findings = []
        for item in _to_list(value):
            if isinstance(item, dict):
                item = item.get("description") or item.get("finding")
            item = _to_text(item)
            if item:
                findings.append(item)
        return findings


# ============================================================================
# Vitals
# ============================================================================

VITAL_TYPES = {
    "blood_pressure", "heart_rate", "temperature", "respiratory_rate",
    "oxygen_saturation", "weight", "height", "bmi", "pain_scale",
}

VITAL_TYPE_ALIASES = {
    "bp": "blood_pressure",
    "pulse": "heart_rate",
    "hr": "heart_rate",
    "temp": "temperature",
    "rr": "respiratory_rate",
    "spo2": "oxygen_saturation",
    "o2_saturation": "oxygen_saturation",
    "body_mass_index": "bmi",
    "pain": "pain_scale",
}


def normalize_vital_type(value: Optional[str]) -> Optional[str]:
    """bloodPressure / Blood Pressure / BP -> blood_pressure."""
    if not value:
        return value
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value.strip())
    snake = re.sub(r"[\s\-]+", "_", snake).lower()
    # "SpO2" splits as "sp_o2"
    return VITAL_TYPE_ALIASES.get(snake, VITAL_TYPE_ALIASES.get(snake.replace("_", ""), snake))


class VitalReading(PayloadModel):
    type: Text = None
    value: Text = None
    unit: Text = None
    position: Text = None
    method: Text = None
    notes: Text = None

    @field_validator("type", mode="after")
    @classmethod
    def normalize_type(cls, value):
        return normalize_vital_type(value)


def _vitals_to_list(value: Any) -> Any:
    """Object form keyed by vital name -> list of typed readings."""
    if value is None:
        return []
    if not isinstance(value, dict):
        return value

    readings = []
    for key, reading in value.items():
        if reading is None:
            continue
        if not isinstance(reading, dict):
            reading = {"value": reading}
        reading = dict(reading)
        if "systolic" in reading or "diastolic" in reading:
            systolic = reading.pop("systolic", None)
            diastolic = reading.pop("diastolic", None)
            if systolic is not None and diastolic is not None:
                reading.setdefault("value", f"{systolic}/{diastolic}")
            else:
                reading.setdefault("value", systolic if systolic is not None else diastolic)
        reading.setdefault("type", key)
        readings.append(reading)
    return readings


class VitalsPayload(BasePayload):
    report_type: Literal["vitals"] = "vitals"
    measured_by: Optional[Party] = None
    measurement_date: Text = None
    vitals: Annotated[List[VitalReading], BeforeValidator(_vitals_to_list)] = Field(default_factory=list)
    notes: Text = None


# ============================================================================
# General
# ============================================================================

# Narrative fields turned into sections when the model skipped "sections"
NARRATIVE_SECTIONS = [
    ("chiefComplaint", "Chief Complaint", "subjective"),
    ("historyOfPresentIllness", "History of Present Illness", "subjective"),
    ("pastMedicalHistory", "Past Medical History", "history"),
    ("socialHistory", "Social History", "history"),
    ("familyHistory", "Family History", "history"),
    ("reviewOfSystems", "Review of Systems", "subjective"),
    ("physicalExamination", "Physical Examination", "objective"),
    ("assessment", "Assessment", "assessment"),
    ("plan", "Plan", "plan"),
]


class Section(PayloadModel):
    title: Text = None
    category: Text = None
    content: Text = None


class GeneralPayload(BasePayload):
    report_type: Literal["general"] = "general"
    provider: Optional[Party] = None
    document_date: Text = None
    document_type: Text = None
    sections: Annotated[List[Section], BeforeValidator(_to_list)] = Field(default_factory=list)
    medications: Annotated[List[Medication], BeforeValidator(_to_list)] = Field(default_factory=list)
    allergies: Annotated[List[Any], BeforeValidator(_to_list)] = Field(default_factory=list)
    diagnosis: Annotated[List[Any], BeforeValidator(_to_list)] = Field(default_factory=list)
    procedures: Annotated[List[Any], BeforeValidator(_to_list)] = Field(default_factory=list)
    follow_up: Text = None

    @model_validator(mode="before")
    @classmethod
    def sections_from_narrative(cls, data):
        if not isinstance(data, dict) or data.get("sections"):
            return data
        sections = []
        for key, title, category in NARRATIVE_SECTIONS:
            content = data.get(key)
            if content:
                sections.append({"title": title, "category": category, "content": _to_text(content)})
        if sections:
            data = {**data, "sections": sections}
        return data


# ============================================================================
# Union
# ============================================================================

class RawPayload(PayloadModel):
    """Model output that could not be parsed into a structured payload."""
    raw_response: str
    report_type: Optional[str] = None


LLMPayload = Annotated[
    Union[LabPayload, PrescriptionPayload, RadiologyPayload, VitalsPayload, GeneralPayload],
    Field(discriminator="report_type"),
]

_payload_adapter = TypeAdapter(LLMPayload)


def parse_payload(data: Dict[str, Any], report_type: ReportType):
    """
    Validate a parsed JSON object as the variant for report_type.

    The report type chosen for the prompt decides the variant; whatever
    reportType the model echoed back is overwritten.

    Raises:
        pydantic.ValidationError: data does not fit the variant
    """
    data = {**data, "reportType": report_type.value}
    return _payload_adapter.validate_python(data)
