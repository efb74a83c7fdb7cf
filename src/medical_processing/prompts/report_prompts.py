# ============================================================================
# src/medical_processing/prompts/report_prompts.py
# ============================================================================
"""
Structured-extraction prompt templates.

One strict-JSON schema per report type. Every schema asks for a
human-readable documentName and a self-reported confidence (0-100).
"""

from typing import Dict

from ..constants.report_types import ReportType


_PATIENT_SCHEMA = """  "patient": {
    "name": "<full name>",
    "dateOfBirth": "<YYYY-MM-DD>",
    "age": <number>,
    "gender": "<M/F/Other>",
    "id": "<patient ID>",
    "mrn": "<medical record number>"
  },"""

_FACILITY_SCHEMA = """  "facility": {
    "name": "<facility name>",
    "address": "<full address>",
    "phone": "<phone number>",
    "department": "<department>"
  },"""

_COMMON_RULES = """
Rules:
- Return ONLY one valid JSON object, no markdown or explanations
- documentName: a short human-readable title, e.g. "Lipid Panel - City Lab - 2024-03-02"
- Use null or [] when data is missing; never invent values
- Preserve values exactly as printed
- Convert dates to YYYY-MM-DD where possible
- confidence: 0-100, based on completeness and legibility of the document"""


LAB_PROMPT = f"""Extract all lab result information from this medical document. Return JSON with this exact structure:

{{
  "reportType": "lab",
  "documentName": "<descriptive name>",
  "confidence": <number 0-100>,
{_PATIENT_SCHEMA}
  "orderingProvider": {{"name": "<full name>", "title": "<Dr., MD...>", "specialty": "<specialty>", "npi": "<NPI>"}},
{_FACILITY_SCHEMA}
  "collectionDate": "<YYYY-MM-DD HH:mm>",
  "reportDate": "<YYYY-MM-DD HH:mm>",
  "accessionNumber": "<accession/specimen number>",
  "specimenType": "<blood, urine...>",
  "testPanels": [
    {{
      "name": "<panel name, e.g. Complete Blood Count>",
      "category": "<e.g. Hematology>",
      "tests": [
        {{
          "name": "<test name>",
          "value": "<numeric value or text result>",
          "unit": "<unit>",
          "referenceRange": "<normal range>",
          "status": "<normal/abnormal/critical/high/low>",
          "flags": ["<H, L, *...>"],
          "subTests": [
            {{"name": "<name>", "value": "<value>", "unit": "<unit>", "referenceRange": "<range>", "status": "<status>"}}
          ]
        }}
      ]
    }}
  ],
  "tests": [
    {{"name": "<test not belonging to a panel>", "value": "<value>", "unit": "<unit>", "referenceRange": "<range>", "status": "<status>"}}
  ],
  "clinicalInfo": "<clinical indication>",
  "comments": "<lab comments>"
}}
{_COMMON_RULES}
- Extract EVERY test row, including panel sub-components (WBC, RBC, Hemoglobin...)
- Keep the hierarchy: panels contain tests, tests may contain sub-tests
- Determine status from reference ranges and flags"""


PRESCRIPTION_PROMPT = f"""Extract all prescription information from this medical document. Return JSON with this exact structure:

{{
  "reportType": "prescription",
  "documentName": "<descriptive name>",
  "confidence": <number 0-100>,
{_PATIENT_SCHEMA}
  "prescribingProvider": {{"name": "<full name>", "title": "<Dr., MD...>", "specialty": "<specialty>", "npi": "<NPI>", "license": "<license number>"}},
{_FACILITY_SCHEMA}
  "prescriptionDate": "<YYYY-MM-DD>",
  "prescriptionNumber": "<number>",
  "medications": [
    {{
      "name": "<medication name>",
      "genericName": "<generic name>",
      "dosage": "<dose amount>",
      "strength": "<strength>",
      "form": "<tablet/capsule/liquid...>",
      "frequency": "<how often>",
      "duration": "<how long>",
      "route": "<oral/IV/topical...>",
      "quantity": "<amount prescribed>",
      "refills": <number>,
      "instructions": "<sig>",
      "indication": "<reason>"
    }}
  ],
  "diagnosis": ["<diagnosis>"],
  "clinicalNotes": "<notes>"
}}
{_COMMON_RULES}
- Extract EVERY medication with dosage, frequency and duration
- Include both brand and generic names when shown"""


RADIOLOGY_PROMPT = f"""Extract all radiology report information from this medical document. Return JSON with this exact structure:

{{
  "reportType": "radiology",
  "documentName": "<descriptive name>",
  "confidence": <number 0-100>,
{_PATIENT_SCHEMA}
  "radiologist": {{"name": "<full name>", "title": "<Dr., MD...>", "specialty": "<subspecialty>", "npi": "<NPI>"}},
  "orderingProvider": {{"name": "<full name>", "title": "<Dr., MD...>", "specialty": "<specialty>"}},
{_FACILITY_SCHEMA}
  "studyDate": "<YYYY-MM-DD HH:mm>",
  "reportDate": "<YYYY-MM-DD HH:mm>",
  "accessionNumber": "<accession number>",
  "studyType": "<type of study>",
  "modality": "<CT/MRI/X-ray/Ultrasound...>",
  "bodyPart": "<anatomical area>",
  "technique": "<technique details>",
  "contrast": {{"used": <true/false>, "type": "<contrast type>", "amount": "<amount>"}},
  "clinicalHistory": "<indication>",
  "findings": ["<one finding per entry>"],
  "impression": "<radiologist impression>",
  "recommendations": ["<follow-up recommendation>"],
  "urgency": "<routine/urgent/stat>"
}}
{_COMMON_RULES}
- Keep findings and impression separate"""


VITALS_PROMPT = f"""Extract all vital sign measurements from this medical document. Return JSON with this exact structure:

{{
  "reportType": "vitals",
  "documentName": "<descriptive name>",
  "confidence": <number 0-100>,
{_PATIENT_SCHEMA}
  "measuredBy": {{"name": "<provider name>", "title": "<RN/MD...>", "department": "<unit>"}},
{_FACILITY_SCHEMA}
  "measurementDate": "<YYYY-MM-DD HH:mm>",
  "vitals": [
    {{
      "type": "<blood_pressure/heart_rate/temperature/respiratory_rate/oxygen_saturation/weight/height/bmi/pain_scale>",
      "value": "<reading, e.g. 120/80 or 72>",
      "unit": "<mmHg, bpm, F, C, %, kg, lbs, cm, in...>",
      "position": "<sitting/standing/lying>",
      "method": "<oral/axillary/scale...>",
      "notes": "<measurement context>"
    }}
  ],
  "notes": "<additional notes>"
}}
{_COMMON_RULES}
- One entry per measurement; repeat a type when it was measured more than once
- Report blood pressure value as systolic/diastolic"""


GENERAL_PROMPT = f"""Extract all medical information from this document. Return JSON with this exact structure:

{{
  "reportType": "general",
  "documentName": "<descriptive name>",
  "confidence": <number 0-100>,
{_PATIENT_SCHEMA}
  "provider": {{"name": "<full name>", "title": "<Dr., MD...>", "specialty": "<specialty>", "npi": "<NPI>"}},
{_FACILITY_SCHEMA}
  "documentDate": "<YYYY-MM-DD>",
  "documentType": "<consultation/progress note/discharge summary...>",
  "sections": [
    {{
      "title": "<section heading as printed>",
      "category": "<subjective/objective/assessment/plan/history/medications/allergies/other>",
      "content": "<section text>"
    }}
  ],
  "medications": [{{"name": "<name>", "dosage": "<dosage>", "frequency": "<frequency>", "instructions": "<instructions>"}}],
  "allergies": [{{"allergen": "<allergen>", "reaction": "<reaction>", "severity": "<mild/moderate/severe>"}}],
  "diagnosis": [{{"code": "<ICD code>", "description": "<description>", "type": "<primary/secondary>"}}],
  "procedures": [{{"code": "<CPT code>", "description": "<description>", "date": "<YYYY-MM-DD>"}}],
  "followUp": "<follow-up instructions>"
}}
{_COMMON_RULES}
- Split the document into its sections (chief complaint, HPI, exam, assessment, plan...)"""


REPORT_PROMPTS: Dict[ReportType, str] = {
    ReportType.LAB: LAB_PROMPT,
    ReportType.PRESCRIPTION: PRESCRIPTION_PROMPT,
    ReportType.RADIOLOGY: RADIOLOGY_PROMPT,
    ReportType.VITALS: VITALS_PROMPT,
    ReportType.GENERAL: GENERAL_PROMPT,
}


def get_prompt(report_type: ReportType) -> str:
    return REPORT_PROMPTS.get(report_type, GENERAL_PROMPT)
