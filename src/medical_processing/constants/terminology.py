# ============================================================================
# src/medical_processing/constants/terminology.py
# ============================================================================
"""
Medical coding vocabularies.

Loads SNOMED-CT, LOINC, RxNorm, ICD-10 and CPT lookups plus drug and unit
aliases from the knowledge base JSON files. All keys are lowercase terms.
"""

import json
from pathlib import Path
from typing import Dict, List

_knowledge_dir = Path(__file__).parent.parent / "knowledge"


def _load(name: str) -> dict:
    with open(_knowledge_dir / name, encoding="utf-8") as f:
        return json.load(f)


SNOMED_CODES: Dict[str, str] = _load("snomed.json")
LOINC_CODES: Dict[str, str] = _load("loinc.json")
ICD10_CODES: Dict[str, str] = _load("icd10.json")
CPT_CODES: Dict[str, str] = _load("cpt.json")
UNIT_ALIASES: Dict[str, str] = _load("units.json")

RXNORM_MAPPINGS = _load("rxnorm.json")

# Generic name -> RxNorm code, and brand/salt names -> generic name
RXNORM_CODES: Dict[str, str] = {}
DRUG_ALIASES: Dict[str, str] = dict(_load("drug_aliases.json"))

for code, data in RXNORM_MAPPINGS.items():
    generic_name = data.get("generic_name", "").lower()
    if generic_name:
        RXNORM_CODES[generic_name] = code
    for brand in data.get("brand_names", []):
        DRUG_ALIASES[brand.lower()] = generic_name

VOCABULARIES: Dict[str, Dict[str, str]] = {
    "snomed": SNOMED_CODES,
    "loinc": LOINC_CODES,
    "rxnorm": RXNORM_CODES,
    "icd10": ICD10_CODES,
    "cpt": CPT_CODES,
}

# Every known term, for partial-match suggestions
ALL_TERMS: List[str] = list(dict.fromkeys(
    term for vocabulary in VOCABULARIES.values() for term in vocabulary
))


def normalize_term(text: str) -> str:
    """Lowercase, trim, and resolve drug aliases (brand -> generic)."""
    normalized = " ".join(text.lower().split())
    return DRUG_ALIASES.get(normalized, normalized)


def normalize_unit(unit: str) -> str:
    if not unit:
        return unit
    return UNIT_ALIASES.get(unit.strip().lower(), unit.strip())
