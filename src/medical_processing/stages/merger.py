# ============================================================================
# src/medical_processing/stages/merger.py
# ============================================================================
"""
Result Merger

Combines the structured-extraction payload with entity-derived,
table-derived and form-derived candidates into one StructuredRecord.

The LLM list for each report type (tests, medications, diagnosis) is the
base. Each candidate is fuzzy-matched against the base list as it grows:
a match annotates the existing item with the extra source, no match
appends the candidate flagged with its source. Base items are never
removed.

Vital readings are only annotated with entity confidence. Radiology and
general records additionally carry an entityFindings summary of the
medications, conditions, procedures and providers the entity pass saw.

Fuzzy match = case-insensitive containment in either direction after
name normalization. Names shorter than MIN_FUZZY_MATCH_CHARS only match
exactly, and empty names never match.
"""

import copy
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..constants.terminology import normalize_term
from ..core.confidence import ConfidenceCalculator
from ..core.context import (
    EntityAttribute,
    ExtractedTable,
    FormField,
    ProcessingContext,
    Provenance,
    StructuredRecord,
    ValidatedEntity,
)
from ..core.stage_base import Stage
from ..utils.text_normalizer import normalize_name, remove_footnote_markers, split_value_unit
from .tagging import PROVIDER_KEYS

MEDICATION_TYPES = {"GENERIC_NAME", "BRAND_NAME", "MEDICATION"}
CONDITION_TYPES = {"DX_NAME", "MEDICAL_CONDITION"}
TEST_NAME_TYPES = {"TEST_NAME", "PROCEDURE_NAME"}
TEST_VALUE_TYPES = {"TEST_VALUE"}
VITAL_READING_TYPES = {"TEST_VALUE", "TEST_UNIT"}
TEST_UNIT_TYPES = {"TEST_UNIT"}
DOSAGE_TYPES = {"DOSAGE", "STRENGTH"}
FREQUENCY_TYPES = {"FREQUENCY"}
DURATION_TYPES = {"DURATION"}
PROVIDER_CATEGORY = "PROTECTED_HEALTH_INFORMATION"

# Keys that are metadata rather than extracted fields
_NON_FIELD_KEYS = {"reportType", "confidence"}


# ============================================================================
# Matching
# ============================================================================

def names_match(a: Optional[str], b: Optional[str], min_chars: int = 3) -> bool:
    left, right = normalize_name(a), normalize_name(b)
    if not left or not right:
        return False
    if left == right:
        return True
    if len(left) < min_chars or len(right) < min_chars:
        return False
    return left in right or right in left


def item_name(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return item.get("name") or item.get("description") or item.get("genericName")
    if isinstance(item, str):
        return item
    return None


def find_match(items: Sequence[Any], name: str, min_chars: int = 3, resolve_aliases: bool = False) -> Optional[int]:
    for index, item in enumerate(items):
        existing = item_name(item)
        if names_match(existing, name, min_chars):
            return index
        if resolve_aliases and existing and names_match(
            normalize_term(existing), normalize_term(name), min_chars
        ):
            return index
    return None


def add_source(item: Dict[str, Any], source: str):
    sources = item.setdefault("sources", [])
    if source not in sources:
        sources.append(source)


# ============================================================================
# Entity-derived candidates
# ============================================================================

def _nearest_after(
    entities: Sequence[ValidatedEntity],
    types: set,
    offset: Optional[int],
    window: int,
) -> Optional[ValidatedEntity]:
    """First entity of the given types starting within `window` chars after offset."""
    if offset is None:
        return None
    best = None
    for entity in entities:
        if entity.type not in types or entity.begin_offset is None:
            continue
        distance = entity.begin_offset - offset
        if 0 <= distance <= window and (best is None or entity.begin_offset < best.begin_offset):
            best = entity
    return best


def _attribute_or_nearby(
    entity: ValidatedEntity,
    entities: Sequence[ValidatedEntity],
    types: set,
    window: int,
) -> Optional[Union[EntityAttribute, ValidatedEntity]]:
    """Linked attribute of the given types, else the nearest such entity after this one."""
    for attribute_type in sorted(types):
        attribute = entity.entity.get_attribute(attribute_type)
        if attribute is not None:
            return attribute
    end = entity.end_offset if entity.end_offset is not None else entity.begin_offset
    return _nearest_after(entities, types, end, window)


def medication_candidates(entities: Sequence[ValidatedEntity], config: Dict[str, Any]) -> List[Dict[str, Any]]:
    dosage_window = config.get("dosage_window_chars", 50)
    frequency_window = config.get("frequency_window_chars", 100)

    candidates = []
    for entity in entities:
        if entity.type not in MEDICATION_TYPES:
            continue
        item: Dict[str, Any] = {
            "name": entity.text,
            "confidence": entity.confidence,
        }
        dosage = _attribute_or_nearby(entity, entities, DOSAGE_TYPES, dosage_window)
        if dosage is not None:
            item["dosage"] = dosage.text
        frequency = _attribute_or_nearby(entity, entities, FREQUENCY_TYPES, frequency_window)
        if frequency is not None:
            item["frequency"] = frequency.text
        duration = _attribute_or_nearby(entity, entities, DURATION_TYPES, frequency_window)
        if duration is not None:
            item["duration"] = duration.text
        if entity.codes:
            item["codes"] = dict(entity.codes)
        candidates.append(item)
    return candidates


def lab_test_candidates(entities: Sequence[ValidatedEntity], config: Dict[str, Any]) -> List[Dict[str, Any]]:
    value_window = config.get("test_value_window_chars", 200)
    unit_window = config.get("test_unit_window_chars", 50)

    candidates = []
    for entity in entities:
        if entity.type not in TEST_NAME_TYPES:
            continue
        item: Dict[str, Any] = {
            "name": entity.text,
            "confidence": entity.confidence,
        }
        value = _attribute_or_nearby(entity, entities, TEST_VALUE_TYPES, value_window)
        if value is not None:
            item["value"] = value.text
            unit = entity.entity.get_attribute("TEST_UNIT")
            if unit is None:
                unit = _nearest_after(entities, TEST_UNIT_TYPES, value.end_offset, unit_window)
            if unit is not None:
                item["unit"] = unit.text
        if entity.codes:
            item["codes"] = dict(entity.codes)
        candidates.append(item)
    return candidates


def condition_candidates(entities: Sequence[ValidatedEntity]) -> List[Dict[str, Any]]:
    candidates = []
    for entity in entities:
        if entity.type not in CONDITION_TYPES:
            continue
        item: Dict[str, Any] = {
            "description": entity.text,
            "confidence": entity.confidence,
        }
        if entity.codes.get("icd10"):
            item["code"] = entity.codes["icd10"]
        if entity.codes:
            item["codes"] = dict(entity.codes)
        candidates.append(item)
    return candidates


def entity_findings(entities: Sequence[ValidatedEntity]) -> Dict[str, List[Dict[str, Any]]]:
    """Name/confidence summary of entities grouped the way reviewers read them."""
    findings: Dict[str, List[Dict[str, Any]]] = {
        "medications": [],
        "conditions": [],
        "procedures": [],
        "providers": [],
    }
    for entity in entities:
        if entity.type in MEDICATION_TYPES:
            group = "medications"
        elif entity.type in CONDITION_TYPES:
            group = "conditions"
        elif entity.type in TEST_NAME_TYPES:
            group = "procedures"
        elif entity.category == PROVIDER_CATEGORY and entity.type == "NAME":
            group = "providers"
        else:
            continue
        findings[group].append({"name": entity.text, "confidence": entity.confidence})
    return {group: items for group, items in findings.items() if items}


def _readings_overlap(a: Any, b: Any) -> bool:
    left = "" if a is None else str(a).strip().lower()
    right = "" if b is None else str(b).strip().lower()
    if not left or not right:
        return False
    return left in right or right in left


def annotate_vitals(vitals: List[Any], entities: Sequence[ValidatedEntity]) -> int:
    """
    Attach entity confidence to vital readings whose value an entity also saw.

    Entity extraction has no vital-sign types, so readings are only
    annotated, never added. Returns the number annotated.
    """
    readings = [e for e in entities if e.type in VITAL_READING_TYPES]
    annotated = 0
    for vital in vitals:
        if not isinstance(vital, dict):
            continue
        match = next((e for e in readings if _readings_overlap(e.text, vital.get("value"))), None)
        if match is None:
            continue
        vital.setdefault(f"{Provenance.ENTITY.value}Confidence", match.confidence)
        add_source(vital, Provenance.LLM.value)
        add_source(vital, Provenance.ENTITY.value)
        annotated += 1
    return annotated


# ============================================================================
# Table / form candidates
# ============================================================================

def _find_column(headers: List[str], keywords: Sequence[str]) -> Optional[int]:
    for index, header in enumerate(headers):
        header_lower = (header or "").lower()
        if any(keyword in header_lower for keyword in keywords):
            return index
    return None


def table_test_rows(table: ExtractedTable) -> List[Dict[str, Any]]:
    """Lab rows from a table using header-name heuristics."""
    name_col = _find_column(table.headers, ("test", "name", "parameter"))
    value_col = _find_column(table.headers, ("result", "value", "level"))
    range_col = _find_column(table.headers, ("range", "reference"))
    unit_col = _find_column(table.headers, ("unit",))

    if name_col is None or value_col is None or name_col == value_col:
        return []

    rows = []
    for row_index, row in enumerate(table.rows):
        if name_col >= len(row) or value_col >= len(row):
            continue
        name = remove_footnote_markers(row[name_col])
        raw_value = (row[value_col] or "").strip()
        if not name or not raw_value:
            continue

        value, unit = split_value_unit(raw_value)
        item: Dict[str, Any] = {"name": name, "value": value}
        if unit_col is not None and unit_col < len(row) and row[unit_col].strip():
            item["unit"] = row[unit_col].strip()
        elif unit:
            item["unit"] = unit
        if range_col is not None and range_col < len(row) and row[range_col].strip():
            item["referenceRange"] = row[range_col].strip()

        # Grid row 0 is the header row
        item["confidence"] = min(
            table.get_cell_confidence(row_index + 1, name_col),
            table.get_cell_confidence(row_index + 1, value_col),
        )
        rows.append(item)
    return rows


def patient_from_forms(forms: Sequence[FormField]) -> Dict[str, str]:
    patient: Dict[str, str] = {}
    for form in forms:
        key = normalize_name(form.key)
        value = (form.value or "").strip()
        if not value:
            continue
        words = set(key.replace(":", " ").replace(".", " ").split())
        if "patient" in key and "name" in key:
            patient.setdefault("name", value)
        elif "dob" in words or "birth" in key:
            patient.setdefault("dateOfBirth", value)
        elif "mrn" in words or "id" in words:
            patient.setdefault("id", value)
    return patient


# ============================================================================
# Stage
# ============================================================================

class ResultMerger(Stage):
    """
    Merge LLM payload with entity, table and form candidates.

    Builds context.record; nothing is persisted here.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.min_match_chars = self.config.get("min_fuzzy_match_chars", 3)
        self.calculator = ConfidenceCalculator(self.config)

    def get_name(self) -> str:
        return "ResultMerger"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        report_type = context.report_type or "general"
        payload = copy.deepcopy(context.llm_payload)
        provenance: Dict[str, List[str]] = {
            key: [Provenance.LLM.value]
            for key, value in payload.items()
            if key not in _NON_FIELD_KEYS and value not in (None, "", [], {})
        }
        added: Dict[str, int] = {}

        if not context.llm_degraded:
            entities = context.validated_entities
            if report_type == "lab":
                candidates = [(c, Provenance.ENTITY) for c in lab_test_candidates(entities, self.config)]
                if context.ocr:
                    for table in context.ocr.tables:
                        candidates.extend((row, Provenance.TABLE) for row in table_test_rows(table))
                added["tests"] = self._merge_lab_tests(payload, candidates, provenance)

            elif report_type == "vitals":
                annotated = annotate_vitals(payload.get("vitals") or [], entities)
                if annotated:
                    self._add_provenance(provenance, "vitals", Provenance.ENTITY)

            else:
                added["medications"] = self._merge_list(
                    payload, "medications",
                    [(c, Provenance.ENTITY) for c in medication_candidates(entities, self.config)],
                    provenance, resolve_aliases=True,
                )
                added["diagnosis"] = self._merge_list(
                    payload, "diagnosis",
                    [(c, Provenance.ENTITY) for c in condition_candidates(entities)],
                    provenance,
                )
                # Radiology and general payloads have no slot for procedures or providers
                if report_type != "prescription":
                    findings = entity_findings(entities)
                    if findings:
                        payload["entityFindings"] = findings
                        self._add_provenance(provenance, "entityFindings", Provenance.ENTITY)

            if context.ocr and context.ocr.forms:
                self._merge_patient_forms(payload, context.ocr.forms, provenance)

        record = self._build_record(context, report_type, payload, provenance)
        context.record = record

        return {
            "decision": "merged",
            "confidence": record.confidence,
            "report_type": report_type,
            "items_added": {k: v for k, v in added.items() if v},
            "degraded": record.degraded,
        }

    # ------------------------------------------------------------------
    # List merging
    # ------------------------------------------------------------------

    def _merge_candidates(
        self,
        base: List[Any],
        append_to: List[Any],
        candidates,
        resolve_aliases: bool = False,
    ) -> int:
        """Merge into `base` (searched) and append unmatched to `append_to`."""
        added = 0
        for candidate, source in candidates:
            index = find_match(base, candidate.get("name") or candidate.get("description"),
                               self.min_match_chars, resolve_aliases)
            if index is None:
                item = {**candidate, "sources": [source.value]}
                base.append(item)
                if append_to is not base:
                    append_to.append(item)
                added += 1
                continue

            existing = base[index]
            if not isinstance(existing, dict):
                # Plain string items are promoted so they can carry sources
                existing = {"description": existing, "sources": [Provenance.LLM.value]}
                base[index] = existing
            add_source(existing, source.value)
            for key, value in candidate.items():
                if key == "confidence":
                    existing.setdefault(f"{source.value}Confidence", value)
                elif value and not existing.get(key):
                    existing[key] = value
        return added

    def _merge_list(
        self,
        payload: Dict[str, Any],
        key: str,
        candidates,
        provenance: Dict[str, List[str]],
        resolve_aliases: bool = False,
    ) -> int:
        if not candidates:
            return 0
        items = payload.setdefault(key, [])
        for item in items:
            if isinstance(item, dict):
                add_source(item, Provenance.LLM.value)

        added = self._merge_candidates(items, items, candidates, resolve_aliases)
        for source in {source.value for _, source in candidates}:
            if source not in provenance.setdefault(key, []):
                provenance[key].append(source)
        return added

    @staticmethod
    def _add_provenance(provenance: Dict[str, List[str]], key: str, source: Provenance):
        sources = provenance.setdefault(key, [])
        if source.value not in sources:
            sources.append(source.value)

    def _merge_lab_tests(self, payload: Dict[str, Any], candidates, provenance) -> int:
        if not candidates:
            return 0

        # Panel tests, their sub-tests and ungrouped tests all count as base
        flattened: List[Dict[str, Any]] = []
        for panel in payload.get("testPanels", []):
            for test in panel.get("tests", []):
                flattened.append(test)
                flattened.extend(test.get("subTests", []))
        ungrouped = payload.setdefault("tests", [])
        flattened.extend(ungrouped)
        for item in flattened:
            add_source(item, Provenance.LLM.value)

        added = self._merge_candidates(flattened, ungrouped, candidates)
        for source in {source.value for _, source in candidates}:
            if source not in provenance.setdefault("tests", []):
                provenance["tests"].append(source)
        return added

    @staticmethod
    def _merge_patient_forms(payload, forms, provenance):
        form_patient = patient_from_forms(forms)
        if not form_patient:
            return
        patient = payload.get("patient") or {}
        filled = False
        for key, value in form_patient.items():
            if not patient.get(key):
                patient[key] = value
                filled = True
        payload["patient"] = patient
        if filled:
            sources = provenance.setdefault("patient", [])
            if Provenance.FORM.value not in sources:
                sources.append(Provenance.FORM.value)

    # ------------------------------------------------------------------
    # Record assembly
    # ------------------------------------------------------------------

    def _build_record(
        self,
        context: ProcessingContext,
        report_type: str,
        payload: Dict[str, Any],
        provenance: Dict[str, List[str]],
    ) -> StructuredRecord:
        entities = context.validated_entities
        entity_confidence = self.calculator.entity_confidence(entities)
        blend = self.calculator.blend(
            ocr_confidence=context.ocr_confidence,
            entity_confidence=entity_confidence,
            llm_confidence=context.llm_confidence,
            entity_count=len(entities),
        )

        provider: Dict[str, Any] = {}
        for key in PROVIDER_KEYS:
            if isinstance(payload.get(key), dict) and payload[key].get("name"):
                provider = {**payload[key], "role": key}
                break

        relationships = [asdict(r) for r in context.entities.relationships] if context.entities else []

        return StructuredRecord(
            report_type=report_type,
            payload=payload,
            document_name=payload.get("documentName") or Path(context.file_path).name,
            patient=payload.get("patient") or {},
            provider=provider,
            facility=payload.get("facility") or {},
            confidence=blend["overall_score"],
            stage_confidence=blend["components"],
            provenance=provenance,
            entities=[e.to_dict() for e in entities],
            relationships=relationships,
            degraded=context.llm_degraded,
            processing_pipeline=[e["stage"] for e in context.stage_executions],
            stage_timings=dict(context.stage_timings),
        )
