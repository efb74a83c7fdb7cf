# ============================================================================
# FILE: tests/unit/test_confidence.py
# ============================================================================
"""
Unit tests for confidence normalization and blending
"""

import pytest

from medical_processing.core.confidence import (
    ConfidenceCalculator,
    clamp,
    get_confidence_level,
    normalize_confidence,
)
from medical_processing.core.context import ConfidenceLevel, ValidatedEntity

from conftest import make_entity


@pytest.mark.parametrize("raw, expected", [
    (0.85, 0.85),
    (85, 0.85),
    ("92", 0.92),
    ("75%", 0.75),
    (1, 1.0),
    (250, 1.0),
    (-3, 0.0),
])
def test_normalize_confidence(raw, expected):
    assert normalize_confidence(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "high", True, float("nan")])
def test_normalize_confidence_falls_back(raw):
    assert normalize_confidence(raw, default=0.8) == 0.8


def test_blend_stays_in_unit_interval():
    calculator = ConfidenceCalculator()

    high = calculator.blend(5.0, 2.0, 3.0, entity_count=10)
    low = calculator.blend(-1.0, -2.0, -0.5, entity_count=0)

    assert high["overall_score"] == 1.0
    assert low["overall_score"] == 0.0


@pytest.mark.parametrize("entity_count", [0, 1, 5])
def test_full_confidence_blends_to_one(entity_count):
    result = ConfidenceCalculator().blend(1.0, 1.0, 1.0, entity_count)

    assert result["overall_score"] == 1.0
    assert sum(result["weights"].values()) == pytest.approx(1.0)


@pytest.mark.parametrize("entity_count", [0, 1, 5])
def test_blend_is_monotonic(entity_count):
    calculator = ConfidenceCalculator()
    base = calculator.blend(0.6, 0.6, 0.6, entity_count)["overall_score"]

    for component in ("ocr", "entity", "llm"):
        scores = {"ocr": 0.6, "entity": 0.6, "llm": 0.6, component: 0.9}
        raised = calculator.blend(
            scores["ocr"], scores["entity"], scores["llm"], entity_count
        )["overall_score"]
        assert raised >= base


def test_weights_follow_entity_count():
    calculator = ConfidenceCalculator({"ocr_confidence_weight": 0.3})

    none = calculator.stage_weights(0)
    sparse = calculator.stage_weights(2)
    rich = calculator.stage_weights(10)

    assert none["entity"] == 0.0
    assert sparse["entity"] == 0.2
    assert rich["entity"] == 0.4
    for weights in (none, sparse, rich):
        assert sum(weights.values()) == pytest.approx(1.0)


def test_entity_confidence():
    entities = [
        ValidatedEntity(entity=make_entity("Lisinopril", "GENERIC_NAME", confidence=0.9),
                        normalized_text="lisinopril", validation_confidence=0.9),
        ValidatedEntity(entity=make_entity("Foo", "GENERIC_NAME", confidence=0.7),
                        normalized_text="foo", validation_confidence=0.5),
    ]

    assert ConfidenceCalculator.entity_confidence(entities) == pytest.approx(0.75)
    assert ConfidenceCalculator.entity_confidence([]) == 0.0


def test_validation_penalty():
    assert ConfidenceCalculator.apply_validation_penalty(0.8, ["missing"], ["w"]) == pytest.approx(0.4)
    assert ConfidenceCalculator.apply_validation_penalty(0.8, [], ["w"]) == pytest.approx(0.64)
    assert ConfidenceCalculator.apply_validation_penalty(0.8, [], []) == pytest.approx(0.8)


def test_levels():
    assert get_confidence_level(0.9) == ConfidenceLevel.HIGH
    assert get_confidence_level(0.75) == ConfidenceLevel.MEDIUM
    assert get_confidence_level(0.2) == ConfidenceLevel.LOW
    assert clamp(1.2) == 1.0
