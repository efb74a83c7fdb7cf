# ============================================================================
# src/medical_processing/core/confidence.py
# ============================================================================
"""
Confidence Scoring and Aggregation

Provides utilities for:
- Normalizing self-reported confidence (0-1 or 0-100) into [0, 1]
- Blending OCR, entity/validation and LLM confidence into one score
- Applying record validation penalties
- Determining confidence levels
"""

from typing import List, Dict, Any, Optional, Sequence
from dataclasses import dataclass
import statistics

from .context.enums import ConfidenceLevel
from .context.extraction import ValidatedEntity


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def normalize_confidence(value: Any, default: float = 0.0) -> float:
    """
    Coerce a model-reported confidence into [0, 1].

    Values above 1 are read as percentages (85 -> 0.85). Anything that is not
    a number falls back to `default`.
    """
    if isinstance(value, bool) or value is None:
        return clamp(default)
    try:
        score = float(str(value).strip().rstrip("%"))
    except ValueError:
        return clamp(default)
    if score != score:  # NaN
        return clamp(default)
    if score > 1.0:
        score = score / 100.0
    return clamp(score)


@dataclass
class ConfidenceThresholds:
    """Confidence level thresholds"""
    high: float = 0.85
    medium: float = 0.70

    def get_level(self, score: float) -> ConfidenceLevel:
        if score >= self.high:
            return ConfidenceLevel.HIGH
        elif score >= self.medium:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW


class ConfidenceCalculator:
    """
    Weighted blend of stage confidences.

    Weights depend only on how many entities were found, never on the
    confidence values themselves, so raising any one stage's confidence can
    only raise the blend.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        thresholds: Optional[ConfidenceThresholds] = None
    ):
        config = config or {}
        self.ocr_weight = config.get("ocr_confidence_weight", 0.3)
        self.entity_weight_rich = config.get("entity_weight_rich", 0.4)
        self.entity_weight_sparse = config.get("entity_weight_sparse", 0.2)
        self.sparse_threshold = config.get("sparse_entity_threshold", 3)
        self.thresholds = thresholds or ConfidenceThresholds()

    def stage_weights(self, entity_count: int) -> Dict[str, float]:
        if entity_count <= 0:
            entity_weight = 0.0
        elif entity_count < self.sparse_threshold:
            entity_weight = self.entity_weight_sparse
        else:
            entity_weight = self.entity_weight_rich

        ocr_weight = clamp(self.ocr_weight)
        entity_weight = min(entity_weight, 1.0 - ocr_weight)
        return {
            "ocr": ocr_weight,
            "entity": entity_weight,
            "llm": 1.0 - ocr_weight - entity_weight,
        }

    @staticmethod
    def entity_confidence(entities: Sequence[ValidatedEntity]) -> float:
        """Mean of extraction scores blended evenly with mean validation confidence."""
        if not entities:
            return 0.0
        extraction = statistics.mean(clamp(e.confidence) for e in entities)
        validation = statistics.mean(clamp(e.validation_confidence) for e in entities)
        return 0.5 * extraction + 0.5 * validation

    def blend(
        self,
        ocr_confidence: float,
        entity_confidence: float,
        llm_confidence: float,
        entity_count: int,
    ) -> Dict[str, Any]:
        """
        Returns:
            Dict containing:
                - overall_score: blended score in [0, 1]
                - level: ConfidenceLevel
                - components: clamped per-stage scores
                - weights: weights used
        """
        components = {
            "ocr": clamp(ocr_confidence),
            "entity": clamp(entity_confidence),
            "llm": clamp(llm_confidence),
        }
        weights = self.stage_weights(entity_count)
        # Weights are derived by subtraction; rounding absorbs float drift
        overall = clamp(round(sum(components[k] * weights[k] for k in components), 4))

        return {
            "overall_score": overall,
            "level": self.thresholds.get_level(overall),
            "components": components,
            "weights": weights,
        }

    @staticmethod
    def apply_validation_penalty(
        confidence: float,
        errors: List[str],
        warnings: List[str]
    ) -> float:
        """Errors halve the score, warnings take off 20%."""
        if errors:
            confidence *= 0.5
        elif warnings:
            confidence *= 0.8
        return clamp(confidence)


def get_confidence_level(score: float) -> ConfidenceLevel:
    return ConfidenceThresholds().get_level(score)
