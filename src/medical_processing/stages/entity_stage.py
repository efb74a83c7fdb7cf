# ============================================================================
# src/medical_processing/stages/entity_stage.py
# ============================================================================
"""
Medical Entity Stage

Sends the OCR text to the medical NLP service. Pure transformation:
the same text always yields the same request.
"""

from typing import Any, Dict, Optional

from ..core.stage_base import Stage
from ..core.context import ProcessingContext, EntityExtraction
from ..services.base import EntityExtractor


class EntityExtractionStage(Stage):

    def __init__(self, extractor: EntityExtractor, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.extractor = extractor

    def get_name(self) -> str:
        return "EntityExtractionStage"

    async def execute(self, context: ProcessingContext) -> Dict[str, Any]:
        if not context.text.strip():
            context.entities = EntityExtraction()
            return {"decision": "skipped", "confidence": 0.0, "entity_count": 0}

        extraction = await self.extractor.extract_entities(context.text)
        context.entities = extraction

        categories: Dict[str, int] = {}
        for entity in extraction.entities:
            categories[entity.category] = categories.get(entity.category, 0) + 1

        return {
            "decision": "entities_extracted",
            "confidence": extraction.confidence,
            "entity_count": len(extraction.entities),
            "relationship_count": len(extraction.relationships),
            "categories": categories,
        }
