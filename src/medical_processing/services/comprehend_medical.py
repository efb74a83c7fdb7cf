# ============================================================================
# src/medical_processing/services/comprehend_medical.py
# ============================================================================
"""
AWS Comprehend Medical entity extraction (DetectEntitiesV2).

Entities keep their linked attributes (dosage, frequency, test value...),
and each attribute link is also surfaced as an EntityRelationship so the
merger can pair values with names without re-scanning the text.
"""

import asyncio
import logging
import statistics
import time
from typing import Any, Dict, List

import boto3
import botocore.exceptions

from .base import EntityExtractor
from ..core.context.enums import ErrorCategory
from ..core.context.extraction import (
    EntityAttribute,
    EntityExtraction,
    EntityRelationship,
    ExtractedEntity,
)
from ..utils.exceptions import CredentialsError, ServiceError, TransientServiceError

logger = logging.getLogger(__name__)

# botocore errors raised before a response arrives; everything else is a bad request
_TIMEOUT_ERRORS = (
    botocore.exceptions.ReadTimeoutError,
    botocore.exceptions.ConnectTimeoutError,
)
_CONNECTION_ERRORS = _TIMEOUT_ERRORS + (
    botocore.exceptions.EndpointConnectionError,
    botocore.exceptions.ConnectionClosedError,
)

TRANSIENT_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "InternalServerException",
    "ServiceUnavailableException",
}


class ComprehendMedicalExtractor(EntityExtractor):

    def __init__(
        self,
        region: str = "us-east-1",
        max_chars: int = 20000,
        client: Any = None,
    ):
        self.region = region
        self.max_chars = max_chars
        self._client = client

    @property
    def client(self):
        """Lazy load the boto3 client."""
        if self._client is None:
            self._client = boto3.client("comprehendmedical", region_name=self.region)
        return self._client

    async def extract_entities(self, text: str) -> EntityExtraction:
        start = time.time()
        if not text.strip():
            return EntityExtraction()

        if len(text) > self.max_chars:
            logger.warning(f"Truncating entity input from {len(text)} to {self.max_chars} chars")
            text = text[:self.max_chars]

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, lambda: self.client.detect_entities_v2(Text=text)
            )
        except botocore.exceptions.NoCredentialsError as e:
            raise CredentialsError(f"AWS credentials not configured: {e}") from e
        except botocore.exceptions.ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in TRANSIENT_CODES:
                raise TransientServiceError(f"Comprehend Medical {code}: {e}", service="comprehend_medical") from e
            raise ServiceError(f"Comprehend Medical {code}: {e}", service="comprehend_medical") from e
        except _CONNECTION_ERRORS as e:
            category = ErrorCategory.TIMEOUT if isinstance(e, _TIMEOUT_ERRORS) else ErrorCategory.NETWORK
            raise TransientServiceError(
                f"Comprehend Medical network error: {e}", service="comprehend_medical", category=category
            ) from e
        except botocore.exceptions.BotoCoreError as e:
            raise ServiceError(f"Comprehend Medical request failed: {e}", service="comprehend_medical") from e

        extraction = parse_entities_response(response)
        extraction.processing_time = time.time() - start
        logger.info(
            f"Comprehend Medical found {len(extraction.entities)} entities, "
            f"{len(extraction.relationships)} relationships"
        )
        return extraction


def _parse_attribute(raw: Dict[str, Any]) -> EntityAttribute:
    return EntityAttribute(
        type=raw.get("Type", ""),
        text=raw.get("Text", ""),
        score=raw.get("Score", 0.0),
        relationship_score=raw.get("RelationshipScore"),
        begin_offset=raw.get("BeginOffset"),
        end_offset=raw.get("EndOffset"),
    )


def parse_entities_response(response: Dict[str, Any]) -> EntityExtraction:
    """Build an EntityExtraction from a DetectEntitiesV2 response."""
    entities: List[ExtractedEntity] = []
    relationships: List[EntityRelationship] = []

    for raw in response.get("Entities", []):
        attributes = [_parse_attribute(a) for a in raw.get("Attributes", [])]
        entity = ExtractedEntity(
            text=raw.get("Text", ""),
            category=raw.get("Category", ""),
            type=raw.get("Type", ""),
            confidence=raw.get("Score", 0.0),
            begin_offset=raw.get("BeginOffset"),
            end_offset=raw.get("EndOffset"),
            id=raw.get("Id"),
            attributes=attributes,
            traits=[
                {"name": t.get("Name"), "score": t.get("Score", 0.0)}
                for t in raw.get("Traits", [])
            ],
        )
        entities.append(entity)

        for attribute in raw.get("Attributes", []):
            if attribute.get("RelationshipType"):
                relationships.append(EntityRelationship(
                    type=attribute["RelationshipType"],
                    score=attribute.get("RelationshipScore", 0.0),
                    source_id=raw.get("Id"),
                    target_id=attribute.get("Id"),
                    target_text=attribute.get("Text"),
                ))

    confidence = statistics.mean(e.confidence for e in entities) if entities else 0.0
    return EntityExtraction(
        entities=entities,
        relationships=relationships,
        confidence=confidence,
        model_version=response.get("ModelVersion"),
    )
