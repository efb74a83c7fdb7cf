# ============================================================================
# src/medical_processing/services/openai_client.py
# ============================================================================
"""
OpenAI chat completion client for structured extraction.

The openai client is synchronous here and runs in the default executor.
Responses are requested in JSON mode; parsing and repair happen in the
LLM stage. SDK exceptions propagate unchanged and are classified by
core.retry.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from .base import LLMClient
from ..utils.exceptions import CredentialsError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a medical document parser. You extract structured data from "
    "medical reports and answer with a single valid JSON object only."
)


class OpenAILLMClient(LLMClient):

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        max_tokens: int = 2000,
        temperature: float = 0.1,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.model_name = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> OpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise CredentialsError("OpenAI API key not configured")
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            logger.info(f"OpenAI client initialized: model={self.model_name}")
        return self._client

    @staticmethod
    def _build_content(
        prompt: str,
        text: Optional[str],
        image: Optional[bytes],
        mime_type: Optional[str],
    ) -> List[Dict[str, Any]]:
        body = prompt if not text else f"{prompt}\n\nDocument text:\n{text}"
        content: List[Dict[str, Any]] = [{"type": "text", "text": body}]

        if image and mime_type and mime_type.startswith("image/"):
            base64_image = base64.b64encode(image).decode("utf-8")
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{mime_type};base64,{base64_image}",
                    "detail": "high",
                },
            })
        return content

    async def complete(
        self,
        prompt: str,
        text: Optional[str] = None,
        image: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        client = self.client
        content = self._build_content(prompt, text, image, mime_type)

        def call_api():
            response = client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": content},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            return response.choices[0].message.content or ""

        loop = asyncio.get_running_loop()
        response_text = await loop.run_in_executor(None, call_api)
        logger.debug(f"OpenAI returned {len(response_text)} chars")
        return response_text
