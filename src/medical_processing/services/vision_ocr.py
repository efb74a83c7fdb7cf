# ============================================================================
# src/medical_processing/services/vision_ocr.py
# ============================================================================
"""
Image OCR engines (last step of the OCR cascade).

- GoogleVisionOCREngine: Cloud Vision REST API over aiohttp. Images go to
  images:annotate, PDFs to files:annotate (first 5 pages).
- TesseractOCREngine: local pytesseract; PDF pages rendered with pypdfium2.
"""

import asyncio
import base64
import io
import logging
import statistics
import time
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import pypdfium2
import pytesseract
from PIL import Image, ImageOps

from .base import OCREngine
from ..core.context.extraction import OCRResult
from ..utils.exceptions import (
    CredentialsError,
    MalformedRequestError,
    ServiceError,
    TransientServiceError,
    UnreadableDocumentError,
)

logger = logging.getLogger(__name__)

VISION_API_URL = "https://vision.googleapis.com/v1"
VISION_DEFAULT_CONFIDENCE = 0.8
VISION_MAX_PDF_PAGES = 5


class GoogleVisionOCREngine(OCREngine):

    name = "google_vision_ocr"

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 60.0,
        base_url: str = VISION_API_URL,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        language: Optional[str] = None
    ) -> OCRResult:
        if not self.api_key:
            raise CredentialsError("Google Vision API key not configured")

        start = time.time()
        content = base64.b64encode(data).decode("utf-8")
        image_context = {"languageHints": [language]} if language else None

        if mime_type == "application/pdf":
            endpoint = "files:annotate"
            request: Dict[str, Any] = {
                "inputConfig": {"content": content, "mimeType": mime_type},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                "pages": list(range(1, VISION_MAX_PDF_PAGES + 1)),
            }
        else:
            endpoint = "images:annotate"
            request = {
                "image": {"content": content},
                "features": [{"type": "TEXT_DETECTION", "maxResults": 1}],
            }
        if image_context:
            request["imageContext"] = image_context

        body = await self._post(endpoint, {"requests": [request]})
        text, confidence, detected_language, page_count = self._parse_response(body, mime_type)

        return OCRResult(
            text=text,
            confidence=confidence,
            extraction_method=self.name,
            page_count=page_count,
            detected_language=detected_language or language,
            processing_time=time.time() - start,
        )

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}/{endpoint}"
        try:
            async with session.post(url, params={"key": self.api_key}, json=payload) as response:
                if response.status == 200:
                    return await response.json()

                error_text = await response.text()
                logger.error(f"Google Vision API error {response.status}: {error_text[:500]}")
                message = f"Google Vision API error: {response.status}"
                if response.status == 429 or response.status >= 500:
                    raise TransientServiceError(message, service="google_vision", status_code=response.status)
                if response.status in (401, 403):
                    raise CredentialsError(message)
                raise MalformedRequestError(message)
        except aiohttp.ClientError as e:
            raise TransientServiceError(
                f"Google Vision network error: {e}", service="google_vision"
            ) from e

    @staticmethod
    def _parse_response(body: Dict[str, Any], mime_type: str) -> Tuple[str, float, Optional[str], int]:
        responses = body.get("responses") or [{}]
        first = responses[0]

        # files:annotate nests per-page responses
        if mime_type == "application/pdf":
            page_responses = first.get("responses", [])
            if first.get("error"):
                raise ServiceError(f"Google Vision error: {first['error'].get('message')}", "google_vision")
            texts = [p.get("fullTextAnnotation", {}).get("text", "") for p in page_responses]
            confidences = [
                page.get("confidence")
                for p in page_responses
                for page in p.get("fullTextAnnotation", {}).get("pages", [])
                if page.get("confidence") is not None
            ]
            confidence = statistics.mean(confidences) if confidences else VISION_DEFAULT_CONFIDENCE
            text = "\n\n".join(t for t in texts if t)
            return text, (confidence if text else 0.0), None, max(len(page_responses), 1)

        if first.get("error"):
            raise ServiceError(f"Google Vision error: {first['error'].get('message')}", "google_vision")

        annotations = first.get("textAnnotations") or []
        if not annotations:
            return "", 0.0, None, 1

        text = annotations[0].get("description", "")
        confidence = annotations[0].get("confidence") or VISION_DEFAULT_CONFIDENCE
        return text, confidence, annotations[0].get("locale"), 1


class TesseractOCREngine(OCREngine):

    name = "tesseract_ocr"

    def __init__(self, dpi: int = 300, max_pages: int = 10):
        self.dpi = dpi
        self.max_pages = max_pages

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        language: Optional[str] = None
    ) -> OCRResult:
        start = time.time()
        loop = asyncio.get_running_loop()
        text, confidence, page_count = await loop.run_in_executor(
            None, self._extract_sync, data, mime_type, language
        )
        return OCRResult(
            text=text,
            confidence=confidence,
            extraction_method=self.name,
            page_count=page_count,
            detected_language=language,
            processing_time=time.time() - start,
        )

    def _extract_sync(self, data: bytes, mime_type: str, language: Optional[str]) -> Tuple[str, float, int]:
        images = self._load_images(data, mime_type)
        texts: List[str] = []
        confidences: List[float] = []

        for image in images:
            page_text, page_conf = self._ocr_image(image, language)
            texts.append(page_text)
            confidences.extend(page_conf)

        text = "\n\n".join(t for t in texts if t)
        confidence = statistics.mean(confidences) if confidences else 0.0
        return text, confidence, len(images)

    def _load_images(self, data: bytes, mime_type: str) -> List[Image.Image]:
        if mime_type == "application/pdf":
            pdf = pypdfium2.PdfDocument(data)
            try:
                scale = self.dpi / 72.0
                return [
                    pdf[i].render(scale=scale).to_pil()
                    for i in range(min(len(pdf), self.max_pages))
                ]
            finally:
                pdf.close()

        try:
            image = Image.open(io.BytesIO(data))
            image = ImageOps.exif_transpose(image)
        except (OSError, ValueError) as e:
            raise UnreadableDocumentError(f"Cannot open image: {e}") from e
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        return [image]

    @staticmethod
    def _ocr_image(image: Image.Image, language: Optional[str]) -> Tuple[str, List[float]]:
        # Tesseract wants ISO 639-2 codes; only pass through what it understands
        lang = {"en": "eng", "es": "spa", "fr": "fra", "de": "deu"}.get(language or "en", "eng")
        data = pytesseract.image_to_data(image, lang=lang, output_type=pytesseract.Output.DICT)

        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences: List[float] = []
        for i, conf in enumerate(data["conf"]):
            word = data["text"][i].strip()
            if float(conf) > 0 and word:
                key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
                lines.setdefault(key, []).append(word)
                confidences.append(float(conf) / 100.0)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        return text, confidences
