# ============================================================================
# src/medical_processing/services/storage.py
# ============================================================================
"""
Local filesystem object store.

Paths are resolved under a storage root; anything escaping the root is
rejected. Downloads are capped at a hard size limit.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .base import ObjectStorage
from ..utils.exceptions import (
    DocumentNotFoundError,
    FileTooLargeError,
    MalformedRequestError,
)

logger = logging.getLogger(__name__)


class LocalObjectStorage(ObjectStorage):

    def __init__(self, root: Path, max_bytes: Optional[int] = None):
        self.root = Path(root).resolve()
        self.max_bytes = max_bytes

    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise MalformedRequestError(f"Path escapes storage root: {path}")
        return candidate

    async def download(self, path: str) -> bytes:
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise DocumentNotFoundError(path)

        size = file_path.stat().st_size
        if self.max_bytes is not None and size > self.max_bytes:
            raise FileTooLargeError(size, self.max_bytes)

        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, file_path.read_bytes)
        logger.debug(f"Downloaded {path} ({len(data)} bytes)")
        return data
