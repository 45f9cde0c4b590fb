"""
Minimal async client for the Gemini ``generateContent`` REST endpoint.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import aiohttp
from PIL import Image

from infinizoom.constants import GEMINI_API_BASE
from infinizoom.image_utils import png_to_base64url

logger = logging.getLogger(__name__)

API_KEY_ENV = "GEMINI_API_KEY"


def resolve_api_key(api_key: Optional[str] = None) -> str:
    """Configured key, else ``GEMINI_API_KEY`` from the environment (loaded from .env on import)."""
    key = api_key or os.environ.get(API_KEY_ENV)
    if not key:
        raise RuntimeError(f"No Gemini API key configured; set {API_KEY_ENV} or the api_key option")
    return key


def image_part(image: Image.Image) -> Dict[str, Any]:
    """Encode *image* as an inline PNG content part."""
    data = png_to_base64url(image).split(",", 1)[1]
    return {"inlineData": {"mimeType": "image/png", "data": data}}


def response_parts(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Content parts of the first candidate.

    Raises:
        RuntimeError: If the response carries no candidates or parts
    """
    candidates = result.get("candidates") or []
    if not candidates:
        raise RuntimeError("No candidates returned from the API")
    content = candidates[0].get("content") or {}
    parts = content.get("parts")
    if not parts:
        raise RuntimeError("No parts returned from the API")
    return parts


class GeminiClient:
    def __init__(self, model: str, api_key: Optional[str] = None,
                 endpoint: str = GEMINI_API_BASE, timeout: int = 60):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.endpoint}/{self.model}:generateContent"

    async def generate_content(self, parts: List[Dict[str, Any]],
                               generation_config: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """POST one request and return the parts of the first candidate."""
        payload: Dict[str, Any] = {"contents": [{"parts": parts}]}
        if generation_config:
            payload["generationConfig"] = generation_config

        headers = {"x-goog-api-key": resolve_api_key(self.api_key)}
        logger.debug(f"Sending generateContent request to {self.url}")
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise RuntimeError(f"Request failed: {response.status} - {error_text[:500]}")
                result = await response.json()

        return response_parts(result)
