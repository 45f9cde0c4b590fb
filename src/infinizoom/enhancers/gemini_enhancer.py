"""
Gemini image model enhancer.
"""

import json
import logging
from typing import Any, Dict, List

from PIL import Image

from infinizoom.config import EnhancerConfig
from infinizoom.constants import ENHANCE_INSTRUCTIONS
from infinizoom.enhancers.enhancer import EnhancementError, EnhancementResult, ImageEnhancer
from infinizoom.enhancers.gemini_client import GeminiClient, image_part

logger = logging.getLogger(__name__)


def parse_flags(text: str) -> Dict[str, bool]:
    """Boolean flags from a JSON object text part; anything else yields no flags."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.debug(f"Non-JSON text part from enhancement: {text[:200]}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {key: value for key, value in data.items() if isinstance(value, bool)}


def parse_enhancement(parts: List[Dict[str, Any]]) -> EnhancementResult:
    """Pick the returned image (still encoded) and any flags out of the response parts.

    Raises:
        EnhancementError: If no image part is present
    """
    flags: Dict[str, bool] = {}
    image_data = None
    for part in parts:
        if part.get("text"):
            flags.update(parse_flags(part["text"]))
            continue
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            image_data = f"data:{mime_type};base64,{inline['data']}"

    if image_data is None:
        raise EnhancementError("No image part returned from the API")
    return EnhancementResult(image=image_data, flags=flags)


class GeminiEnhancer(ImageEnhancer):
    """Sends the region to a Gemini image model with strict consistency instructions."""

    def _configure(self, config: EnhancerConfig, **kwargs):
        self.client = GeminiClient(
            model=config.model,
            api_key=config.api_key,
            endpoint=config.endpoint,
            timeout=config.timeout,
        )
        logger.info(f"GeminiEnhancer configured with model {config.model}")

    async def _enhance_impl(self, image: Image.Image, prompt: str) -> EnhancementResult:
        parts = await self.client.generate_content(
            [image_part(image), {"text": f"{prompt}\n{ENHANCE_INSTRUCTIONS}"}],
            generation_config={"responseModalities": ["IMAGE", "TEXT"]},
        )
        result = parse_enhancement(parts)
        if result.flags:
            logger.info(f"Enhancement flags: {result.flags}")
        return result
