"""
Mock enhancer for testing and offline use.
"""

import asyncio
import logging

from PIL import Image, ImageEnhance

from infinizoom.config import EnhancerConfig
from infinizoom.enhancers.enhancer import EnhancementError, EnhancementResult, ImageEnhancer

logger = logging.getLogger(__name__)


def sharpen(image: Image.Image, scale: float = 1.0) -> Image.Image:
    """Cheap local stand-in for a real enhancement: sharpen and boost contrast."""
    rgba = image.convert("RGBA")
    alpha = rgba.getchannel("A")
    rgb = rgba.convert("RGB")
    rgb = ImageEnhance.Sharpness(rgb).enhance(2.0)
    rgb = ImageEnhance.Contrast(rgb).enhance(1.15)
    result = rgb.convert("RGBA")
    result.putalpha(alpha)

    if scale != 1.0:
        size = (max(1, round(result.width * scale)), max(1, round(result.height * scale)))
        result = result.resize(size, Image.Resampling.LANCZOS)
    return result


class MockEnhancer(ImageEnhancer):
    """Sharpens the region locally after an optional simulated delay."""

    def _configure(self, config: EnhancerConfig, **kwargs):
        logger.info(f"MockEnhancer configured: delay={config.delay}s, scale={config.scale}, fail={config.fail}")

    async def _enhance_impl(self, image: Image.Image, prompt: str) -> EnhancementResult:
        logger.info(f"Mock enhancing {image.width}x{image.height} region")

        if self.config.delay > 0:
            await asyncio.sleep(self.config.delay)

        if self.config.fail:
            raise EnhancementError("Simulated enhancement failure")

        enhanced = await asyncio.to_thread(sharpen, image, self.config.scale)
        return EnhancementResult(image=enhanced)
