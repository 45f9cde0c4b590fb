"""
Scene comparison backends used by the world continuity check.

:meth:`SceneComparator.compare` never raises for backend problems: on failure
it reports "same scene", so an error can never throw away the current world.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod

import cv2
import numpy as np
from PIL import Image

from infinizoom.config import ComparatorConfig
from infinizoom.constants import COMPARE_PROMPT
from infinizoom.enhancers.gemini_client import GeminiClient, image_part

logger = logging.getLogger(__name__)

# Hue/saturation bins for histogram comparison
HIST_BINS = [50, 60]
HIST_RANGES = [0, 180, 0, 256]


class ComparisonError(Exception):
    """Raised by comparator backends when a comparison cannot be completed."""
    pass


class SceneComparator(ABC):
    """Abstract base class for scene comparison strategies."""

    def __init__(self, config: ComparatorConfig, **kwargs):
        self.config = config
        self._configure(config, **kwargs)

    def _configure(self, config: ComparatorConfig, **kwargs):
        pass

    async def compare(self, first: Image.Image, second: Image.Image) -> bool:
        """True when *second* appears to show the same scene as *first*."""
        try:
            return await self._compare_impl(first, second)
        except Exception as e:
            logger.error(f"{self.__class__.__name__} failed, assuming same scene: {e}")
            return True

    @abstractmethod
    async def _compare_impl(self, first: Image.Image, second: Image.Image) -> bool:
        pass


def hs_histogram(image: Image.Image) -> np.ndarray:
    """Normalized hue/saturation histogram of *image*."""
    rgb = np.asarray(image.convert("RGB"))
    hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)
    hist = cv2.calcHist([hsv], [0, 1], None, HIST_BINS, HIST_RANGES)
    cv2.normalize(hist, hist, 0, 1, cv2.NORM_MINMAX)
    return hist


def histogram_similarity(first: Image.Image, second: Image.Image) -> float:
    """Correlation in [-1, 1] between the colour histograms of two images."""
    return float(cv2.compareHist(hs_histogram(first), hs_histogram(second), cv2.HISTCMP_CORREL))


class HistogramSceneComparator(SceneComparator):
    """Local comparison by colour histogram correlation."""

    async def _compare_impl(self, first: Image.Image, second: Image.Image) -> bool:
        similarity = await asyncio.to_thread(histogram_similarity, first, second)
        same = similarity >= self.config.threshold
        logger.info(f"Histogram similarity {similarity:.3f} (threshold {self.config.threshold}): "
                    f"{'same' if same else 'different'} scene")
        return same


class MockSceneComparator(SceneComparator):
    """Returns a fixed answer, or raises when ``fail`` is set."""

    def _configure(self, config: ComparatorConfig, same: bool = True, fail: bool = False, **kwargs):
        self.same = same
        self.fail = fail
        self.calls = 0

    async def _compare_impl(self, first: Image.Image, second: Image.Image) -> bool:
        self.calls += 1
        if self.fail:
            raise ComparisonError("Simulated comparison failure")
        return self.same


class GeminiSceneComparator(SceneComparator):
    """Asks a Gemini model whether the two images show the same place."""

    def _configure(self, config: ComparatorConfig, **kwargs):
        self.client = GeminiClient(
            model=config.model,
            api_key=config.api_key,
            endpoint=config.endpoint,
            timeout=config.timeout,
        )

    async def _compare_impl(self, first: Image.Image, second: Image.Image) -> bool:
        parts = await self.client.generate_content(
            [image_part(first), image_part(second), {"text": COMPARE_PROMPT}],
            generation_config={
                "responseMimeType": "application/json",
                "responseSchema": {
                    "type": "OBJECT",
                    "properties": {
                        "isSameScene": {
                            "type": "BOOLEAN",
                            "description": "Whether the two images depict the same scene.",
                        }
                    },
                    "required": ["isSameScene"],
                },
            },
        )
        text = "".join(part.get("text", "") for part in parts).strip()
        try:
            result = json.loads(text)
        except json.JSONDecodeError as e:
            raise ComparisonError(f"Unparseable comparison response: {text[:200]}") from e
        if not isinstance(result, dict):
            raise ComparisonError(f"Unexpected comparison response: {text[:200]}")
        same = result.get("isSameScene")
        if not isinstance(same, bool):
            raise ComparisonError(f"Comparison response without a boolean isSameScene: {text[:200]}")
        return same
