#!/usr/bin/env python3
"""
Region enhancement backends.

An :class:`ImageEnhancer` takes the stitched raster of the visible region and
returns a sharper version of it. Callers only ever use :meth:`ImageEnhancer.enhance`,
which never raises: any backend failure is logged and the input raster is
returned unchanged with ``fallback=True``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict

from PIL import Image

from infinizoom.config import EnhancerConfig
from infinizoom.image_utils import ImageSource

logger = logging.getLogger(__name__)


class EnhancementError(Exception):
    """Raised by enhancer backends when a request cannot be completed."""
    pass


@dataclass
class EnhancementResult:
    """Output of one enhancement request.

    ``image`` may still be encoded (bytes or data URL); the pipeline decodes it
    fully before it is shown.
    """
    image: ImageSource
    flags: Dict[str, bool] = field(default_factory=dict)
    fallback: bool = False


class ImageEnhancer(ABC):
    """Abstract base class for enhancement strategies."""

    def __init__(self, config: EnhancerConfig, **kwargs):
        self.config = config
        self._configure(config, **kwargs)

    def _configure(self, config: EnhancerConfig, **kwargs):
        """Configure backend-specific settings.

        Subclasses can override this to handle their specific configuration.
        """
        pass

    async def enhance(self, image: Image.Image, prompt: str) -> EnhancementResult:
        """Enhance *image* following *prompt*.

        Never raises for backend problems; cancellation still propagates.
        """
        if not prompt or not prompt.strip():
            logger.error("Enhancement prompt is empty, returning the original region")
            return EnhancementResult(image=image, fallback=True)

        try:
            return await self._enhance_impl(image, prompt)
        except Exception as e:
            logger.error(f"{self.__class__.__name__} failed, returning the original region: {e}")
            return EnhancementResult(image=image, fallback=True)

    @abstractmethod
    async def _enhance_impl(self, image: Image.Image, prompt: str) -> EnhancementResult:
        """Internal implementation of enhancement.

        Subclasses implement this instead of :meth:`enhance` and may raise freely.
        """
        pass

    async def stop(self):
        """Release any resources held by the backend."""
        pass
