import logging
from typing import Dict, Type

from infinizoom.config import ComparatorConfig, EnhancerConfig
from infinizoom.enhancers.comparator import (
    GeminiSceneComparator,
    HistogramSceneComparator,
    MockSceneComparator,
    SceneComparator,
)
from infinizoom.enhancers.enhancer import ImageEnhancer
from infinizoom.enhancers.gemini_enhancer import GeminiEnhancer
from infinizoom.enhancers.mock_enhancer import MockEnhancer

logger = logging.getLogger(__name__)

# needs to match the strategy literals in EnhancerConfig / ComparatorConfig
ENHANCERS: Dict[str, Type[ImageEnhancer]] = {
    "mock": MockEnhancer,
    "gemini": GeminiEnhancer,
}

COMPARATORS: Dict[str, Type[SceneComparator]] = {
    "histogram": HistogramSceneComparator,
    "gemini": GeminiSceneComparator,
    "mock": MockSceneComparator,
}


def create_enhancer(config: EnhancerConfig, **kwargs) -> ImageEnhancer:
    """Create the enhancer selected by ``config.strategy``.

    Raises:
        ValueError: If the strategy is not supported
    """
    if config.strategy not in ENHANCERS:
        raise ValueError(f"Unsupported enhancer strategy: {config.strategy}. "
                         f"Available strategies: {list(ENHANCERS.keys())}")
    logger.info(f"Creating {config.strategy} enhancer")
    return ENHANCERS[config.strategy](config, **kwargs)


def create_comparator(config: ComparatorConfig, **kwargs) -> SceneComparator:
    """Create the scene comparator selected by ``config.strategy``.

    Raises:
        ValueError: If the strategy is not supported
    """
    if config.strategy not in COMPARATORS:
        raise ValueError(f"Unsupported comparator strategy: {config.strategy}. "
                         f"Available strategies: {list(COMPARATORS.keys())}")
    logger.info(f"Creating {config.strategy} scene comparator")
    return COMPARATORS[config.strategy](config, **kwargs)
