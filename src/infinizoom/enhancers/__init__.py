"""
Enhancement and scene comparison backends.
"""

from .enhancer import EnhancementError, EnhancementResult, ImageEnhancer
from .mock_enhancer import MockEnhancer
from .gemini_enhancer import GeminiEnhancer
from .comparator import (
    ComparisonError,
    GeminiSceneComparator,
    HistogramSceneComparator,
    MockSceneComparator,
    SceneComparator,
)
from .factory import COMPARATORS, ENHANCERS, create_comparator, create_enhancer

__all__ = [
    "EnhancementError",
    "EnhancementResult",
    "ImageEnhancer",
    "MockEnhancer",
    "GeminiEnhancer",
    "ComparisonError",
    "SceneComparator",
    "HistogramSceneComparator",
    "MockSceneComparator",
    "GeminiSceneComparator",
    "ENHANCERS",
    "COMPARATORS",
    "create_enhancer",
    "create_comparator",
]
