"""
Configuration loading and management for Infinizoom.
"""

import argparse
import json
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type, TypeVar, Union

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from infinizoom.constants import (
    BUTTON_ZOOM_STEP,
    DEFAULT_GENERATOR_TIMEOUT,
    DEFAULT_LOCATION_ADDRESS,
    DEFAULT_LOCATION_TOPIC,
    ENHANCE_DEBOUNCE_SECONDS,
    ENHANCE_MIN_ZOOM,
    ENHANCE_PROMPT,
    GEMINI_API_BASE,
    GEMINI_COMPARE_MODEL,
    GEMINI_ENHANCE_MODEL,
    GPS_DISTANCE_THRESHOLD_METERS,
    MAX_ZOOM,
    MIN_ZOOM,
    SNAPSHOT_DIR,
    TILE_SIZE,
    WHEEL_ZOOM_INTENSITY,
)

# Note: Logging is configured by the CLI entry point
logger = logging.getLogger(__name__)

ENV_PREFIX = "INFINIZOOM"


class ConfigError(Exception):
    """The merged configuration could not be validated."""


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of *base* with *override* merged in, recursing into nested sections."""
    merged = deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            if current and not value:
                logger.warning(f"Config section '[{key}]' is empty and clears its defaults; "
                               f"drop the section to keep them.")
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def namespace_to_dict(namespace: argparse.Namespace) -> Dict[str, Any]:
    """Nest the explicitly given options of *namespace* by their dotted destinations.

    ``viewport.width=640`` becomes ``{"viewport": {"width": 640}}``. Options left at
    their argparse default are skipped so they never mask the file or environment.
    """
    nested: Dict[str, Any] = {}
    given = getattr(namespace, '_explicitly_set', set())

    for dest, value in vars(namespace).items():
        if value is None or dest not in given:
            continue
        *sections, field = dest.split('.')
        target = nested
        for section in sections:
            target = target.setdefault(section, {})
        target[field] = value

    return nested


def _read_toml(config_file: Union[str, Path]) -> Dict[str, Any]:
    path = Path(config_file)
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}
    try:
        data = toml.loads(path.read_text())
    except (OSError, toml.TomlDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    logger.info(f"Loaded configuration from {path}")
    return data


def load_config_with_overrides(
    override_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[Union[str, Path]] = None,
    default_config: Optional[Dict[str, Any]] = None,
    args: Optional[argparse.Namespace] = None
) -> Dict[str, Any]:
    """Merge the configuration layers into one dict, later layers winning.

    Layers from lowest to highest: *default_config*, the TOML *config_file*,
    *override_config*, then the options explicitly given in *args*.
    """
    layers = [
        _read_toml(config_file) if config_file is not None else {},
        override_config or {},
        namespace_to_dict(args) if args is not None else {},
    ]
    config = deepcopy(default_config or {})
    for layer in layers:
        config = deep_merge(config, layer)
    logger.debug(f"Merged configuration: {config}")
    return config


T = TypeVar('T', bound='BaseConfig')

_TRUE_WORDS = ('true', 'yes', 'on')
_FALSE_WORDS = ('false', 'no', 'off')


class BaseConfig(BaseModel):
    """Pydantic model that knows how to assemble itself from file, env and CLI."""

    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid',
        str_strip_whitespace=True
    )

    @classmethod
    def _extract_env_overrides(cls, env_prefix: str = ENV_PREFIX) -> Dict[str, Any]:
        """Collect ``<PREFIX>_...`` variables that name a field of this model.

            INFINIZOOM_LOG_LEVEL=DEBUG               -> {"log_level": "DEBUG"}
            INFINIZOOM_ENHANCEMENT_DEBOUNCE_SECONDS=2 -> {"enhancement": {"debounce_seconds": 2}}
        """
        marker = env_prefix + '_'
        overrides: Dict[str, Any] = {}
        for name, raw in os.environ.items():
            if not name.startswith(marker):
                continue
            mapped = cls._map_env_key_to_config(name[len(marker):].lower(), cls._convert_env_value(raw))
            if mapped:
                overrides = deep_merge(overrides, mapped)
        return overrides

    @classmethod
    def _map_env_key_to_config(cls, env_key: str, value: Any) -> Optional[Dict[str, Any]]:
        fields = cls.model_fields
        if env_key in fields:
            return {env_key: value}

        for section, info in fields.items():
            section_type = info.annotation
            if not (isinstance(section_type, type) and issubclass(section_type, BaseModel)):
                continue
            prefix = section + '_'
            if env_key.startswith(prefix) and env_key[len(prefix):] in section_type.model_fields:
                return {section: {env_key[len(prefix):]: value}}

        # Secrets and unrelated variables share the prefix
        logger.debug(f"Ignoring environment variable {env_key!r}: no matching config field")
        return None

    @staticmethod
    def _convert_env_value(value: str) -> Any:
        """Best-effort typing of an environment string: bool, int, float, JSON, else str."""
        lowered = value.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False

        for convert in ((float,) if '.' in value else (int,)):
            try:
                return convert(value)
            except ValueError:
                continue

        if value[:1] in ('[', '{'):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    @classmethod
    def from_overrides(cls: Type[T],
                       override_config: Optional[Dict[str, Any]] = None,
                       config_file: Optional[Union[str, Path]] = None,
                       default_config: Optional[Dict[str, Any]] = None,
                       args: Optional[argparse.Namespace] = None,
                       env_prefix: Optional[str] = ENV_PREFIX) -> T:
        """Build and validate a config from every source.

        Precedence, highest first: explicit command line options in *args*,
        *override_config*, environment variables under *env_prefix* (not read
        when it is None), *config_file*, *default_config*, then model defaults.

        Raises:
            ConfigError: the merged values fail validation
        """
        overrides = override_config
        if env_prefix:
            env_overrides = cls._extract_env_overrides(env_prefix)
            if env_overrides:
                overrides = deep_merge(env_overrides, override_config or {})

        merged = load_config_with_overrides(
            override_config=overrides,
            config_file=config_file,
            default_config=default_config,
            args=args
        )

        try:
            return cls(**merged)
        except ValidationError as e:
            logger.error(f"Invalid configuration: {e.errors()}")
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls: Type[T], config_file: Optional[Union[str, Path]] = None) -> T:
        """Load *config_file* with environment variable overrides applied."""
        return cls.from_overrides(config_file=config_file)

    def __str__(self) -> str:
        return f"{type(self).__name__}:\n{self.model_dump_json(indent=2)}"


# =============================================================================
# SECTIONS
# =============================================================================

class TileConfig(BaseModel):
    """World tiling."""

    tile_size: int = Field(
        default=TILE_SIZE,
        description="Tile edge length in pixels",
        ge=16
    )


class ViewportConfig(BaseModel):
    """Pan/zoom limits and the initial viewport size."""

    width: int = Field(default=1280, description="Viewport width in screen pixels", ge=1)
    height: int = Field(default=720, description="Viewport height in screen pixels", ge=1)
    min_zoom: float = Field(default=MIN_ZOOM, gt=0.0)
    max_zoom: float = Field(default=MAX_ZOOM, gt=0.0)
    wheel_intensity: float = Field(
        default=WHEEL_ZOOM_INTENSITY,
        description="Wheel zoom factor is e^(+-intensity) per tick",
        gt=0.0
    )
    button_step: float = Field(default=BUTTON_ZOOM_STEP, description="Zoom button multiplier", gt=1.0)
    enhance_min_zoom: float = Field(
        default=ENHANCE_MIN_ZOOM,
        description="Zoom must exceed this before enhancement is requested"
    )


class EnhancementConfig(BaseModel):
    """Region enhancement pipeline."""

    enabled: bool = Field(default=True, description="Request enhancement after viewport changes")
    debounce_seconds: float = Field(
        default=ENHANCE_DEBOUNCE_SECONDS,
        description="Inactivity delay before the visible region is enhanced",
        ge=0.0
    )
    prompt: str = Field(default=ENHANCE_PROMPT, description="Instruction sent with every region")


class EnhancerConfig(BaseModel):
    """Backend that performs the enhancement."""

    strategy: Literal["mock", "gemini"] = "mock"
    model: str = GEMINI_ENHANCE_MODEL
    endpoint: str = Field(default=GEMINI_API_BASE, description="Base URL of the generateContent API")
    api_key: Optional[str] = Field(
        default=None,
        description="API key, falls back to GEMINI_API_KEY from the environment"
    )
    timeout: int = Field(default=DEFAULT_GENERATOR_TIMEOUT, ge=1)
    delay: float = Field(default=0.0, description="Mock only: simulated processing time", ge=0.0)
    fail: bool = Field(default=False, description="Mock only: simulate backend failure")
    scale: float = Field(default=1.0, description="Mock only: output size multiplier", gt=0.0)


class ComparatorConfig(BaseModel):
    """Backend that decides whether two captures show the same scene."""

    strategy: Literal["histogram", "gemini", "mock"] = "histogram"
    threshold: float = Field(
        default=0.5,
        description="Histogram correlation at or above which scenes count as the same",
        ge=-1.0,
        le=1.0
    )
    model: str = GEMINI_COMPARE_MODEL
    endpoint: str = GEMINI_API_BASE
    api_key: Optional[str] = None
    timeout: int = Field(default=DEFAULT_GENERATOR_TIMEOUT, ge=1)


class ContinuityConfig(BaseModel):
    gps_threshold_meters: float = Field(
        default=GPS_DISTANCE_THRESHOLD_METERS,
        description="Captures further than this from the baseline start a new world",
        gt=0.0
    )


class LocationConfig(BaseModel):
    source: Literal["manual", "zmq"] = "manual"
    zmq_address: str = DEFAULT_LOCATION_ADDRESS
    zmq_topic: str = DEFAULT_LOCATION_TOPIC


class WorldConfig(BaseModel):
    placeholder_image: Optional[str] = Field(
        default=None,
        description="Path or http(s) URL of the image shown before any capture"
    )
    snapshot_dir: Path = SNAPSHOT_DIR


class DisplayConfig(BaseModel):
    fullscreen: bool = False
    vsync: bool = True
    fps: int = Field(default=30, ge=1)
    show_enhanced_glow: bool = Field(default=True, description="Highlight enhanced tiles")


class InfinizoomConfig(BaseConfig):
    """Complete application configuration."""

    service_name: str = "infinizoom"
    log_level: str = "INFO"

    tiles: TileConfig = Field(default_factory=TileConfig)
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    enhancement: EnhancementConfig = Field(default_factory=EnhancementConfig)
    enhancer: EnhancerConfig = Field(default_factory=EnhancerConfig)
    comparator: ComparatorConfig = Field(default_factory=ComparatorConfig)
    continuity: ContinuityConfig = Field(default_factory=ContinuityConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    world: WorldConfig = Field(default_factory=WorldConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)

    @property
    def viewport_size(self) -> Tuple[int, int]:
        return self.viewport.width, self.viewport.height
