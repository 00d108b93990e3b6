"""
Run configuration model for the visual geolocalization runner.

A RunConfiguration is built once per invocation from flags, config file,
environment and interactive answers, and is never mutated afterwards.
"""

import json
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

from defaults import (
    DEFAULT_ORTHOPHOTO_OUTPUT,
    DEFAULT_STITCH_SIZE,
    DEFAULT_VGL_DIR,
    GSD_HIGH_ALTITUDE_THRESHOLD,
    RUN_CONFIG_FILENAME,
)
from errors import (
    ConfigurationError,
    GsdModeMismatchError,
    InvalidCoordinateError,
)

SIGNED_NUMBER = re.compile(r'^[+-]?[0-9]+([.][0-9]+)?$')
UNSIGNED_NUMBER = re.compile(r'^[0-9]+([.][0-9]+)?$')
UNSIGNED_INTEGER = re.compile(r'^[0-9]+$')


class Mode(Enum):
    """Processing mode, selected from the positional arguments."""
    HIGH_ALTITUDE = "high_altitude"  # single image
    LOW_ALTITUDE = "low_altitude"    # GSD + ODM project


class Choice(Enum):
    """Tri-state operator choice."""
    YES = "yes"
    NO = "no"
    ASK = "ask"

    @classmethod
    def from_bool(cls, value: bool) -> "Choice":
        return cls.YES if value else cls.NO


class Platform(Enum):
    X86 = "x86"
    JETSON = "jetson"


def is_number(value: str, allow_sign: bool = False) -> bool:
    """Check a token against the accepted decimal notation."""
    pattern = SIGNED_NUMBER if allow_sign else UNSIGNED_NUMBER
    return bool(pattern.match(str(value).strip()))


def parse_number(value: str, name: str, allow_sign: bool = False,
                 error_cls=ConfigurationError) -> float:
    """
    Parse a decimal number using the runner's strict notation.

    Args:
        value: Raw token
        name: Human readable name used in the error message
        allow_sign: Whether a leading '+' or '-' is accepted
        error_cls: Exception raised on malformed input

    Returns:
        Parsed value as float
    """
    if value is None or not is_number(value, allow_sign):
        raise error_cls(f"Invalid {name}: '{value}'. Must be a valid number.")
    return float(str(value).strip())


def parse_stitch_size(value) -> int:
    """Parse a stitch size; must be a positive integer."""
    text = str(value).strip()
    if not UNSIGNED_INTEGER.match(text) or int(text) <= 0:
        raise ConfigurationError(f"Invalid stitch size: '{value}'. Must be a positive integer.")
    return int(text)


@dataclass(frozen=True)
class BoundingBox:
    """Geographic region to fetch satellite imagery for, in decimal degrees."""
    top_left_lat: float
    top_left_lon: float
    bottom_right_lat: float
    bottom_right_lon: float

    def __post_init__(self):
        for name in ('top_left_lat', 'bottom_right_lat'):
            value = getattr(self, name)
            if not -90.0 <= value <= 90.0:
                raise InvalidCoordinateError(
                    f"{name.replace('_', ' ')} must be between -90 and 90 (got {value:g})"
                )
        for name in ('top_left_lon', 'bottom_right_lon'):
            value = getattr(self, name)
            if not -180.0 <= value <= 180.0:
                raise InvalidCoordinateError(
                    f"{name.replace('_', ' ')} must be between -180 and 180 (got {value:g})"
                )

    @classmethod
    def from_parts(cls, top_left_lat, top_left_lon,
                   bottom_right_lat, bottom_right_lon) -> Optional["BoundingBox"]:
        """
        Build a bounding box from raw coordinate tokens.

        All four coordinates must be supplied together. Returns None when none
        is supplied.

        Raises:
            InvalidCoordinateError: Partial box, malformed value or out of range
        """
        parts = {
            'top-left latitude': top_left_lat,
            'top-left longitude': top_left_lon,
            'bottom-right latitude': bottom_right_lat,
            'bottom-right longitude': bottom_right_lon,
        }
        supplied = [name for name, value in parts.items() if value not in (None, '')]
        if not supplied:
            return None
        if len(supplied) != len(parts):
            missing = [name for name in parts if name not in supplied]
            raise InvalidCoordinateError(
                f"Bounding box requires all four coordinates; missing: {', '.join(missing)}"
            )

        values = [
            parse_number(value, name, allow_sign=True, error_cls=InvalidCoordinateError)
            for name, value in parts.items()
        ]
        return cls(*values)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.top_left_lat, self.top_left_lon,
                self.bottom_right_lat, self.bottom_right_lon)

    def to_wgs84_bounds(self) -> Tuple[float, float, float, float]:
        """Return (west, south, east, north)."""
        return (
            min(self.top_left_lon, self.bottom_right_lon),
            min(self.top_left_lat, self.bottom_right_lat),
            max(self.top_left_lon, self.bottom_right_lon),
            max(self.top_left_lat, self.bottom_right_lat),
        )


@dataclass(frozen=True)
class RunConfiguration:
    """Fully resolved inputs of one pipeline execution."""
    mode: Mode
    input_image: Optional[Path] = None
    gsd: Optional[float] = None
    odm_dir: Optional[Path] = None
    vgl_dir: Path = Path(DEFAULT_VGL_DIR)
    use_gpu: Choice = Choice.ASK
    download_satellite: Choice = Choice.ASK
    skip_orthophoto_review: bool = False
    stitch_size: int = DEFAULT_STITCH_SIZE
    bounding_box: Optional[BoundingBox] = None
    interactive: bool = True
    dry_run: bool = False
    verbose: bool = True
    platform: Platform = Platform.X86
    vgl_image: str = ''
    orthophoto_output: Path = Path(DEFAULT_ORTHOPHOTO_OUTPUT)
    stage_timeout: Optional[float] = None
    # Fields filled from defaults rather than supplied by the operator
    defaulted: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.mode is Mode.HIGH_ALTITUDE:
            if self.input_image is None:
                raise ConfigurationError("High altitude mode requires an image file")
            if self.gsd is not None or self.odm_dir is not None:
                raise ConfigurationError("High altitude mode does not take a GSD or ODM directory")
        else:
            if self.gsd is None or self.odm_dir is None:
                raise ConfigurationError("Low altitude mode requires a GSD value and an ODM directory")
            if self.input_image is not None:
                raise ConfigurationError("Low altitude mode does not take an image file")
            if self.gsd >= GSD_HIGH_ALTITUDE_THRESHOLD:
                raise GsdModeMismatchError(self.gsd, GSD_HIGH_ALTITUDE_THRESHOLD)
        if self.stitch_size <= 0:
            raise ConfigurationError(f"Invalid stitch size: {self.stitch_size}")
        if self.stage_timeout is not None and self.stage_timeout <= 0:
            raise ConfigurationError(f"Invalid stage timeout: {self.stage_timeout}")

    @property
    def is_low_altitude(self) -> bool:
        return self.mode is Mode.LOW_ALTITUDE

    def evolve(self, **changes) -> "RunConfiguration":
        """Return a copy with the given fields replaced and no longer marked as defaulted."""
        return replace(self, defaulted=self.defaulted - set(changes), **changes)

    def to_dict(self) -> Dict:
        """JSON-serializable view, used to record the run."""
        return {
            'mode': self.mode.value,
            'input_image': str(self.input_image) if self.input_image else None,
            'gsd': self.gsd,
            'odm_dir': str(self.odm_dir) if self.odm_dir else None,
            'vgl_dir': str(self.vgl_dir),
            'use_gpu': self.use_gpu.value,
            'download_satellite': self.download_satellite.value,
            'skip_orthophoto_review': self.skip_orthophoto_review,
            'stitch_size': self.stitch_size,
            'bounding_box': list(self.bounding_box.as_tuple()) if self.bounding_box else None,
            'interactive': self.interactive,
            'dry_run': self.dry_run,
            'verbose': self.verbose,
            'platform': self.platform.value,
            'vgl_image': self.vgl_image,
            'orthophoto_output': str(self.orthophoto_output),
            'stage_timeout': self.stage_timeout,
        }


def load_config(config_path: str) -> dict:
    """Load option values from a JSON file."""
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file {config_path}: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")
    return config


def save_config(config: RunConfiguration, output_dir: Path) -> Path:
    """Save the resolved configuration to the output directory for reproducibility."""
    config_path = Path(output_dir) / RUN_CONFIG_FILENAME
    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
    return config_path
