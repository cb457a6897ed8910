"""Scanner configuration dataclass and loading utilities.

A single :class:`ScannerConfig` is passed to the detector, the rectifier and
the pipeline controller. Values come from, in increasing priority, the
defaults below, an optional JSON file and ``DOCSCAN_*`` environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional, Tuple

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = 'DOCSCAN_'

# Detection works best around this working resolution
DEFAULT_TARGET_PIXEL_AREA = 853 * 512

# Exterior angle acceptance bands (degrees) for the rectangle test
ANGLE_BANDS = {
    'strict': (75.0, 105.0),
    'normal': (60.0, 120.0),
    'loose': (50.0, 130.0),
}

OUTPUT_MODES = ('color', 'document')


@dataclass
class ScannerConfig:
    # Working resolution
    target_pixel_area: int = DEFAULT_TARGET_PIXEL_AREA

    # Edge detection
    blur_kernel: int = 5
    canny_low: float = 15.0
    canny_high: float = 40.0
    morph_radius: int = 1

    # Contour selection
    approx_epsilon: float = 0.05
    angle_band: Tuple[float, float] = ANGLE_BANDS['strict']
    debug_overlay: bool = False

    # Output
    output_mode: str = 'color'
    adaptive_block_size: int = 11
    adaptive_c: float = 2.0
    png_compression: int = 3

    # Camera sizing
    preview_aspect_tolerance: float = 0.1
    picture_aspect_tolerance: float = 0.12
    sensor_offset: int = 90
    buffer_pool_size: int = 3

    # Processing flagged as stalled after this many seconds busy
    stall_warning_seconds: float = 2.0

    @property
    def document_mode(self) -> bool:
        return self.output_mode == 'document'

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['angle_band'] = list(self.angle_band)
        return d

    def validate(self) -> 'ScannerConfig':
        """Check value ranges.

        Returns:
            The same config, for chaining.

        Raises:
            ConfigError: If any value is out of range.
        """
        if self.target_pixel_area <= 0:
            raise ConfigError("target_pixel_area must be positive")
        if self.blur_kernel < 1 or self.blur_kernel % 2 == 0:
            raise ConfigError("blur_kernel must be a positive odd number")
        if not 0 <= self.canny_low <= self.canny_high:
            raise ConfigError("canny thresholds must satisfy 0 <= low <= high")
        if self.morph_radius < 0:
            raise ConfigError("morph_radius must not be negative")
        if not 0 < self.approx_epsilon < 1:
            raise ConfigError("approx_epsilon must be in (0, 1)")

        low, high = self.angle_band
        if not 0 <= low < high <= 180:
            raise ConfigError(f"invalid angle band {self.angle_band!r}")

        if self.output_mode not in OUTPUT_MODES:
            raise ConfigError(
                f"output_mode must be one of {OUTPUT_MODES}, got {self.output_mode!r}"
            )
        if self.adaptive_block_size < 3 or self.adaptive_block_size % 2 == 0:
            raise ConfigError("adaptive_block_size must be an odd number >= 3")
        if not 0 <= self.png_compression <= 9:
            raise ConfigError("png_compression must be in [0, 9]")
        if self.preview_aspect_tolerance < 0 or self.picture_aspect_tolerance < 0:
            raise ConfigError("aspect tolerances must not be negative")
        if self.sensor_offset % 90 != 0:
            raise ConfigError("sensor_offset must be a multiple of 90")
        if self.buffer_pool_size < 1:
            raise ConfigError("buffer_pool_size must be at least 1")
        if self.stall_warning_seconds <= 0:
            raise ConfigError("stall_warning_seconds must be positive")
        return self


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a JSON or environment value to the type of the default."""
    if name == 'angle_band':
        if isinstance(value, str):
            if value.lower() in ANGLE_BANDS:
                return ANGLE_BANDS[value.lower()]
            value = [part for part in value.split(',') if part.strip()]
        if len(value) != 2:
            raise ConfigError(f"angle_band needs two values, got {value!r}")
        return (float(value[0]), float(value[1]))
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _env_overrides(environ: Dict[str, str]) -> Dict[str, str]:
    overrides = {}
    for f in fields(ScannerConfig):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            overrides[f.name] = environ[key]
    return overrides


def load_config(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> ScannerConfig:
    """Load configuration from a JSON file and the environment.

    Missing, empty or malformed files are logged and ignored; invalid values
    are not, they raise :class:`ConfigError`.

    Args:
        path: Optional path to a JSON object with config keys.
        environ: Environment mapping (defaults to ``os.environ``).
        **overrides: Explicit values with the highest priority.

    Returns:
        A validated ScannerConfig.
    """
    data: Dict[str, Any] = {}

    if path:
        if os.path.isfile(path):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data.update(loaded)
                    logger.info(f"Loaded scanner configuration from '{path}'")
                else:
                    logger.error(f"Configuration file '{path}' is not a JSON object, using defaults")
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse configuration file '{path}': {e}. Using defaults.")
            except OSError as e:
                logger.error(f"Cannot read configuration file '{path}': {e}. Using defaults.")
        else:
            logger.info(f"Configuration file '{path}' does not exist. Using defaults.")

    data.update(_env_overrides(os.environ if environ is None else environ))
    data.update(overrides)

    defaults = ScannerConfig()
    known = {f.name for f in fields(ScannerConfig)}
    values = {}
    for name, value in data.items():
        if name not in known:
            logger.warning(f"Ignoring unknown configuration key '{name}'")
            continue
        try:
            values[name] = _coerce(name, value, getattr(defaults, name))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for '{name}': {value!r}") from e

    return ScannerConfig(**values).validate()
