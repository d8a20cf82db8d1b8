# src/orimap/config.py

"""
This module defines the immutable configuration shared by every stage of the terrain pipeline.

A PipelineConfig is validated once when constructed and is then safe to share between
workers processing different tiles. Values can be given directly as keyword arguments or
parsed from the flat key/value mapping produced by an external ini loader.
"""

from dataclasses import dataclass, fields, replace as dc_replace
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import logging
import re

from .exceptions import ConfigurationError

log = logging.getLogger(__name__)

__all__ = [
    "Zone",
    "ThresholdBand",
    "PipelineConfig",
    "DEFAULT_ZONES",
    "DEFAULT_THRESHOLDS",
    "DEFAULT_GREENSHADES",
    "TERRAIN_TYPES"
]

@dataclass(frozen=True)
class Zone:
    """
    Height band in which a vegetation return counts as green.

    Attributes:
        low (float): Inclusive lower height above ground.
        high (float): Exclusive upper height above ground.
        roof (float): The zone only applies where the canopy height is below this value.
        factor (float): Weight multiplier for returns in this zone.
    """
    low: float
    high: float
    roof: float
    factor: float

    def matches(self, height: float, canopy: float) -> bool:
        return self.low <= height < self.high and canopy < self.roof

@dataclass(frozen=True)
class ThresholdBand:
    """
    Canopy height range that selects the density normalization ratio.

    Attributes:
        roof_low (float): Inclusive lower canopy height.
        roof_high (float): Exclusive upper canopy height.
        ratio (float): Divisor applied to the adjusted density of cells in this band.
    """
    roof_low: float
    roof_high: float
    ratio: float

    def contains(self, canopy: float) -> bool:
        return self.roof_low <= canopy < self.roof_high

DEFAULT_ZONES = (
    Zone(1.0, 2.65, 99.0, 1.0),
    Zone(2.65, 3.4, 99.0, 0.1),
    Zone(3.4, 5.5, 8.0, 0.2),
)

DEFAULT_THRESHOLDS = (
    ThresholdBand(0.20, 3.0, 0.1),
    ThresholdBand(3.0, 4.0, 0.1),
    ThresholdBand(4.0, 7.0, 0.1),
    ThresholdBand(7.0, 20.0, 0.1),
    ThresholdBand(20.0, 99.0, 0.1),
)

DEFAULT_GREENSHADES = (0.2, 0.35, 0.5, 0.7, 1.3, 2.6, 4.0, 99.0, 99.0, 99.0, 99.0)

# Relief classes tuning the cloth simulation used to infer ground
TERRAIN_TYPES = ("flat", "relief", "high_relief")

# Legacy ini spellings mapped onto field names
_ALIASES = {
    "yellowthresold": "yellowthreshold",
    "cellsize": "cell_size",
    "coordzoffset": "zoffset",
}

_ZONE_KEY = re.compile(r"^zone(\d+)$")
_BAND_KEY = re.compile(r"^thres(?:h)?old(\d+)$")

def _split_values(raw: Union[str, float, int], key: str) -> Tuple[float, ...]:
    """Parses a pipe separated value list such as '1.0|2.65|99|1'."""
    if isinstance(raw, (int, float)):
        return (float(raw),)
    try:
        return tuple(float(v) for v in str(raw).split("|") if v.strip() != "")
    except ValueError as e:
        raise ConfigurationError(f"Cannot parse '{key}' value '{raw}': {e}") from e

def _parse_bool(raw: Any, key: str) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    try:
        return float(text) != 0.0
    except ValueError as e:
        raise ConfigurationError(f"Cannot parse '{key}' value '{raw}' as a flag") from e

@dataclass(frozen=True)
class PipelineConfig:
    """
    Every tunable of the terrain pipeline with its documented default.

    Kernel sizes and greendetectsize count grid cells. formlineaddition and minimumgap count
    polyline vertices. dashlength and gaplength are rendering units converted to distance
    with 254/600 * scalefactor. Every other length is in distance units.
    """
    # Grid
    cell_size: float = 2.0
    scalefactor: float = 1.0

    # Ingestion
    coordxfactor: float = 1.0
    coordyfactor: float = 1.0
    coordzfactor: float = 1.0
    coordxoffset: float = 0.0
    coordyoffset: float = 0.0
    zoffset: float = 0.0
    thinfactor: float = 1.0
    thinseed: int = 0

    # Point classes
    groundclass: int = 2
    waterclass: int = 9
    buildingsclass: int = 6
    waterelevation: Optional[float] = None
    infer_ground: bool = True
    terrain: str = "relief"

    # Vegetation
    greenground: float = 0.9
    greenhigh: float = 2.0
    topweight: float = 0.8
    vegezoffset: float = 0.0
    greendetectsize: int = 3
    zones: Tuple[Zone, ...] = DEFAULT_ZONES
    thresholds: Tuple[ThresholdBand, ...] = DEFAULT_THRESHOLDS
    pointvolumefactor: float = 0.1
    pointvolumeexponent: float = 1.0
    firstandlastreturnfactor: float = 1.0
    lastreturnfactor: float = 1.0
    firstandlastreturnasground: float = 3.0
    greenshades: Tuple[float, ...] = DEFAULT_GREENSHADES
    groundboxsize: int = 1
    medianboxsize: int = 9
    medianboxsize2: int = 1
    yellowheight: float = 0.9
    yellowthreshold: float = 0.9
    yellowfirstlast: float = 1.0
    yellow_smoothing: bool = False
    yellowmedianboxsize: int = 0
    undergrowth: float = 0.35
    undergrowth2: float = 0.56
    undergrowthboxsize: int = 3

    # Contours
    contour_interval: float = 5.0
    formline: int = 2
    formlinesteepness: float = 0.37
    formlineaddition: int = 17
    minimumgap: int = 30
    dashlength: float = 60.0
    gaplength: float = 12.0
    indexcontours: float = 12.5
    smoothing: float = 0.7
    curviness: float = 1.1
    knolls: float = 0.6
    depression_length: float = 181.0
    remove_touching_contours: bool = False
    detect_knolls: bool = False
    touching_distance: float = 1.0

    # Cliffs
    cliff1: float = 1.15
    cliff2: float = 2.0
    cliffthin: float = 1.0
    cliffsteepfactor: float = 0.38
    cliffflatplace: float = 3.5
    cliffnosmallciffs: float = 5.5
    cliffbackground: float = 10.0
    slope_radius: int = 1

    def __post_init__(self):
        # Accept any sequence for the table fields but store tuples so the config stays hashable
        object.__setattr__(self, "zones", tuple(self.zones))
        object.__setattr__(self, "thresholds", tuple(self.thresholds))
        object.__setattr__(self, "greenshades", tuple(float(v) for v in self.greenshades))
        self.validate()

    def validate(self):
        """
        Checks ranges and table consistency.

        Raises:
            ConfigurationError: On the first violated constraint.
        """
        if self.cell_size <= 0:
            raise ConfigurationError(f"cell_size must be positive, got {self.cell_size}")
        if self.scalefactor <= 0:
            raise ConfigurationError(f"scalefactor must be positive, got {self.scalefactor}")
        if not 0.0 < self.thinfactor <= 1.0:
            raise ConfigurationError(f"thinfactor must be in (0, 1], got {self.thinfactor}")
        if self.contour_interval <= 0:
            raise ConfigurationError(f"contour_interval must be positive, got {self.contour_interval}")
        if self.indexcontours <= 0:
            raise ConfigurationError(f"indexcontours must be positive, got {self.indexcontours}")
        if self.formline not in (0, 1, 2):
            raise ConfigurationError(f"formline must be 0, 1 or 2, got {self.formline}")
        if not 0.0 <= self.knolls <= 1.0:
            raise ConfigurationError(f"knolls must be in [0, 1], got {self.knolls}")
        if not 0.0 <= self.topweight <= 1.0:
            raise ConfigurationError(f"topweight must be in [0, 1], got {self.topweight}")
        if self.smoothing < 0:
            raise ConfigurationError(f"smoothing must not be negative, got {self.smoothing}")
        if self.cliff1 > self.cliff2:
            raise ConfigurationError(f"cliff1 ({self.cliff1}) must not exceed cliff2 ({self.cliff2})")
        if self.terrain not in TERRAIN_TYPES:
            raise ConfigurationError(f"terrain must be one of {TERRAIN_TYPES}, got {self.terrain!r}")
        if self.slope_radius < 1:
            raise ConfigurationError(f"slope_radius must be at least 1, got {self.slope_radius}")
        if self.dashlength <= 0 or self.gaplength < 0:
            raise ConfigurationError("dashlength must be positive and gaplength non-negative")

        for name in ("greendetectsize", "groundboxsize", "medianboxsize", "medianboxsize2",
                     "yellowmedianboxsize", "undergrowthboxsize", "formlineaddition", "minimumgap"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative, got {getattr(self, name)}")

        if not self.zones:
            raise ConfigurationError("At least one vegetation zone is required")
        for i, zone in enumerate(self.zones, start=1):
            if zone.low >= zone.high:
                raise ConfigurationError(f"zone{i}: low ({zone.low}) must be below high ({zone.high})")

        if not self.thresholds:
            raise ConfigurationError("At least one threshold band is required")
        for i, band in enumerate(self.thresholds, start=1):
            if band.roof_low >= band.roof_high:
                raise ConfigurationError(
                    f"threshold{i}: roof_low ({band.roof_low}) must be below roof_high ({band.roof_high})"
                )
            if band.ratio <= 0:
                raise ConfigurationError(f"threshold{i}: ratio must be positive, got {band.ratio}")
        for prev, nxt in zip(self.thresholds, self.thresholds[1:]):
            if prev.roof_high != nxt.roof_low:
                raise ConfigurationError(
                    f"Threshold bands must be sorted and contiguous: {prev.roof_high} != {nxt.roof_low}"
                )

        if not self.greenshades:
            raise ConfigurationError("greenshades must contain at least one cut point")
        if any(b < a for a, b in zip(self.greenshades, self.greenshades[1:])):
            raise ConfigurationError(f"greenshades must be non-decreasing, got {self.greenshades}")

    @property
    def dash_distance(self) -> float:
        """Dash length of form-lines in distance units."""
        return self.dashlength * 254.0 / 600.0 * self.scalefactor

    @property
    def gap_distance(self) -> float:
        """Gap length between form-line dashes in distance units."""
        return self.gaplength * 254.0 / 600.0 * self.scalefactor

    def replace(self, **changes) -> "PipelineConfig":
        """Returns a validated copy with the given fields changed."""
        return dc_replace(self, **changes)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PipelineConfig":
        """
        Builds a configuration from a flat key/value mapping.

        The mapping typically comes from an ini file section. Values may be strings or numbers.
        Zones are given as zone1, zone2, ... ('low|high|roof|factor'), threshold bands as
        thresold1, ... or threshold1, ... ('roof_low|roof_high|ratio') and greenshades as a
        pipe separated list. Unknown keys are ignored.

        Args:
            values (Mapping[str, Any]): Raw configuration values.

        Returns:
            PipelineConfig: Validated configuration.

        Raises:
            ConfigurationError: If a value cannot be parsed or fails validation.
        """
        known = {f.name: f for f in fields(cls)}
        defaults = cls()
        kwargs: Dict[str, Any] = {}
        zones: Dict[int, Zone] = {}
        bands: Dict[int, ThresholdBand] = {}

        for raw_key, raw in values.items():
            key = _ALIASES.get(raw_key.strip().lower(), raw_key.strip().lower())

            zone_match = _ZONE_KEY.match(key)
            band_match = _BAND_KEY.match(key)
            if zone_match:
                parts = _split_values(raw, key)
                if len(parts) != 4:
                    raise ConfigurationError(f"{key} needs 4 values (low|high|roof|factor), got '{raw}'")
                zones[int(zone_match.group(1))] = Zone(*parts)
                continue
            if band_match:
                parts = _split_values(raw, key)
                if len(parts) != 3:
                    raise ConfigurationError(f"{key} needs 3 values (roof_low|roof_high|ratio), got '{raw}'")
                bands[int(band_match.group(1))] = ThresholdBand(*parts)
                continue
            if key == "greenshades":
                kwargs["greenshades"] = _split_values(raw, key)
                continue
            if key not in known or key in ("zones", "thresholds"):
                log.debug(f"Ignoring unknown configuration key '{raw_key}'")
                continue

            default = getattr(defaults, key)
            try:
                if isinstance(default, bool):
                    kwargs[key] = _parse_bool(raw, key)
                elif isinstance(default, int):
                    kwargs[key] = int(float(raw))
                elif isinstance(default, str):
                    kwargs[key] = str(raw).strip().lower()
                elif default is None:
                    text = str(raw).strip()
                    kwargs[key] = None if text == "" else float(text)
                else:
                    kwargs[key] = float(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Cannot parse '{raw_key}' value '{raw}': {e}") from e

        if zones:
            kwargs["zones"] = tuple(zones[i] for i in sorted(zones))
        if bands:
            kwargs["thresholds"] = tuple(bands[i] for i in sorted(bands))

        return cls(**kwargs)
