"""
config.py
=========
Sensor profiles and pipeline defaults.

Each sensor gets ONE :class:`SensorProfile` holding everything that
differs between sensors: which bands feed the water index, the water
threshold, the nominal ground resolution, and how its layers are
displayed.  Call sites never hard-code band names or thresholds.

The thresholds (Planet ``-0.5``, Sentinel-2 ``-0.75``) and the cluster
count (5) were picked by eye for one tundra study area.  They are
defaults, not constants of nature; override them per run or through a
JSON profile file::

    {
        "planet": {"threshold": -0.45},
        "landsat9": {
            "green_band": "B3", "other_band": "B6", "threshold": -0.6,
            "scale": 30, "bands": ["B2", "B3", "B4", "B5", "B6"]
        }
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Literal, Mapping, Tuple

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from .aoi import Region
from .render import VisParams

logger = logging.getLogger("beadedstreams.water_index_mapper.config")


# ---------------------------------------------------------------------------
# Sensor profile
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SensorProfile:
    """Everything sensor-specific about the water-index workflow.

    Attributes:
        name: Short identifier (``"planet"``, ``"sentinel2"``).
        label: Display name used in layer labels and export names.
        green_band: Band used as the green term of the index.
        other_band: Water-discriminating band: SWIR where the sensor has
            one, near-infrared for sensors without true SWIR.
        threshold: Index values strictly below this are flagged.
        scale: Nominal ground resolution in metres per pixel; also the
            grid requested when fetching from a STAC catalogue.
        bands: All spectral bands the sensor provides, in order.
        display: Visualisation for the raw imagery composite.
        index_vis: Visualisation for the index layer.
        collection_id: Catalogue collection (STAC id or local folder).
        asset_names: Band name → STAC asset key, where they differ.
        sort_key: Item property sorted ascending to pick one scene.
    """

    name: str
    label: str
    green_band: str
    other_band: str
    threshold: float
    scale: float
    bands: Tuple[str, ...]
    display: VisParams = field(default_factory=VisParams)
    index_vis: VisParams = field(
        default_factory=lambda: VisParams(min=-1, max=1, palette=("000000", "FFFFFF"))
    )
    collection_id: str | None = None
    asset_names: Mapping[str, str] = field(default_factory=dict)
    sort_key: str = "eo:cloud_cover"

    def __post_init__(self) -> None:
        object.__setattr__(self, "bands", tuple(self.bands))
        object.__setattr__(self, "asset_names", MappingProxyType(dict(self.asset_names)))
        if isinstance(self.display, Mapping):
            object.__setattr__(self, "display", VisParams.from_dict(self.display))
        if isinstance(self.index_vis, Mapping):
            object.__setattr__(self, "index_vis", VisParams.from_dict(self.index_vis))

        Validators.assert_finite(self.threshold, f"{self.name} threshold")
        Validators.assert_positive_number(self.scale, f"{self.name} scale")
        if self.green_band == self.other_band:
            raise ConfigurationError(
                f"{self.name}: green and other band are both '{self.green_band}'."
            )
        Validators.assert_bands_present(self.bands, [self.green_band, self.other_band])

    @property
    def index_bands(self) -> Tuple[str, str]:
        return self.green_band, self.other_band

    def asset_for(self, band: str) -> str:
        return self.asset_names.get(band, band)

    def with_overrides(self, **changes: Any) -> SensorProfile:
        """Return a copy with some fields replaced (``None`` values are ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["bands"] = list(self.bands)
        out["asset_names"] = dict(self.asset_names)
        out["display"] = self.display.to_dict()
        out["index_vis"] = self.index_vis.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SensorProfile:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown profile key(s): {', '.join(sorted(unknown))}")
        try:
            return cls(**dict(data))
        except TypeError as exc:
            raise ConfigurationError(f"Incomplete sensor profile: {exc}") from exc


# ---------------------------------------------------------------------------
# Built-in profiles
# ---------------------------------------------------------------------------

# PlanetScope 4-band analytic: B1 blue, B2 green, B3 red, B4 NIR.  No SWIR,
# so NIR stands in as the water-discriminating band.
PLANET = SensorProfile(
    name="planet",
    label="Planet",
    green_band="B2",
    other_band="B4",
    threshold=-0.5,
    scale=3.0,
    bands=("B1", "B2", "B3", "B4"),
    display=VisParams(bands=("B4", "B3", "B2"), min=0, max=3000),
    collection_id="planet",
)

SENTINEL2 = SensorProfile(
    name="sentinel2",
    label="Sentinel",
    green_band="B3",
    other_band="B8",
    threshold=-0.75,
    scale=10.0,
    bands=("B2", "B3", "B4", "B8", "B11", "B12"),
    display=VisParams(bands=("B8", "B4", "B3"), min=0, max=5000, gamma=(0.95, 1.1, 1.0)),
    collection_id="sentinel-2-l2a",
    asset_names={"B2": "B02", "B3": "B03", "B4": "B04", "B8": "B08"},
)

PROFILES: Mapping[str, SensorProfile] = MappingProxyType(
    {PLANET.name: PLANET, SENTINEL2.name: SENTINEL2}
)

MASK_VIS = VisParams(min=0, max=1)
WATER_VIS = VisParams(min=-1, max=0, palette=("white", "blue"))
ELEVATION_VIS = VisParams(min=160, max=180)

# Copernicus GLO-30 stands in for ArcticDEM, which has no STAC listing.
ELEVATION_COLLECTION = "cop-dem-glo-30"
ELEVATION_ASSET = "data"

# Beaded-stream study site on the North Slope of Alaska.
STUDY_ROI_COORDS: Tuple[Tuple[float, float], ...] = (
    (-148.82211, 69.49305),
    (-148.80658, 69.49731),
    (-148.79748, 69.49430),
    (-148.81585, 69.48874),
)
STUDY_START = "2019-07-01"
STUDY_END = "2019-09-01"


def study_region() -> Region:
    return Region.from_coordinates(STUDY_ROI_COORDS, label="Beaded streams ROI")


def get_profile(name: str, registry: Mapping[str, SensorProfile] | None = None) -> SensorProfile:
    """Look up a profile by name (case-insensitive).

    Raises:
        ConfigurationError: If no profile has that name.
    """
    registry = PROFILES if registry is None else registry
    key = name.strip().lower()
    if key not in registry:
        raise ConfigurationError(
            f"Unknown sensor '{name}'. Available: {', '.join(sorted(registry))}"
        )
    return registry[key]


def load_profiles(
    path: Path,
    base: Mapping[str, SensorProfile] | None = None,
) -> Dict[str, SensorProfile]:
    """Read a JSON profile file and merge it over *base* (default built-ins).

    Entries naming an existing profile override only the keys they
    give; new names must be complete profiles.

    Raises:
        InputValidationError: If the file is missing or not a JSON object.
        ConfigurationError: If an entry is incomplete or out of range.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except json.JSONDecodeError as exc:
        raise InputValidationError(f"'{path.name}' is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise InputValidationError(f"'{path.name}' must hold a JSON object of profiles.")

    merged: Dict[str, SensorProfile] = dict(PROFILES if base is None else base)
    for name, entry in raw.items():
        key = name.strip().lower()
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Profile '{name}' must be a JSON object.")
        if key in merged:
            data = {**merged[key].to_dict(), **entry, "name": key}
        else:
            data = {"label": name, **entry, "name": key}
        merged[key] = SensorProfile.from_dict(data)
        logger.debug("Loaded profile '%s' from %s", key, path.name)
    return merged


# ---------------------------------------------------------------------------
# Pipeline defaults
# ---------------------------------------------------------------------------

ClusterInput = Literal["index", "bands"]


@dataclass(frozen=True)
class PipelineConfig:
    """Tunable parameters of one pipeline run.

    Attributes:
        k: Number of k-means clusters.
        max_samples: Upper bound on sampled pixels used for training.
        seed: Seed for sampling and k-means initialisation; ``None`` is
            non-deterministic.
        cluster_on: ``"index"`` clusters the single index band,
            ``"bands"`` clusters the raw spectral bands.
        normalize: Min-max scale features before k-means.
        threshold: Overrides the profile threshold when set.
        sample_scale: Resample to this resolution (CRS units) before
            sampling; ``None`` keeps the native grid.
        export: Write the index raster when the run finishes.
        export_scale: Export resolution; ``None`` keeps the native grid.
        zoom: Map zoom used when centring on the region.
        collection: Also add MNDWI to every scene the source returns and
            show each scene as extra hidden layers.
    """

    k: int = 5
    max_samples: int = 5000
    seed: int | None = None
    cluster_on: ClusterInput = "index"
    normalize: bool = True
    threshold: float | None = None
    sample_scale: float | None = None
    export: bool = True
    export_scale: float | None = None
    zoom: int = 14
    collection: bool = False

    def __post_init__(self) -> None:
        Validators.assert_positive_int(self.k, "cluster count k")
        Validators.assert_positive_int(self.max_samples, "max_samples")
        Validators.assert_seed_valid(self.seed)
        if self.cluster_on not in ("index", "bands"):
            raise ConfigurationError(
                f"cluster_on must be 'index' or 'bands', got {self.cluster_on!r}."
            )
        if self.threshold is not None:
            Validators.assert_finite(self.threshold, "threshold")
        if self.sample_scale is not None:
            Validators.assert_positive_number(self.sample_scale, "sample_scale")
        if self.export_scale is not None:
            Validators.assert_positive_number(self.export_scale, "export_scale")

    def threshold_for(self, profile: SensorProfile) -> float:
        return profile.threshold if self.threshold is None else float(self.threshold)


DEFAULT_PIPELINE = PipelineConfig()
