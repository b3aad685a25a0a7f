"""
render.py
=========
Side-effect-free description of map layers.

Nothing here draws anything.  :func:`render` validates a raster against a
:class:`VisParams` and returns a :class:`LayerRequest`; a
:class:`LayerPlan` collects requests and an optional map view.  A separate
presenter (see :mod:`water_index_mapper.presenters`) turns a plan into an
interactive map or a static figure, so the presentation layer can be
swapped without touching the analysis.

Visualisation parameters mirror the familiar Earth Engine shape::

    {"bands": ["B8", "B4", "B3"], "min": 0, "max": 5000, "gamma": [0.95, 1.1, 1]}
    {"min": -1, "max": 1, "palette": ["000000", "FFFFFF"]}
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Sequence, Tuple, Union

import matplotlib.colors as mcolors
import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

from .aoi import Region
from .raster import Raster

Number = Union[float, int]
PerBand = Union[Number, Tuple[Number, ...]]

_HEX_NO_HASH = re.compile(r"^[0-9a-fA-F]{6}$")


def _as_tuple(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return value


def parse_color(color: str) -> Tuple[float, float, float]:
    """Return an ``(r, g, b)`` triple in 0-1 for a CSS name or hex string.

    Bare six-digit hex (``"0000FF"``) is accepted as well as ``"#0000FF"``.

    Raises:
        ConfigurationError: If matplotlib does not recognise the colour.
    """
    candidate = f"#{color}" if _HEX_NO_HASH.match(color) else color
    try:
        return mcolors.to_rgb(candidate)
    except ValueError as exc:
        raise ConfigurationError(f"Unrecognised palette colour: {color!r}") from exc


# ---------------------------------------------------------------------------
# Visualisation parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VisParams:
    """How to stretch and colour a raster for display.

    Attributes:
        bands: One or three band names.  Empty means "pick for me": the
            single band of a one-band raster, else the first three bands.
        min: Value mapped to black, scalar or one per band.
        max: Value mapped to full intensity, scalar or one per band.
        palette: Colours interpolated between ``min`` and ``max``.  Only
            valid for single-band display.
        gamma: Gamma correction, scalar or one per band.  Not combinable
            with ``palette``.
    """

    bands: Tuple[str, ...] = ()
    min: PerBand = 0.0
    max: PerBand = 1.0
    palette: Tuple[str, ...] | None = None
    gamma: PerBand | None = None

    def __post_init__(self) -> None:
        bands = self.bands
        if isinstance(bands, str):
            bands = tuple(b.strip() for b in bands.split(",") if b.strip())
        object.__setattr__(self, "bands", tuple(bands))
        for name in ("min", "max", "palette", "gamma"):
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))

        if len(self.bands) not in (0, 1, 3):
            raise ConfigurationError(
                f"Display needs 1 or 3 bands, got {len(self.bands)}: {list(self.bands)}"
            )

        width = len(self.bands) or None
        for name in ("min", "max", "gamma"):
            value = getattr(self, name)
            if value is None:
                continue
            values = value if isinstance(value, tuple) else (value,)
            if isinstance(value, tuple) and len(value) not in (1,) and width not in (None, len(value)):
                raise ConfigurationError(
                    f"'{name}' has {len(value)} values but {width} band(s) are displayed."
                )
            for v in values:
                Validators.assert_finite(v, name)

        if self.gamma is not None:
            gammas = self.gamma if isinstance(self.gamma, tuple) else (self.gamma,)
            for g in gammas:
                Validators.assert_positive_number(g, "gamma")

        if self.palette is not None:
            if len(self.bands) > 1:
                raise ConfigurationError("A palette can only be applied to a single band.")
            if self.gamma is not None:
                raise ConfigurationError("'gamma' and 'palette' cannot be combined.")
            if not self.palette:
                raise ConfigurationError("A palette needs at least one colour.")
            for color in self.palette:
                parse_color(color)

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> VisParams:
        """Build from an Earth Engine style dict (``bands`` may be ``"B4,B3,B2"``)."""
        unknown = set(params) - {"bands", "min", "max", "palette", "gamma"}
        if unknown:
            raise ConfigurationError(f"Unknown visualisation key(s): {', '.join(sorted(unknown))}")
        return cls(**dict(params))

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"bands": list(self.bands), "min": self.min, "max": self.max}
        if self.palette is not None:
            out["palette"] = list(self.palette)
        if self.gamma is not None:
            out["gamma"] = self.gamma
        return {k: list(v) if isinstance(v, tuple) else v for k, v in out.items()}

    def per_band(self, name: str, count: int) -> Tuple[float, ...]:
        """Broadcast ``min``/``max``/``gamma`` to *count* values."""
        value = getattr(self, name)
        if value is None:
            return (1.0,) * count
        if isinstance(value, tuple):
            if len(value) == 1:
                return (float(value[0]),) * count
            if len(value) != count:
                raise ConfigurationError(
                    f"'{name}' has {len(value)} values but {count} band(s) are displayed."
                )
            return tuple(float(v) for v in value)
        return (float(value),) * count


# ---------------------------------------------------------------------------
# Layer requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class LayerRequest:
    """One layer to add to a map: what to draw and how."""

    raster: Raster = field(repr=False)
    vis: VisParams
    label: str
    shown: bool = True
    opacity: float = 1.0


@dataclass(frozen=True)
class MapView:
    """Where the map is centred (``Map.centerObject`` equivalent)."""

    center_lon: float
    center_lat: float
    zoom: int = 14


@dataclass(frozen=True)
class LayerPlan:
    """Ordered, immutable list of layer requests plus an optional view.

    Every method returns a new plan.
    """

    layers: Tuple[LayerRequest, ...] = ()
    view: MapView | None = None
    region: Region | None = None

    def add(self, request: LayerRequest) -> LayerPlan:
        return replace(self, layers=self.layers + (request,))

    def add_layer(
        self,
        raster: Raster,
        vis: VisParams | None = None,
        label: str = "",
        shown: bool = True,
    ) -> LayerPlan:
        """Validate and append a layer (``Map.addLayer`` equivalent)."""
        return self.add(render(raster, vis, label or f"Layer {len(self.layers) + 1}", shown=shown))

    def center_on(self, region: Region, zoom: int = 14) -> LayerPlan:
        lon, lat = region.centroid
        return replace(self, view=MapView(lon, lat, zoom), region=region)

    def extend(self, other: LayerPlan) -> LayerPlan:
        return replace(
            self,
            layers=self.layers + other.layers,
            view=self.view or other.view,
            region=self.region or other.region,
        )

    @property
    def labels(self) -> list[str]:
        return [layer.label for layer in self.layers]

    def __len__(self) -> int:
        return len(self.layers)


def render(
    raster: Raster,
    vis: VisParams | None = None,
    label: str = "",
    *,
    shown: bool = True,
    opacity: float = 1.0,
) -> LayerRequest:
    """Resolve *vis* against *raster* and return a :class:`LayerRequest`.

    Raises:
        MissingBandError: If a display band is not in the raster.
        ConfigurationError: If the band count does not suit the params.
    """
    vis = vis or VisParams()
    bands = vis.bands
    if not bands:
        names = raster.band_names
        bands = tuple(names[:3]) if len(names) >= 3 and vis.palette is None else (names[0],)
        vis = replace(vis, bands=bands)
    Validators.assert_bands_present(raster.band_names, list(bands))
    for name in ("min", "max", "gamma"):
        vis.per_band(name, len(bands))
    if not 0.0 <= opacity <= 1.0:
        raise ConfigurationError(f"opacity must be within [0, 1], got {opacity}.")
    return LayerRequest(raster=raster, vis=vis, label=label, shown=shown, opacity=opacity)


def random_visualizer(k: int, seed: int | None = None) -> VisParams:
    """Palette params giving each of *k* cluster labels a random colour."""
    Validators.assert_positive_int(k, "cluster count")
    rng = np.random.default_rng(seed)
    colors = rng.integers(0, 256, size=(k, 3))
    palette = tuple("{:02x}{:02x}{:02x}".format(*c) for c in colors)
    return VisParams(min=0, max=max(k - 1, 1), palette=palette)


# ---------------------------------------------------------------------------
# Pixel conversion (used by presenters)
# ---------------------------------------------------------------------------

def to_rgba(request: LayerRequest) -> npt.NDArray[np.uint8]:
    """Convert a layer request to an ``(rows, cols, 4)`` uint8 image.

    Values are stretched linearly from ``min`` to ``max`` and clipped,
    gamma-corrected as ``v ** (1 / gamma)``, then either mapped through
    the palette (single band), shown as grey (single band, no palette) or
    combined as RGB.  Pixels invalid in any displayed band are fully
    transparent.
    """
    vis = request.vis
    raster = request.raster
    bands = list(vis.bands)
    count = len(bands)
    lows = vis.per_band("min", count)
    highs = vis.per_band("max", count)
    gammas = vis.per_band("gamma", count)

    channels = []
    for name, lo, hi, g in zip(bands, lows, highs, gammas):
        values = raster.band(name).astype(np.float64)
        span = hi - lo
        with np.errstate(invalid="ignore", divide="ignore"):
            norm = (values - lo) / span if span != 0 else np.zeros_like(values)
        norm = np.clip(np.nan_to_num(norm, nan=0.0), 0.0, 1.0)
        if g != 1.0:
            norm = norm ** (1.0 / g)
        channels.append(norm)

    if count == 1 and vis.palette is not None:
        colors = [parse_color(c) for c in vis.palette]
        if len(colors) == 1:
            colors = colors * 2
        cmap = mcolors.LinearSegmentedColormap.from_list("palette", colors, N=256)
        rgb = cmap(channels[0])[..., :3]
    elif count == 1:
        rgb = np.repeat(channels[0][..., np.newaxis], 3, axis=2)
    else:
        rgb = np.stack(channels, axis=-1)

    alpha = raster.valid_mask(bands).astype(np.float64) * request.opacity
    rgba = np.concatenate([rgb, alpha[..., np.newaxis]], axis=-1)
    return np.round(rgba * 255).astype(np.uint8)
