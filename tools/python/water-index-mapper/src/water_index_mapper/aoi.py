"""
aoi.py
======
Define the region of interest used to bound sampling and centre the map.

A :class:`Region` is a closed WGS84 polygon built from ordered
``(lon, lat)`` vertices.  It can also be read from a GeoJSON file or
built from a bounding box.  The ring must be simple (no
self-intersections) and is closed automatically when the first and last
vertices differ.
"""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence, Tuple

import geopandas as gpd
import numpy as np
import numpy.typing as npt
from pyproj import CRS
from rasterio.features import geometry_mask
from shapely.geometry import Polygon, box, mapping, shape
from shapely.ops import unary_union

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from .raster import Raster

WGS84 = "EPSG:4326"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utm_crs_from_lonlat(lon: float, lat: float) -> CRS:
    """Return the EPSG UTM CRS that covers *lon*, *lat*."""
    zone = int((lon + 180) / 6) + 1
    base = 32600 if lat >= 0 else 32700
    return CRS.from_epsg(base + zone)


def _pairs_from_flat(values: Sequence[float]) -> list[Tuple[float, float]]:
    """Group a flat ``lon, lat, lon, lat, …`` sequence into pairs."""
    if len(values) % 2:
        raise ConfigurationError(
            f"A flat coordinate list needs an even number of values, got {len(values)}."
        )
    return [(float(values[i]), float(values[i + 1])) for i in range(0, len(values), 2)]


# ---------------------------------------------------------------------------
# Region
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Region:
    """A closed polygon region of interest in WGS84.

    Attributes:
        polygon: Shapely polygon with ``(lon, lat)`` vertices.
        label: Human-readable description used in map layers and logs.
    """

    polygon: Polygon
    label: str = "Region of interest"

    def __post_init__(self) -> None:
        ring = self.polygon.exterior
        distinct = {tuple(c) for c in ring.coords}
        if len(distinct) < 3:
            raise ConfigurationError(
                f"A region needs at least 3 distinct vertices, got {len(distinct)}."
            )
        if not ring.is_simple or not self.polygon.is_valid:
            raise ConfigurationError(
                "Region vertices must form a simple closed ring "
                "(the polygon intersects itself)."
            )
        if self.polygon.area == 0:
            raise ConfigurationError("Region vertices are collinear; the polygon has no area.")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_coordinates(
        cls,
        coordinates: Sequence[Tuple[float, float]] | Sequence[float],
        label: str = "User-defined polygon",
    ) -> Region:
        """Build a region from ``(lon, lat)`` pairs or a flat number list.

        The flat form ``[lon0, lat0, lon1, lat1, …]`` matches how polygons
        are written in Earth Engine scripts.  The ring is closed
        automatically if the first and last points differ.
        """
        coords = list(coordinates)
        if coords and not isinstance(coords[0], (tuple, list)):
            pairs = _pairs_from_flat(coords)  # type: ignore[arg-type]
        else:
            pairs = [(float(lon), float(lat)) for lon, lat in coords]  # type: ignore[misc]
        if len(pairs) < 3:
            raise ConfigurationError(f"A region needs at least 3 vertices, got {len(pairs)}.")
        if pairs[0] != pairs[-1]:
            pairs.append(pairs[0])
        return cls(polygon=Polygon(pairs), label=label)

    @classmethod
    def from_bbox(
        cls,
        min_lon: float,
        min_lat: float,
        max_lon: float,
        max_lat: float,
    ) -> Region:
        """Build a rectangular region from a WGS84 bounding box."""
        if min_lon >= max_lon or min_lat >= max_lat:
            raise ConfigurationError(
                f"Bounding box is empty: ({min_lon}, {min_lat}, {max_lon}, {max_lat})."
            )
        label = f"bbox({min_lon:.3f},{min_lat:.3f},{max_lon:.3f},{max_lat:.3f})"
        return cls(polygon=box(min_lon, min_lat, max_lon, max_lat), label=label)

    @classmethod
    def footprint(cls, raster: Raster, label: str = "Image footprint") -> Region:
        """WGS84 bounding box of *raster*'s extent.

        A raster without a CRS is taken to be in WGS84 already.
        """
        outline = box(*raster.bounds)
        if raster.crs is not None:
            outline = gpd.GeoSeries([outline], crs=raster.crs.to_wkt()).to_crs(WGS84).iloc[0]
        return cls(polygon=box(*outline.bounds), label=label)

    @classmethod
    def from_geojson(cls, source: Path | Mapping[str, Any], label: str | None = None) -> Region:
        """Read a region from a GeoJSON file or already-parsed mapping.

        Accepts a bare Polygon geometry, a Feature, or a FeatureCollection
        (whose polygons are dissolved into one).  Coordinates are assumed
        to be WGS84, as GeoJSON requires.

        Raises:
            InputValidationError: If the file is missing or holds no polygon.
        """
        if isinstance(source, Mapping):
            data = dict(source)
            default_label = "GeoJSON polygon"
        else:
            path = Path(source)
            Validators.assert_file_exists(path)
            Validators.assert_supported_extension(path, [".geojson", ".json"])
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            default_label = path.stem

        if data.get("type") == "FeatureCollection":
            geoms = [shape(f["geometry"]) for f in data.get("features", []) if f.get("geometry")]
        elif data.get("type") == "Feature":
            geoms = [shape(data["geometry"])] if data.get("geometry") else []
        else:
            geoms = [shape(data)]

        merged = unary_union(geoms) if geoms else None
        if merged is None or merged.geom_type != "Polygon":
            raise InputValidationError(
                "GeoJSON must contain exactly one polygon (or polygons that "
                "dissolve into one)."
            )
        return cls(polygon=Polygon(merged.exterior.coords), label=label or default_label)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def vertices(self) -> list[Tuple[float, float]]:
        """Closed ring of ``(lon, lat)`` vertices."""
        return [(float(x), float(y)) for x, y in self.polygon.exterior.coords]

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        """``(min_lon, min_lat, max_lon, max_lat)``."""
        minx, miny, maxx, maxy = self.polygon.bounds
        return float(minx), float(miny), float(maxx), float(maxy)

    @property
    def centroid(self) -> Tuple[float, float]:
        """``(lon, lat)`` of the polygon centroid."""
        c = self.polygon.centroid
        return float(c.x), float(c.y)

    @property
    def utm_crs(self) -> CRS:
        """Best-fit UTM zone for the region centroid."""
        return _utm_crs_from_lonlat(*self.centroid)

    @property
    def gdf(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame({"label": [self.label]}, geometry=[self.polygon], crs=WGS84)

    def to_geojson(self) -> dict:
        """GeoJSON Feature for this region."""
        return {"type": "Feature", "properties": {"label": self.label}, "geometry": mapping(self.polygon)}

    # ------------------------------------------------------------------
    # Raster interaction
    # ------------------------------------------------------------------

    def geometry_in(self, crs: Any) -> Polygon:
        """Return the polygon reprojected to *crs* (``None`` = unchanged)."""
        if crs is None:
            warnings.warn(
                "Raster has no CRS -- assuming it uses WGS84 (EPSG:4326).",
                stacklevel=3,
            )
            return self.polygon
        target = CRS.from_user_input(crs)
        if target == CRS.from_user_input(WGS84):
            return self.polygon
        return self.gdf.to_crs(target).geometry.iloc[0]

    def pixel_mask(self, raster: Raster) -> npt.NDArray[np.bool_]:
        """Boolean array, ``True`` where a pixel centre lies inside the region."""
        geom = self.geometry_in(raster.crs)
        return geometry_mask(
            [mapping(geom)],
            out_shape=raster.shape,
            transform=raster.transform,
            invert=True,
            all_touched=False,
        )

    def intersects(self, raster: Raster) -> bool:
        """``True`` when the region overlaps the raster's footprint."""
        return self.geometry_in(raster.crs).intersects(box(*raster.bounds))

    def __repr__(self) -> str:
        b = self.bbox
        return (
            f"<Region '{self.label}' "
            f"bbox=({b[0]:.4f},{b[1]:.4f},{b[2]:.4f},{b[3]:.4f}) "
            f"{len(self.vertices) - 1} vertices>"
        )
