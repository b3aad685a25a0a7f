"""
fetcher.py
==========
Resolve a collection, a region and a date window to in-memory rasters.

Two repositories share one interface:

StacImageRepository   -- Microsoft Planetary Computer via the STAC API.
                         stackstac reads only the window covering the
                         region, on the region's UTM grid.
LocalImageRepository  -- a directory of GeoTIFF scenes (for commercial
                         imagery such as Planet that is not in a public
                         catalogue).

``resolve`` returns ONE scene: the first after sorting by the query's
``sort_key`` (least cloudy by default).  ``resolve_collection`` returns
every matching scene in that order.  Results are eager numpy-backed
:class:`~water_index_mapper.raster.Raster` objects.

Collections used
----------------
sentinel-2-l2a     -- Sentinel-2 Level-2A surface reflectance (0-10000 scale)
cop-dem-glo-30     -- Copernicus GLO-30 Digital Elevation Model (30 m)

Remote failures are wrapped once in
:class:`~shared.python.exceptions.ImageryFetchError` and never retried.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, List, Mapping, Sequence, Tuple

import numpy as np
import planetary_computer
import pystac_client
import stackstac
import xarray as xr

from shared.python.exceptions import BeadedStreamsError, ImageryFetchError
from shared.python.validators import Validators

from .aoi import Region
from .config import ELEVATION_ASSET, ELEVATION_COLLECTION, SensorProfile
from .raster import GEOTIFF_EXTENSIONS, Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.fetcher")

PLANETARY_COMPUTER_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
ELEVATION_BAND = "elevation"
ELEVATION_RESOLUTION = 30.0


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImageQuery:
    """What to fetch.

    Attributes:
        region: Area of interest; also fixes the output UTM grid.
        start_date: ISO 8601 start date (inclusive), or ``None``.
        end_date: ISO 8601 end date, or ``None``.
        bands: Band names to return.  Empty means every band/asset.
        asset_names: Band name → STAC asset key, where they differ.
        sort_key: Item property sorted ascending to rank scenes.
        max_cloud_cover: Drop scenes with ``eo:cloud_cover`` above this.
        scale: Output pixel size in metres (STAC only).
    """

    region: Region
    start_date: str | None = None
    end_date: str | None = None
    bands: Tuple[str, ...] = ()
    asset_names: Mapping[str, str] = field(default_factory=dict)
    sort_key: str = "eo:cloud_cover"
    max_cloud_cover: float | None = None
    scale: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bands", tuple(self.bands))
        object.__setattr__(self, "asset_names", MappingProxyType(dict(self.asset_names)))
        if self.scale is not None:
            Validators.assert_positive_number(self.scale, "scale")
        if self.max_cloud_cover is not None:
            Validators.assert_finite(self.max_cloud_cover, "max_cloud_cover")

    @classmethod
    def for_profile(
        cls,
        profile: SensorProfile,
        region: Region,
        start_date: str | None = None,
        end_date: str | None = None,
        max_cloud_cover: float | None = None,
    ) -> ImageQuery:
        """Query for every band of *profile* at its nominal resolution."""
        return cls(
            region=region,
            start_date=start_date,
            end_date=end_date,
            bands=profile.bands,
            asset_names=profile.asset_names,
            sort_key=profile.sort_key,
            max_cloud_cover=max_cloud_cover,
            scale=profile.scale,
        )

    @property
    def datetime_range(self) -> str | None:
        if self.start_date is None and self.end_date is None:
            return None
        return f"{self.start_date or '..'}/{self.end_date or '..'}"

    @property
    def assets(self) -> List[str]:
        return [self.asset_names.get(b, b) for b in self.bands]


# ---------------------------------------------------------------------------
# Repository interface
# ---------------------------------------------------------------------------

class ImageRepository(ABC):
    """Source of scenes for a collection id."""

    @abstractmethod
    def resolve_collection(self, collection_id: str, query: ImageQuery) -> List[Raster]:
        """Every scene matching *query*, best first.

        Raises:
            ImageryFetchError: If nothing matches or the source fails.
        """

    def resolve(self, collection_id: str, query: ImageQuery) -> Raster:
        """The best scene matching *query* (``collection.first()``)."""
        return self.resolve_collection(collection_id, query)[0]


# ---------------------------------------------------------------------------
# Planetary Computer STAC
# ---------------------------------------------------------------------------

class StacImageRepository(ImageRepository):
    """Streams imagery from a STAC API (Planetary Computer by default).

    Args:
        url: STAC API root.
        timeout: Seconds before an HTTP request to the catalogue fails.
        sign: Sign asset hrefs with Planetary Computer SAS tokens.
    """

    def __init__(
        self,
        url: str = PLANETARY_COMPUTER_URL,
        timeout: float | None = 60.0,
        sign: bool = True,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.sign = sign
        self._catalog: pystac_client.Client | None = None

    @property
    def catalog(self) -> pystac_client.Client:
        # Open once; sign_inplace adds SAS tokens to asset hrefs
        if self._catalog is None:
            self._catalog = pystac_client.Client.open(
                self.url,
                modifier=planetary_computer.sign_inplace if self.sign else None,
                timeout=self.timeout,
            )
        return self._catalog

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def resolve(self, collection_id: str, query: ImageQuery) -> Raster:
        items = self._search(collection_id, query)
        return self._fetch(collection_id, query, items[:1])[0]

    def resolve_collection(self, collection_id: str, query: ImageQuery) -> List[Raster]:
        items = self._search(collection_id, query)
        return self._fetch(collection_id, query, items)

    def resolve_elevation(
        self,
        query: ImageQuery,
        collection_id: str = ELEVATION_COLLECTION,
        asset: str = ELEVATION_ASSET,
    ) -> Raster:
        """Mosaic the DEM tiles covering the region into one ``elevation`` band.

        The DEM is returned on the query's grid (``scale``, default 30 m).
        """
        dem_query = ImageQuery(
            region=query.region,
            bands=(ELEVATION_BAND,),
            asset_names={ELEVATION_BAND: asset},
            sort_key="",
            scale=query.scale or ELEVATION_RESOLUTION,
        )
        items = self._search(collection_id, dem_query)
        try:
            stack = self._stack(items, dem_query)
            # Mosaic across tiles (take the median of the valid values)
            dem = stack.isel(band=0).median(dim="time", skipna=True).compute()
        except BeadedStreamsError:
            raise
        except Exception as exc:
            raise ImageryFetchError(collection_id, str(exc)) from exc

        logger.info("DEM mosaic from %d tile(s): %dx%d px", len(items), dem.sizes["x"], dem.sizes["y"])
        return Raster(
            bands={ELEVATION_BAND: np.asarray(dem.values, dtype=np.float32)},
            transform=stack.attrs["transform"],
            crs=stack.attrs["crs"],
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _search(self, collection_id: str, query: ImageQuery) -> list:
        params: dict[str, Any] = {
            "collections": [collection_id],
            "bbox": query.region.bbox,
        }
        if query.datetime_range is not None:
            params["datetime"] = query.datetime_range
        if query.max_cloud_cover is not None:
            params["query"] = {"eo:cloud_cover": {"lte": query.max_cloud_cover}}

        logger.info("Searching %s (%s) ...", collection_id, query.datetime_range or "any date")
        try:
            items = list(self.catalog.search(**params).items())
        except Exception as exc:
            raise ImageryFetchError(collection_id, str(exc)) from exc

        if not items:
            raise ImageryFetchError(
                collection_id,
                "no scenes found; try a wider date range or a larger cloud-cover limit",
            )
        if query.sort_key:
            items.sort(key=lambda item: _sort_value(item.properties.get(query.sort_key)))
        logger.info("  Found %d scene(s).", len(items))
        return items

    def _stack(self, items: Sequence, query: ImageQuery) -> xr.DataArray:
        return stackstac.stack(
            list(items),
            assets=query.assets or None,
            bounds_latlon=query.region.bbox,
            epsg=query.region.utm_crs.to_epsg(),
            resolution=query.scale,
            dtype="float32",  # type: ignore[arg-type]
            fill_value=np.float32("nan"),  # type: ignore[arg-type]
            rescale=False,   # keep raw digital numbers, as the index is scale-invariant
        )

    def _fetch(self, collection_id: str, query: ImageQuery, items: Sequence) -> List[Raster]:
        try:
            stack = self._stack(items, query).compute()
        except Exception as exc:
            raise ImageryFetchError(collection_id, str(exc)) from exc

        names = list(query.bands) or [str(b) for b in stack["band"].values]
        transform, crs = stack.attrs["transform"], stack.attrs["crs"]
        rasters = [
            Raster(
                bands=dict(zip(names, np.asarray(stack.isel(time=t).values))),
                transform=transform,
                crs=crs,
            )
            for t in range(stack.sizes["time"])
        ]
        logger.info(
            "  Stacked %d scene(s) of %s: %dx%d px at %g m.",
            len(rasters), names, stack.sizes["x"], stack.sizes["y"], query.scale or 0,
        )
        return rasters


def _sort_value(value: Any) -> float:
    """Numeric sort key; missing or non-numeric properties sort last."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return math.inf
    return number if math.isfinite(number) else math.inf


# ---------------------------------------------------------------------------
# Local GeoTIFF directory
# ---------------------------------------------------------------------------

class LocalImageRepository(ImageRepository):
    """Collections are folders of GeoTIFF scenes under *root*.

    Scenes are taken in file-name order and kept when their footprint
    intersects the query region.  Band names come from ``query.bands``
    when given, else from the files (see
    :meth:`~water_index_mapper.raster.Raster.from_geotiff`).

    Args:
        root: Directory holding one sub-folder per collection id.  A
            collection id of ``"."`` means *root* itself.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def collection_dir(self, collection_id: str) -> Path:
        return self.root if collection_id in ("", ".") else self.root / collection_id

    def scene_paths(self, collection_id: str) -> List[Path]:
        folder = self.collection_dir(collection_id)
        if not folder.is_dir():
            raise ImageryFetchError(collection_id, f"'{folder}' is not a directory")
        return sorted(p for p in folder.iterdir() if p.suffix.lower() in GEOTIFF_EXTENSIONS)

    def iter_scenes(self, collection_id: str, query: ImageQuery) -> Iterator[Raster]:
        band_names = list(query.bands) or None
        for path in self.scene_paths(collection_id):
            raster = Raster.from_geotiff(path, band_names=band_names)
            if query.region.intersects(raster):
                yield raster
            else:
                logger.debug("Skipping %s: outside the region.", path.name)

    def resolve(self, collection_id: str, query: ImageQuery) -> Raster:
        for raster in self.iter_scenes(collection_id, query):
            return raster
        raise ImageryFetchError(collection_id, "no scene intersects the region")

    def resolve_collection(self, collection_id: str, query: ImageQuery) -> List[Raster]:
        scenes = list(self.iter_scenes(collection_id, query))
        if not scenes:
            raise ImageryFetchError(collection_id, "no scene intersects the region")
        logger.info("Found %d local scene(s) in %s.", len(scenes), collection_id)
        return scenes
