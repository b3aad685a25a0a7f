"""
Shared fixtures for the Water Index Mapper tests.

Every raster is synthetic; nothing here touches the network.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_bounds, from_origin

from water_index_mapper.aoi import Region
from water_index_mapper.raster import Raster

# Box around the beaded-stream study ROI, in lon/lat.
ROI_BOUNDS = (-148.83, 69.485, -148.79, 69.50)


def make_geotiff(
    path: Path,
    bands: np.ndarray,
    crs: str = "EPSG:4326",
    bounds: tuple[float, float, float, float] = ROI_BOUNDS,
    nodata: float | None = None,
    descriptions: list[str] | None = None,
) -> Path:
    """Write a ``(count, rows, cols)`` array as a GeoTIFF and return its path."""
    count, rows, cols = bands.shape
    profile = {
        "driver": "GTiff",
        "dtype": bands.dtype.name,
        "count": count,
        "height": rows,
        "width": cols,
        "crs": CRS.from_user_input(crs),
        "transform": from_bounds(*bounds, cols, rows),
        "nodata": nodata,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(bands)
        if descriptions:
            for i, name in enumerate(descriptions, start=1):
                dst.set_band_description(i, name)
    return path


def planet_bands(rows: int = 20, cols: int = 20, seed: int = 0) -> dict[str, np.ndarray]:
    """Four-band Planet-like reflectance: a dark-NIR "pond" on bright tundra."""
    rng = np.random.default_rng(seed)
    b1 = rng.uniform(300, 600, (rows, cols))
    b2 = rng.uniform(600, 900, (rows, cols))
    b3 = rng.uniform(500, 800, (rows, cols))
    b4 = rng.uniform(3000, 3500, (rows, cols))
    b4[5:12, 5:12] = rng.uniform(50, 150, (7, 7))
    return {n: a.astype(np.float32) for n, a in zip(("B1", "B2", "B3", "B4"), (b1, b2, b3, b4))}


@pytest.fixture()
def roi_raster() -> Raster:
    """20×20 Planet-like raster in EPSG:4326 covering the study ROI."""
    bands = planet_bands()
    rows, cols = bands["B1"].shape
    return Raster(bands=bands, transform=from_bounds(*ROI_BOUNDS, cols, rows), crs="EPSG:4326")


@pytest.fixture()
def utm_raster() -> Raster:
    """4×4 two-band raster on a 10 m UTM grid."""
    green = np.arange(16, dtype=np.float32).reshape(4, 4) + 1
    other = np.full((4, 4), 2.0, dtype=np.float32)
    return Raster(
        bands={"green": green, "other": other},
        transform=from_origin(500000, 7700000, 10, 10),
        crs="EPSG:32606",
    )


@pytest.fixture()
def unit_square_raster() -> Raster:
    """4×4 raster over lon/lat (0, 0)–(4, 4): one-degree pixels."""
    values = np.arange(16, dtype=np.float32).reshape(4, 4)
    return Raster(bands={"v": values}, transform=from_bounds(0, 0, 4, 4, 4, 4), crs="EPSG:4326")


@pytest.fixture()
def lower_left_region() -> Region:
    return Region.from_bbox(0, 0, 2, 2)
