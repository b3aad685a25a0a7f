"""
sampling.py
===========
Bounded random pixel sample from a region of a raster.

The sample is the training input for k-means.  Only pixels whose centre
lies inside the region and whose every requested band is valid are
eligible.  At most ``max_count`` of them are drawn without replacement;
when fewer are eligible, all of them are returned (in random order)
rather than raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence, Tuple

import numpy as np
import numpy.typing as npt
import pandas as pd
from rasterio.transform import xy

from shared.python.validators import Validators

from .aoi import Region
from .raster import Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.sampling")

LOCATION_COLUMNS = ["row", "col", "x", "y"]


@dataclass(frozen=True, eq=False)
class SampleSet:
    """Sampled pixel records.

    Attributes:
        records: One row per pixel: ``row``, ``col`` (grid position at the
            sampled scale), ``x``, ``y`` (map coordinates of the pixel
            centre), then one column per band.
        bands: Band columns, in order.
        scale: Pixel size the sample was drawn at (CRS units).
    """

    records: pd.DataFrame = field(repr=False)
    bands: Tuple[str, ...]
    scale: float

    def __len__(self) -> int:
        return len(self.records)

    @property
    def empty(self) -> bool:
        return len(self.records) == 0

    def features(self) -> npt.NDArray[np.float64]:
        """``(n, bands)`` float64 feature matrix."""
        return self.records[list(self.bands)].to_numpy(dtype=np.float64)

    def __repr__(self) -> str:
        return f"<SampleSet {len(self)} px bands={list(self.bands)} scale={self.scale:g}>"


def _empty(bands: Sequence[str], scale: float) -> SampleSet:
    columns = LOCATION_COLUMNS + list(bands)
    return SampleSet(records=pd.DataFrame(columns=columns), bands=tuple(bands), scale=scale)


def sample_pixels(
    raster: Raster,
    region: Region | None = None,
    scale: float | None = None,
    max_count: int = 5000,
    seed: int | None = None,
    bands: Sequence[str] | None = None,
) -> SampleSet:
    """Draw up to *max_count* random valid pixels from *raster*.

    Args:
        raster: Source raster (spectral bands or an index raster).
        region: Only pixels whose centre falls inside are eligible;
            ``None`` means the whole raster.
        scale: Resample to this pixel size first (nearest neighbour);
            ``None`` keeps the native grid.
        max_count: Upper bound on returned records.  ``0`` returns an
            empty set.
        seed: Seed for reproducible draws; ``None`` is non-deterministic.
        bands: Bands to carry; default all bands of *raster*.

    Raises:
        ConfigurationError: If *max_count* is negative, *scale* is not
            positive, or *seed* is invalid.
        MissingBandError: If a requested band is absent.
    """
    Validators.assert_non_negative_int(max_count, "max_count")
    Validators.assert_seed_valid(seed)
    names = list(bands) if bands is not None else raster.band_names
    source = raster.select(names)
    if scale is not None:
        source = source.resample(scale)
    pixel_scale = source.resolution[0]

    if max_count == 0:
        logger.debug("max_count is 0; returning an empty sample.")
        return _empty(names, pixel_scale)

    eligible = source.valid_mask()
    if region is not None:
        eligible &= region.pixel_mask(source)

    rows, cols = np.nonzero(eligible)
    available = rows.size
    rng = np.random.default_rng(seed)
    if available > max_count:
        picked = rng.choice(available, size=max_count, replace=False)
    else:
        picked = rng.permutation(available)
        if available < max_count:
            logger.info(
                "Only %d eligible pixel(s) in region; returning all of them (max_count=%d).",
                available, max_count,
            )

    if picked.size == 0:
        return _empty(names, pixel_scale)

    rows, cols = rows[picked], cols[picked]
    xs, ys = xy(source.transform, rows, cols, offset="center")
    records = pd.DataFrame({
        "row": rows,
        "col": cols,
        "x": np.asarray(xs, dtype=np.float64),
        "y": np.asarray(ys, dtype=np.float64),
    })
    for name in names:
        records[name] = source.bands[name][rows, cols]

    logger.debug("Sampled %d of %d eligible pixel(s) at scale %g", len(records), available, pixel_scale)
    return SampleSet(records=records, bands=tuple(names), scale=pixel_scale)
