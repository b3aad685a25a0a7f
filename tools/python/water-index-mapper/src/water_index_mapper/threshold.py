"""
threshold.py
============
Binary water mask from an index raster.

``mask = 1 if index < threshold else 0`` (strict inequality, so a pixel
exactly on the threshold is 0).  Pixels where the index is nodata get
:data:`MASK_NODATA` instead of either class.
"""

from __future__ import annotations

import logging

import numpy as np

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

from .raster import Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.threshold")

MASK_NODATA = 255
MASK_BAND = "water"


def threshold_mask(
    index: Raster,
    threshold: float,
    band: str | None = None,
    name: str = MASK_BAND,
) -> Raster:
    """Return a uint8 mask raster: 1 where ``index < threshold``, else 0.

    Args:
        index: Raster holding the index band.
        threshold: Scalar cut-off, normally from the sensor profile.
        band: Index band to read; defaults to the only band of *index*.
        name: Output band name.

    Raises:
        ConfigurationError: If *threshold* is not finite, or *band* is
            omitted for a multi-band raster.
        MissingBandError: If *band* is absent.
    """
    Validators.assert_finite(threshold, "threshold")
    if band is None:
        if len(index.band_names) != 1:
            raise ConfigurationError(
                f"Name the band to threshold; the raster has {index.band_names}."
            )
        band = index.band_names[0]

    values = index.band(band)
    valid = index.valid_mask([band])
    mask = np.where(valid & (values < threshold), 1, 0).astype(np.uint8)
    mask[~valid] = MASK_NODATA

    result = Raster(bands={name: mask}, transform=index.transform, crs=index.crs, nodata=MASK_NODATA)
    logger.info(
        "Threshold %s < %g: %.1f%% of valid pixels flagged",
        band, threshold, 100.0 * water_fraction(result) if valid.any() else 0.0,
    )
    return result


def water_fraction(mask: Raster, band: str | None = None) -> float:
    """Share of valid mask pixels equal to 1, or NaN when none are valid."""
    band = band or mask.band_names[0]
    valid = mask.valid_mask([band])
    if not valid.any():
        return float("nan")
    return float(np.count_nonzero(mask.band(band)[valid] == 1) / np.count_nonzero(valid))
