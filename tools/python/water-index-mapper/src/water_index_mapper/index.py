"""
index.py
========
Normalized-difference water index (MNDWI) computation.

``MNDWI = (Green - Other) / (Green + Other)``

*Other* is the SWIR band for sensors that have one and the near-infrared
band for high-resolution sensors that do not; the choice lives in the
sensor profile.

Each index is a :class:`IndexStrategy` subclass (Strategy pattern).  A
strategy works on plain numpy arrays; the module-level helpers wrap it so
callers pass and receive :class:`~water_index_mapper.raster.Raster`
objects.

Nodata
------
Where ``Green + Other == 0`` the ratio is undefined, and a negative
reflectance would push it outside [-1, 1].  Those pixels, and pixels
already missing in either input band, get the sentinel
:data:`NODATA` (``-9999.0``).  The computation never raises for a
per-pixel condition and never emits NaN.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators

from .config import SensorProfile
from .raster import Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.index")

NODATA = -9999.0
INDEX_BAND = "MNDWI"


# ---------------------------------------------------------------------------
# Index strategy ABC + concrete implementations
# ---------------------------------------------------------------------------


class IndexStrategy(ABC):
    """Abstract base for a single spectral index computation.

    Subclasses implement :attr:`required_bands` to declare their inputs
    and :meth:`compute` to run the formula on numpy arrays.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Output band name (e.g. ``"MNDWI"``)."""

    @property
    @abstractmethod
    def required_bands(self) -> list[str]:
        """Band names this index reads from the input raster."""

    @abstractmethod
    def compute(
        self,
        bands: dict[str, npt.NDArray],
        valid: npt.NDArray[np.bool_] | None = None,
    ) -> npt.NDArray[np.float32]:
        """Compute the index from a dict of band arrays.

        Args:
            bands: Band name → array.  Only :attr:`required_bands` are read.
            valid: Optional boolean array; ``False`` pixels become
                :data:`NODATA`.

        Returns:
            A float32 array of index values with :data:`NODATA` where
            the index is undefined.
        """

    def apply(self, raster: Raster) -> Raster:
        """Run the strategy on *raster* and return a single-band raster."""
        Validators.assert_bands_present(raster.band_names, self.required_bands)
        bands = {b: raster.bands[b] for b in self.required_bands}
        values = self.compute(bands, raster.valid_mask(self.required_bands))
        return Raster(
            bands={self.name: values},
            transform=raster.transform,
            crs=raster.crs,
            nodata=NODATA,
        )


class NormalizedDifferenceStrategy(IndexStrategy):
    """``(first - second) / (first + second)`` for any two bands.

    Args:
        first: Band name of the positive term.
        second: Band name of the negative term.
        name: Output band name.
    """

    def __init__(self, first: str, second: str, name: str = "ND") -> None:
        self.first = first
        self.second = second
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_bands(self) -> list[str]:
        return [self.first, self.second]

    def compute(
        self,
        bands: dict[str, npt.NDArray],
        valid: npt.NDArray[np.bool_] | None = None,
    ) -> npt.NDArray[np.float32]:
        a = bands[self.first].astype(np.float64)
        b = bands[self.second].astype(np.float64)
        Validators.assert_raster_shapes_match(a.shape, b.shape, self.first, self.second)
        denominator = a + b
        # Negative reflectance or a zero denominator → nodata, keeping [-1, 1]
        undefined = (a < 0) | (b < 0) | (denominator == 0)
        with np.errstate(invalid="ignore", divide="ignore"):
            result = np.where(undefined, NODATA, (a - b) / denominator)
        result = np.where(np.isfinite(result), result, NODATA)
        if valid is not None:
            result = np.where(valid, result, NODATA)
        return result.astype(np.float32)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.first!r}, {self.second!r}, name={self.name!r})"


class MNDWIStrategy(NormalizedDifferenceStrategy):
    """MNDWI — Modified Normalized Difference Water Index.

    Formula: ``MNDWI = (Green - Other) / (Green + Other)``

    Range: -1 to +1; a pixel with a negative band is nodata.  Open water is
    bright in green and dark in SWIR/NIR, so water pixels score high.

    Args:
        green_band: Name of the green band.
        other_band: Name of the SWIR (or NIR) band.
    """

    def __init__(self, green_band: str = "green", other_band: str = "swir", name: str = INDEX_BAND) -> None:
        super().__init__(green_band, other_band, name=name)

    @classmethod
    def for_profile(cls, profile: SensorProfile) -> MNDWIStrategy:
        return cls(profile.green_band, profile.other_band)


# ---------------------------------------------------------------------------
# Raster-level helpers
# ---------------------------------------------------------------------------


def normalized_difference(
    raster: Raster,
    first: str,
    second: str,
    name: str = INDEX_BAND,
) -> Raster:
    """Single-band raster of ``(first - second) / (first + second)``.

    Raises:
        MissingBandError: If either band is absent.
    """
    return NormalizedDifferenceStrategy(first, second, name=name).apply(raster)


def compute_index(raster: Raster, profile: SensorProfile) -> Raster:
    """MNDWI of *raster* using the bands named by *profile*."""
    index = MNDWIStrategy.for_profile(profile).apply(raster)
    valid = index.band(INDEX_BAND)[index.valid_mask()]
    if valid.size:
        logger.info(
            "%s MNDWI (%s, %s): min=%.4f max=%.4f mean=%.4f, %d nodata px",
            profile.label, profile.green_band, profile.other_band,
            float(valid.min()), float(valid.max()), float(valid.mean()),
            index.pixel_count - valid.size,
        )
    else:
        logger.warning("%s MNDWI has no valid pixels.", profile.label)
    return index


def add_index(raster: Raster, profile: SensorProfile) -> Raster:
    """Return *raster* with its MNDWI appended as an extra band."""
    return raster.add_bands(MNDWIStrategy.for_profile(profile).apply(raster))


def map_collection(rasters: Iterable[Raster], profile: SensorProfile) -> list[Raster]:
    """Apply :func:`add_index` to every raster of a collection."""
    return [add_index(r, profile) for r in rasters]
