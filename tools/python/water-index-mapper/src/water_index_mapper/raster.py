"""
raster.py
=========
Immutable, eagerly materialised multi-band raster.

A :class:`Raster` is an ordered mapping of band name to a 2-D numpy array
plus the grid metadata (affine transform, CRS, nodata sentinel) needed to
place it on the ground.  Arrays are copied and frozen on construction, so
every derived product (index, mask, cluster labels) is a new ``Raster``;
nothing is edited in place.

Validity
--------
A pixel is *valid* in a band when its value is finite and differs from the
raster's ``nodata`` value.  Operations that combine bands treat a pixel as
valid only when it is valid in every band involved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

import numpy as np
import numpy.typing as npt
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds, from_origin
from rasterio.warp import Resampling, reproject

from shared.python.exceptions import (
    ConfigurationError,
    InputValidationError,
    OutputWriteError,
    RasterError,
)
from shared.python.validators import Validators

logger = logging.getLogger("beadedstreams.water_index_mapper.raster")

GEOTIFF_EXTENSIONS = [".tif", ".tiff"]


def _recode_nodata(
    array: npt.NDArray,
    old: float | None,
    new: float | None,
) -> npt.NDArray:
    """Return *array* with pixels equal to *old* replaced by *new*.

    Integer arrays are promoted to float32 when *new* cannot be stored in
    their dtype (including ``None``, which becomes NaN).
    """
    if old is None or old == new or (new is not None and np.isnan(old) and np.isnan(new)):
        return array
    invalid = np.isnan(array) if np.isnan(old) else array == old
    if not invalid.any():
        return array

    fill = np.nan if new is None else new
    out = array
    if np.issubdtype(out.dtype, np.integer):
        info = np.iinfo(out.dtype)
        if not (np.isfinite(fill) and float(fill).is_integer() and info.min <= fill <= info.max):
            out = out.astype(np.float32)
    out = np.array(out, copy=True)
    out[invalid] = fill
    return out


@dataclass(frozen=True, eq=False)
class Raster:
    """A 2-D grid of named numeric bands over a fixed extent and resolution.

    Attributes:
        bands: Band name → 2-D array.  All arrays share one shape.
        transform: Affine transform from pixel (col, row) to map (x, y).
        crs: Coordinate reference system, or ``None`` when unknown.  Strings
            and EPSG codes are parsed; an unrecognised one raises
            :class:`~shared.python.exceptions.CRSError`.
        nodata: Sentinel marking missing pixels in every band, or ``None``
            (NaN is always treated as missing).
    """

    bands: Mapping[str, npt.NDArray] = field(repr=False)
    transform: Affine = field(default_factory=Affine.identity)
    crs: CRS | None = None
    nodata: float | None = None

    def __post_init__(self) -> None:
        if not self.bands:
            raise RasterError("A raster needs at least one band.")

        frozen: dict[str, npt.NDArray] = {}
        first_name: str | None = None
        for name, values in self.bands.items():
            array = np.array(values, copy=True)
            if array.ndim != 2:
                raise InputValidationError(
                    f"Band '{name}' must be 2-D, got an array with {array.ndim} dimension(s)."
                )
            if first_name is not None:
                Validators.assert_raster_shapes_match(
                    frozen[first_name].shape, array.shape, first_name, str(name)
                )
            else:
                first_name = str(name)
            array.setflags(write=False)
            frozen[str(name)] = array

        if self.crs is not None and not isinstance(self.crs, CRS):
            Validators.assert_crs_valid(self.crs)
            object.__setattr__(self, "crs", CRS.from_user_input(self.crs))
        object.__setattr__(self, "bands", MappingProxyType(frozen))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_arrays(
        cls,
        transform: Affine | None = None,
        crs: CRS | str | None = None,
        nodata: float | None = None,
        **bands: npt.ArrayLike,
    ) -> Raster:
        """Build a raster from keyword band arrays, e.g. ``green=..., nir=...``."""
        return cls(
            bands={name: np.asarray(values) for name, values in bands.items()},
            transform=transform if transform is not None else Affine.identity(),
            crs=crs,  # type: ignore[arg-type]
            nodata=nodata,
        )

    @classmethod
    def from_geotiff(
        cls,
        path: Path,
        band_names: Sequence[str] | None = None,
    ) -> Raster:
        """Read every band of a GeoTIFF into memory.

        Band names come from *band_names* when given, otherwise from the
        file's band descriptions, falling back to ``B1`` … ``Bn`` (the
        naming used for Planet scenes).

        Raises:
            InputValidationError: If the file is missing, has the wrong
                extension, or *band_names* has the wrong length.
            RasterError: If rasterio cannot read the file.
        """
        path = Path(path)
        Validators.assert_file_exists(path)
        Validators.assert_supported_extension(path, GEOTIFF_EXTENSIONS)

        try:
            with rasterio.open(path) as src:
                data = src.read()
                descriptions = list(src.descriptions)
                transform, crs, nodata = src.transform, src.crs, src.nodata
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{path}': {exc}") from exc

        if band_names is not None:
            if len(band_names) != data.shape[0]:
                raise InputValidationError(
                    f"'{path.name}' has {data.shape[0]} band(s) but "
                    f"{len(band_names)} band name(s) were given."
                )
            names = list(band_names)
        elif all(descriptions) and len(set(descriptions)) == len(descriptions):
            names = [str(d) for d in descriptions]
        else:
            names = [f"B{i}" for i in range(1, data.shape[0] + 1)]

        logger.debug("Read %s: %d band(s) %s", path.name, len(names), names)
        return cls(
            bands=dict(zip(names, data)),
            transform=transform,
            crs=crs,
            nodata=nodata,
        )

    # ------------------------------------------------------------------
    # Band access
    # ------------------------------------------------------------------

    @property
    def band_names(self) -> list[str]:
        return list(self.bands)

    @property
    def shape(self) -> tuple[int, int]:
        """``(rows, cols)`` of every band."""
        return next(iter(self.bands.values())).shape  # type: ignore[return-value]

    @property
    def pixel_count(self) -> int:
        rows, cols = self.shape
        return rows * cols

    def band(self, name: str) -> npt.NDArray:
        """Return the read-only array for band *name*.

        Raises:
            MissingBandError: If the raster has no such band.
        """
        Validators.assert_bands_present(self.band_names, [name])
        return self.bands[name]

    def select(self, names: Iterable[str]) -> Raster:
        """Return a new raster holding only *names*, in that order."""
        names = list(names)
        Validators.assert_bands_present(self.band_names, names)
        return self._derive({n: self.bands[n] for n in names})

    def rename(self, mapping: Mapping[str, str]) -> Raster:
        """Return a new raster with bands renamed through *mapping*."""
        Validators.assert_bands_present(self.band_names, list(mapping))
        renamed = {mapping.get(n, n): a for n, a in self.bands.items()}
        if len(renamed) != len(self.bands):
            raise ConfigurationError(f"Renaming {dict(mapping)} would merge bands.")
        return self._derive(renamed)

    def add_bands(self, other: Raster) -> Raster:
        """Return a new raster with the bands of *other* appended.

        When both rasters share a nodata sentinel the result keeps it.
        Otherwise missing pixels of both inputs are recoded to NaN (integer
        bands holding missing pixels are promoted to float32) and the
        result has no sentinel, since a sentinel valid for one input may be
        a real value in the other.

        Raises:
            InputValidationError: If the grids differ in shape.
            ConfigurationError: If a band name appears in both rasters.
        """
        Validators.assert_raster_shapes_match(self.shape, other.shape, "raster", "added bands")
        clash = set(self.bands) & set(other.bands)
        if clash:
            raise ConfigurationError(f"Band name(s) already present: {', '.join(sorted(clash))}")

        target = self.nodata if self.nodata == other.nodata else None
        merged = {n: _recode_nodata(a, self.nodata, target) for n, a in self.bands.items()}
        merged.update({n: _recode_nodata(a, other.nodata, target) for n, a in other.bands.items()})
        return Raster(bands=merged, transform=self.transform, crs=self.crs, nodata=target)

    def stack(self, names: Sequence[str] | None = None) -> npt.NDArray:
        """Return a ``(bands, rows, cols)`` array of *names* (default all)."""
        names = list(names) if names is not None else self.band_names
        Validators.assert_bands_present(self.band_names, names)
        return np.stack([self.bands[n] for n in names])

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def valid_mask(self, names: Sequence[str] | None = None) -> npt.NDArray[np.bool_]:
        """Boolean array, ``True`` where every band in *names* is valid."""
        names = list(names) if names is not None else self.band_names
        Validators.assert_bands_present(self.band_names, names)
        valid = np.ones(self.shape, dtype=bool)
        for name in names:
            values = self.bands[name]
            if np.issubdtype(values.dtype, np.floating):
                valid &= np.isfinite(values)
            if self.nodata is not None and not np.isnan(self.nodata):
                valid &= values != self.nodata
        return valid

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def resolution(self) -> tuple[float, float]:
        """Pixel size ``(x, y)`` in CRS units."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(west, south, east, north)`` in CRS units."""
        rows, cols = self.shape
        west, south, east, north = array_bounds(rows, cols, self.transform)
        return float(west), float(south), float(east), float(north)

    def resample(self, scale: float) -> Raster:
        """Return this raster on a square grid of *scale* CRS units per pixel.

        Uses nearest-neighbour resampling so discrete values (masks,
        cluster labels) survive.  Returns ``self`` when the grid already
        has that resolution.

        Raises:
            ConfigurationError: If *scale* is not a positive number.
            RasterError: If the raster has no CRS to resample in.
        """
        Validators.assert_positive_number(scale, "scale")
        res_x, res_y = self.resolution
        if np.isclose(res_x, scale) and np.isclose(res_y, scale):
            return self
        if self.crs is None:
            raise RasterError("Cannot resample a raster without a CRS.")

        west, south, east, north = self.bounds
        width = max(1, int(round((east - west) / scale)))
        height = max(1, int(round((north - south) / scale)))
        dst_transform = from_origin(west, north, scale, scale)

        resampled: dict[str, npt.NDArray] = {}
        nodata = self.nodata
        for name, values in self.bands.items():
            fill = nodata
            source = values
            if fill is None:
                source = values.astype(np.float32) if np.issubdtype(values.dtype, np.integer) else values
                fill = np.nan
            destination = np.full((height, width), fill, dtype=source.dtype)
            reproject(
                source=np.ascontiguousarray(source),
                destination=destination,
                src_transform=self.transform,
                src_crs=self.crs,
                src_nodata=fill,
                dst_transform=dst_transform,
                dst_crs=self.crs,
                dst_nodata=fill,
                resampling=Resampling.nearest,
            )
            resampled[name] = destination

        logger.debug(
            "Resampled %dx%d px at %.3g → %dx%d px at %.3g",
            self.shape[1], self.shape[0], res_x, width, height, scale,
        )
        return Raster(bands=resampled, transform=dst_transform, crs=self.crs, nodata=nodata)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def to_geotiff(self, path: Path, compress: str = "lzw", tags: Mapping[str, str] | None = None) -> Path:
        """Write all bands to a multi-band GeoTIFF.

        Band names are stored as band descriptions so :meth:`from_geotiff`
        reads them back under the same names.

        Raises:
            OutputWriteError: If the file cannot be written.
        """
        path = Path(path)
        Validators.assert_output_dir_writable(path)
        data = self.stack()
        rows, cols = self.shape
        profile = {
            "driver": "GTiff",
            "height": rows,
            "width": cols,
            "count": len(self.bands),
            "dtype": data.dtype.name,
            "crs": self.crs,
            "transform": self.transform,
            "nodata": self.nodata,
            "compress": compress,
        }
        try:
            with rasterio.open(path, "w", **profile) as dst:
                dst.write(data)
                for i, name in enumerate(self.band_names, start=1):
                    dst.set_band_description(i, name)
                if tags:
                    dst.update_tags(**tags)
        except (OSError, rasterio.errors.RasterioError) as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        return path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _derive(self, bands: Mapping[str, npt.NDArray], nodata: float | None = None) -> Raster:
        return Raster(
            bands=bands,
            transform=self.transform,
            crs=self.crs,
            nodata=self.nodata if nodata is None else nodata,
        )

    def __repr__(self) -> str:
        rows, cols = self.shape
        crs = self.crs.to_string() if self.crs is not None else "no CRS"
        return f"<Raster {self.band_names} {cols}x{rows} px {crs} nodata={self.nodata}>"
