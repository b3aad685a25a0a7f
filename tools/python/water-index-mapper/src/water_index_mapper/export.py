"""
export.py
=========
Write rasters to a durable destination.

An :class:`ExportRequest` names the output (``description``), the pixel
size to write at (``scale``) and where it goes (``destination``).  An
:class:`ExportSink` performs the write.  :func:`export` never raises for a
sink failure: it returns an :class:`ExportResult` with ``success=False``
and the error message, so one failed export does not abort the run.
Failures are not retried.

Supported sinks
---------------
GeoTIFF -- ``<destination>/<description>.tif``, LZW-compressed, resampled
           to ``scale`` with nearest neighbour.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from shared.python.exceptions import BeadedStreamsError, ConfigurationError
from shared.python.validators import Validators

from .raster import Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.export")

GENERATOR_TAG = "water-index-mapper"

_DESCRIPTION = re.compile(r"^[A-Za-z0-9_.,:;\- ]{1,100}$")


@dataclass(frozen=True)
class ExportRequest:
    """Where and how one raster is exported.

    Attributes:
        description: Output name; letters, digits, ``_ . , : ; -`` and
            spaces, at most 100 characters.
        scale: Pixel size to write at, in CRS units; ``None`` keeps the
            native grid.
        destination: Directory (for file sinks) receiving the output.
    """

    description: str
    scale: float | None = None
    destination: Path = Path(".")

    def __post_init__(self) -> None:
        if not _DESCRIPTION.match(self.description or ""):
            raise ConfigurationError(
                f"Export description {self.description!r} must be 1-100 characters of "
                "letters, digits, spaces and '_.,:;-'."
            )
        if self.scale is not None:
            Validators.assert_positive_number(self.scale, "export scale")
        object.__setattr__(self, "destination", Path(self.destination))

    @property
    def filename(self) -> str:
        return self.description.replace(" ", "_") + ".tif"


@dataclass(frozen=True)
class ExportResult:
    """Outcome of one export."""

    description: str
    success: bool
    path: Path | None = None
    error: str | None = None


class ExportSink(ABC):
    """Somewhere rasters can be written."""

    @abstractmethod
    def write(self, raster: Raster, request: ExportRequest) -> Path:
        """Write *raster* and return where it went.

        Raises:
            BeadedStreamsError: On any failure.
        """


class GeoTiffExportSink(ExportSink):
    """Write each export as a GeoTIFF inside ``request.destination``.

    Args:
        compress: GDAL compression codec.
        overwrite: Replace an existing file of the same name.
    """

    def __init__(self, compress: str = "lzw", overwrite: bool = True) -> None:
        self.compress = compress
        self.overwrite = overwrite

    def write(self, raster: Raster, request: ExportRequest) -> Path:
        request.destination.mkdir(parents=True, exist_ok=True)
        path = request.destination / request.filename
        if path.exists() and not self.overwrite:
            raise ConfigurationError(f"'{path}' already exists and overwrite is off.")

        out = raster.resample(request.scale) if request.scale is not None else raster
        tags = {
            "description": request.description,
            "scale": f"{out.resolution[0]:g}",
            "generator": GENERATOR_TAG,
        }
        return out.to_geotiff(path, compress=self.compress, tags=tags)

    def __repr__(self) -> str:
        return f"GeoTiffExportSink(compress={self.compress!r}, overwrite={self.overwrite})"


def export(raster: Raster, request: ExportRequest, sink: ExportSink | None = None) -> ExportResult:
    """Hand *raster* to *sink* (default GeoTIFF) and report the outcome."""
    sink = sink or GeoTiffExportSink()
    try:
        path = sink.write(raster, request)
    except BeadedStreamsError as exc:
        logger.error("Export '%s' failed: %s", request.description, exc.message)
        return ExportResult(description=request.description, success=False, error=exc.message)
    except OSError as exc:
        logger.error("Export '%s' failed: %s", request.description, exc)
        return ExportResult(description=request.description, success=False, error=str(exc))

    logger.info("Exported '%s' → %s", request.description, path)
    return ExportResult(description=request.description, success=True, path=path)
