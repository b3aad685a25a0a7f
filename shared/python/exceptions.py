"""
Beaded Streams — Custom Exception Hierarchy
============================================
All Beaded Streams tools raise exceptions from this module so callers can
catch them at the right level of granularity.

Hierarchy::

    BeadedStreamsError                   ← catch-all base
    ├── InputValidationError             ← bad files, shapes, extents
    │   └── ConfigurationError           ← parameter out of range
    │       └── MissingBandError         ← raster lacks a named band
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── InsufficientDataError        ← too few samples to cluster
    ├── ImageryFetchError                ← STAC / remote imagery failures
    └── OutputWriteError                 ← cannot write to output path

Per-pixel degenerate arithmetic (a zero denominator in a band ratio) is
never an exception: it produces the nodata sentinel instead.

Usage::

    from shared.python.exceptions import MissingBandError

    raise MissingBandError("B8", raster.band_names)
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class BeadedStreamsError(Exception):
    """Base exception for all Beaded Streams tools.

    Catch this to handle any tool-specific error without caring about
    the exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(BeadedStreamsError):
    """Raised when a tool's inputs fail pre-processing validation.

    This is the parent class for more specific input problems.
    """


class ConfigurationError(InputValidationError):
    """Raised when a parameter is outside its valid range.

    Examples: a cluster count ``k <= 0``, a negative sample count, a
    non-finite threshold, or a visualisation config whose per-band lists
    do not match its band count.
    """


class MissingBandError(ConfigurationError):
    """Raised when a raster does not carry a required named band.

    Args:
        band: The band name that was requested.
        available: Band names that ARE present, used to generate a
                   helpful error message.

    Example::

        raise MissingBandError("B8", ["B1", "B2", "B3", "B4"])
    """

    def __init__(self, band: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{b}'" for b in available) or "none"
        super().__init__(
            f"Band '{band}' not found. Available bands: {available_str}"
        )
        self.band: str = band
        self.available: list[str] = list(available)


# ---------------------------------------------------------------------------
# CRS
# ---------------------------------------------------------------------------


class CRSError(BeadedStreamsError):
    """Raised when a coordinate reference system string cannot be parsed
    or matched to a known CRS.

    Args:
        crs_string: The raw CRS string that caused the error
                    (e.g. ``"EPSG:99999"``).
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Invalid or unrecognised CRS: '{crs_string}'. "
            "Use an EPSG code (e.g. 'EPSG:4326') or a valid WKT/PROJ string."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(BeadedStreamsError):
    """Raised for general raster processing failures (rasterio / numpy).

    Subclass this for more specific raster errors.
    """


class InsufficientDataError(RasterError):
    """Raised when a sample set is too small to train a cluster model.

    Args:
        available: Number of sample records supplied.
        required: Minimum number of records needed (the cluster count).

    Example::

        raise InsufficientDataError(available=3, required=5)
    """

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Cannot train on {available} sample(s): "
            f"at least {required} are required."
        )
        self.available: int = available
        self.required: int = required


# ---------------------------------------------------------------------------
# Remote imagery
# ---------------------------------------------------------------------------


class ImageryFetchError(BeadedStreamsError):
    """Raised when a remote imagery lookup fails or finds nothing.

    The underlying client error, if any, is chained as ``__cause__``.
    Failures are surfaced once; nothing in this package retries them.

    Args:
        collection_id: STAC collection or local collection identifier.
        reason: Short explanation of the failure.
    """

    def __init__(self, collection_id: str, reason: str) -> None:
        super().__init__(f"Could not resolve imagery from '{collection_id}': {reason}")
        self.collection_id: str = collection_id
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(BeadedStreamsError):
    """Raised when the tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/out.tif", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
