"""
Beaded Streams — Shared Input Validators
=========================================
Static utility methods used across every Beaded Streams tool to validate
common preconditions before processing begins.

All methods raise an appropriate exception from
:mod:`shared.python.exceptions` rather than returning booleans; this
makes ``validate_inputs`` implementations in each tool simple and
readable::

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_bands_present(raster.band_names, ["B2", "B4"])
            Validators.assert_positive_int(self.k, "cluster count")
"""

from __future__ import annotations

import math
import numbers
from pathlib import Path
from typing import Sequence

# Lazy imports for heavy libraries so tools that do not use them avoid
# the import cost at startup.
#   pyproj -> assert_crs_valid (Raster construction)

from shared.python.exceptions import (
    ConfigurationError,
    CRSError,
    InputValidationError,
    MissingBandError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks shared across all tools.

    All methods are ``@staticmethod``; this class is never instantiated.
    It exists purely as a logical namespace.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Args:
            path: Path object to check.

        Raises:
            InputValidationError: If *path* does not exist or is a
                directory rather than a file.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Assert that the parent directory of *output_path* is writable.

        Creates the parent directory (and any missing parents) if it does
        not yet exist, so callers never have to pre-create output dirs.

        Raises:
            OutputWriteError: If the parent directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Sequence of allowed extensions, each starting with
                        a dot (e.g. ``[".tif", ".tiff"]``).

        Raises:
            InputValidationError: If the file extension is not in
                *extensions*.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # CRS / projection checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: object) -> None:
        """Assert that *crs_string* can be parsed as a valid CRS.

        Uses :mod:`pyproj` to attempt parsing.  Accepts EPSG codes
        (``"EPSG:4326"`` or ``32606``), PROJ strings, and WKT strings.

        Raises:
            CRSError: If *crs_string* is not recognised by pyproj.
        """
        from pyproj import CRS  # noqa: PLC0415
        from pyproj.exceptions import CRSError as ProjCRSError  # noqa: PLC0415

        try:
            CRS.from_user_input(crs_string)
        except (ProjCRSError, TypeError) as exc:
            raise CRSError(str(crs_string)) from exc

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_bands_present(available: Sequence[str], required: Sequence[str]) -> None:
        """Assert that every name in *required* is one of *available*.

        Args:
            available: Band names carried by a raster.
            required: Band names an operation needs.

        Raises:
            MissingBandError: On the first missing band found.

        Example::

            Validators.assert_bands_present(raster.band_names, ["B3", "B8"])
        """
        present = list(available)
        for band in required:
            if band not in present:
                raise MissingBandError(band, present)

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, int],
        shape_b: tuple[int, int],
        label_a: str = "Band A",
        label_b: str = "Band B",
    ) -> None:
        """Assert that two raster arrays have identical (rows, cols) shapes.

        This is required before any pixel-wise arithmetic (e.g. MNDWI).

        Raises:
            InputValidationError: If the shapes do not match.
        """
        if shape_a != shape_b:
            raise InputValidationError(
                f"Raster shape mismatch: {label_a} is {shape_a} but "
                f"{label_b} is {shape_b}. "
                "All input bands must have identical dimensions."
            )

    # ------------------------------------------------------------------
    # Numeric parameter checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_positive_int(value: int, label: str) -> None:
        """Assert that *value* is an integer greater than zero.

        Raises:
            ConfigurationError: If *value* is not a positive integer.
        """
        if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value <= 0:
            raise ConfigurationError(
                f"{label} must be a positive integer, got {value!r}."
            )

    @staticmethod
    def assert_non_negative_int(value: int, label: str) -> None:
        """Assert that *value* is an integer greater than or equal to zero.

        Raises:
            ConfigurationError: If *value* is negative or not an integer.
        """
        if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 0:
            raise ConfigurationError(
                f"{label} must be a non-negative integer, got {value!r}."
            )

    @staticmethod
    def assert_positive_number(value: float, label: str) -> None:
        """Assert that *value* is a finite number greater than zero.

        Raises:
            ConfigurationError: If *value* is zero, negative, or not finite.
        """
        if not Validators._is_finite_number(value) or value <= 0:
            raise ConfigurationError(
                f"{label} must be a positive number, got {value!r}."
            )

    @staticmethod
    def assert_finite(value: float, label: str) -> None:
        """Assert that *value* is a finite real number.

        Raises:
            ConfigurationError: If *value* is NaN, infinite, or not numeric.
        """
        if not Validators._is_finite_number(value):
            raise ConfigurationError(
                f"{label} must be a finite number, got {value!r}."
            )

    @staticmethod
    def assert_seed_valid(seed: int | None) -> None:
        """Assert that *seed* is ``None`` or a non-negative integer.

        Raises:
            ConfigurationError: If *seed* is negative or not an integer.
        """
        if seed is not None:
            Validators.assert_non_negative_int(seed, "seed")

    @staticmethod
    def _is_finite_number(value: object) -> bool:
        if isinstance(value, bool):
            return False
        try:
            return math.isfinite(float(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
