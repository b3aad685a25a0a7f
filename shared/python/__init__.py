"""
Beaded Streams — Shared Python Package
=======================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so individual tools can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import MissingBandError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BeadedStreamsError,
    ConfigurationError,
    CRSError,
    ImageryFetchError,
    InputValidationError,
    InsufficientDataError,
    MissingBandError,
    OutputWriteError,
    RasterError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "BeadedStreamsError",
    "InputValidationError",
    "ConfigurationError",
    "MissingBandError",
    "CRSError",
    "RasterError",
    "InsufficientDataError",
    "ImageryFetchError",
    "OutputWriteError",
]
