"""
Beaded Streams — Shared Base Tool
=================================
Abstract base class for the Beaded Streams processing tools.

A tool runs as validate, then process, then report.  Subclasses fill in
:meth:`GeoTool.validate_inputs` and :meth:`GeoTool.process`; callers only
ever use :meth:`GeoTool.run`::

    from shared.python.base_tool import GeoTool

    class WaterIndexPipeline(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# Tools log through children of this logger, e.g.
# ``beadedstreams.water_index_mapper.pipeline``.
logger = logging.getLogger("beadedstreams")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


class GeoTool(ABC):
    """Abstract base class for imagery processing tools.

    Attributes:
        input_path: Primary input file, or ``None`` when the imagery is
            already in memory or comes from a remote catalogue.
        output_path: Directory the tool writes its products into.
        verbose: Log at DEBUG instead of INFO.
        elapsed: Seconds taken by the last :meth:`run`, ``None`` before
            the first run.
    """

    def __init__(
        self,
        input_path: Path | None,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path | None = Path(input_path) if input_path is not None else None
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.elapsed: float | None = None

        self._configure_logging()

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check every precondition before any imagery is processed.

        Raise :class:`~shared.python.exceptions.InputValidationError` (or
        one of its subclasses) when a precondition fails.
        """

    @abstractmethod
    def process(self) -> None:
        """Do the raster work.  Only called after validation succeeded."""

    def run(self) -> None:
        """Validate, process, then log the elapsed time.

        Exceptions from either step propagate unchanged.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self.elapsed = time.perf_counter() - start
        self._report_success(self.elapsed)

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s finished in %.2fs, products in %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach one console handler to ``beadedstreams`` and set its level."""
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
