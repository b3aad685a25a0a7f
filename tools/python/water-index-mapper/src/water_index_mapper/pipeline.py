"""
Water Index Mapper — Pipeline Orchestrator
===========================================
Runs the whole water-mapping workflow for one sensor and inherits the
Template Method pipeline from :class:`~shared.python.base_tool.GeoTool`.

Steps (single-threaded, eager; each consumes the previous step's output):

1. Resolve the source raster (in memory, a GeoTIFF, or a repository).
2. Compute MNDWI with the sensor profile's bands.
3. Threshold it to a water mask.
4. Sample pixels inside the region from the index (or the raw bands).
5. Train k-means on the sample and label every pixel.
6. Optionally add MNDWI to every scene of the source collection.
7. Describe the map layers and export the index raster.

Usage::

    from pathlib import Path
    from water_index_mapper.config import PLANET, study_region
    from water_index_mapper.pipeline import WaterIndexPipeline

    pipeline = WaterIndexPipeline(
        input_path=Path("planet_scene.tif"),
        profile=PLANET,
        region=study_region(),
        output_dir=Path("output"),
    )
    pipeline.run()
    print(pipeline.result.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, Tuple

import numpy as np

from shared.python.base_tool import GeoTool
from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from .aoi import Region
from .clustering import ClusterModel, ClusterRunner
from .config import (
    DEFAULT_PIPELINE,
    ELEVATION_VIS,
    MASK_VIS,
    PLANET,
    WATER_VIS,
    PipelineConfig,
    SensorProfile,
)
from .export import ExportRequest, ExportResult, ExportSink, GeoTiffExportSink, export
from .fetcher import ImageQuery, ImageRepository
from .index import INDEX_BAND, NODATA, compute_index, map_collection
from .raster import GEOTIFF_EXTENSIONS, Raster
from .render import LayerPlan, random_visualizer
from .sampling import SampleSet, sample_pixels
from .threshold import threshold_mask, water_fraction

logger = logging.getLogger("beadedstreams.water_index_mapper.pipeline")


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Every product of one pipeline run.

    Attributes:
        profile: Sensor profile the run used.
        threshold: Water threshold actually applied.
        source: Input raster.
        index: Single-band MNDWI raster.
        mask: Water mask (1 water, 0 not, 255 nodata).
        samples: Training sample.
        model: Fitted k-means model.
        clusters: Per-pixel cluster labels (255 where features are missing).
        layers: Map layers describing the run.
        exports: One entry per export attempted.
        collection: Every scene of the source with MNDWI appended, when
            the run was asked for the whole collection.
    """

    profile: SensorProfile
    threshold: float
    source: Raster = field(repr=False)
    index: Raster = field(repr=False)
    mask: Raster = field(repr=False)
    samples: SampleSet = field(repr=False)
    model: ClusterModel = field(repr=False)
    clusters: Raster = field(repr=False)
    layers: LayerPlan = field(repr=False)
    exports: Tuple[ExportResult, ...] = ()
    collection: Tuple[Raster, ...] = field(default=(), repr=False)

    @property
    def water_fraction(self) -> float:
        return water_fraction(self.mask)

    def cluster_sizes(self) -> list[int]:
        labels = self.clusters.band(self.clusters.band_names[0])
        valid = self.clusters.valid_mask()
        return np.bincount(labels[valid], minlength=self.model.k).tolist()

    def summary(self) -> str:
        """Multi-line plain-text report of the run."""
        rows, cols = self.source.shape
        lines = [
            f"Sensor        : {self.profile.label} "
            f"(MNDWI = {self.profile.green_band} vs {self.profile.other_band})",
            f"Grid          : {cols}x{rows} px at {self.source.resolution[0]:g}",
            f"Threshold     : MNDWI < {self.threshold:g}",
            f"Water fraction: {100.0 * self.water_fraction:.2f}%",
            f"Samples       : {len(self.samples)} px of {list(self.samples.bands)}",
            f"Clusters      : k={self.model.k} sizes={self.cluster_sizes()}",
        ]
        if self.collection:
            lines.append(f"Collection    : {len(self.collection)} scene(s) with MNDWI")
        for result in self.exports:
            status = str(result.path) if result.success else f"FAILED ({result.error})"
            lines.append(f"Export        : {result.description} → {status}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Main tool class
# ---------------------------------------------------------------------------


class WaterIndexPipeline(GeoTool):
    """Map open water and cluster pixels for one sensor.

    Exactly one source must be given: *raster*, *input_path*, or
    *repository* (optionally with *query*; by default the query asks for
    every band of *profile* over *region*).

    Args:
        raster: Imagery already in memory.
        input_path: Multi-band GeoTIFF.  Bands are named from the file;
            unnamed files with as many bands as the profile take the
            profile's band names in order.
        repository: Imagery source resolved with ``profile.collection_id``.
        query: Explicit repository query.
        profile: Sensor profile (bands, threshold, display).
        region: Sampling region and map focus; ``None`` uses the whole raster.
        output_dir: Directory for exported rasters.
        config: Tunable run parameters.
        export_sink: Where exports are written (default GeoTIFF files).
        elevation: Optional DEM raster, shown as an extra layer.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        raster: Raster | None = None,
        *,
        input_path: Path | None = None,
        repository: ImageRepository | None = None,
        query: ImageQuery | None = None,
        profile: SensorProfile = PLANET,
        region: Region | None = None,
        output_dir: Path = Path("output"),
        config: PipelineConfig = DEFAULT_PIPELINE,
        export_sink: ExportSink | None = None,
        elevation: Raster | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, Path(output_dir), verbose=verbose)
        self.raster = raster
        self.repository = repository
        self.query = query
        self.profile = profile
        self.region = region
        self.output_dir: Path = Path(output_dir)
        self.config = config
        self.export_sink: ExportSink = export_sink or GeoTiffExportSink()
        self.elevation = elevation
        self._source: Raster | None = None
        self._scenes: list[Raster] = []
        self._result: PipelineResult | None = None

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Resolve the source and check it suits the profile and region.

        Raises:
            InputValidationError: If zero or several sources are given,
                the file is missing, or the region misses the raster.
            MissingBandError: If the raster lacks a band the run needs.
            ImageryFetchError: If the repository cannot supply a scene.
        """
        given = [s is not None for s in (self.raster, self.input_path, self.repository)]
        if sum(given) != 1:
            raise InputValidationError(
                "Give exactly one imagery source: a raster, an input path or a repository."
            )
        if self.input_path is not None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_supported_extension(self.input_path, GEOTIFF_EXTENSIONS)
        if self.config.export:
            Validators.assert_output_dir_writable(self.output_dir / "mask.tif")

        self._scenes = []
        source = self._load_source()
        if self.config.collection and not self._scenes:
            self._scenes = [source]
        Validators.assert_bands_present(source.band_names, list(self.profile.index_bands))
        if self.config.cluster_on == "bands":
            Validators.assert_bands_present(source.band_names, list(self.profile.bands))
        if self.region is not None and not self.region.intersects(source):
            raise InputValidationError(
                f"Region '{self.region.label}' does not overlap the imagery "
                f"(bounds {source.bounds})."
            )
        self._source = source
        logger.debug("Inputs validated: %r", source)

    def process(self) -> None:
        """Index → threshold, and features → sample → k-means → labels."""
        if self._source is None:
            raise InputValidationError("validate_inputs() must run before process().")
        source = self._source
        profile, cfg = self.profile, self.config
        threshold = cfg.threshold_for(profile)

        index = compute_index(source, profile)
        mask = threshold_mask(index, threshold)

        features = index if cfg.cluster_on == "index" else source.select(profile.bands)
        samples = sample_pixels(
            features,
            region=self.region,
            scale=cfg.sample_scale,
            max_count=cfg.max_samples,
            seed=cfg.seed,
        )
        runner = ClusterRunner(k=cfg.k, seed=cfg.seed, normalize=cfg.normalize)
        model, clusters = runner.fit_predict(samples, features)

        collection = tuple(map_collection(self._scenes, profile)) if cfg.collection else ()
        layers = self._build_layers(source, index, mask, clusters, collection)

        exports: list[ExportResult] = []
        if cfg.export:
            request = ExportRequest(
                description=f"{profile.label}_{INDEX_BAND}",
                scale=cfg.export_scale,
                destination=self.output_dir,
            )
            exports.append(export(index, request, self.export_sink))

        self._result = PipelineResult(
            profile=profile,
            threshold=threshold,
            source=source,
            index=index,
            mask=mask,
            samples=samples,
            model=model,
            clusters=clusters,
            layers=layers,
            exports=tuple(exports),
            collection=collection,
        )
        logger.info("\n%s", self._result.summary())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_source(self) -> Raster:
        if self.raster is not None:
            return self.raster
        if self.input_path is not None:
            raster = Raster.from_geotiff(self.input_path)
            return self._name_bands(raster)

        if self.profile.collection_id is None:
            raise ConfigurationError(f"Profile '{self.profile.name}' has no collection id.")
        query = self.query
        if query is None:
            if self.region is None:
                raise ConfigurationError("A repository source needs a region or an explicit query.")
            query = ImageQuery.for_profile(self.profile, self.region)
        if self.config.collection:
            self._scenes = self.repository.resolve_collection(self.profile.collection_id, query)  # type: ignore[union-attr]
            return self._scenes[0]
        return self.repository.resolve(self.profile.collection_id, query)  # type: ignore[union-attr]

    def _name_bands(self, raster: Raster) -> Raster:
        """Give an unnamed file the profile's band names, position by position."""
        default = [f"B{i}" for i in range(1, len(raster.band_names) + 1)]
        wanted = list(self.profile.bands)
        if raster.band_names == default and len(wanted) == len(default) and wanted != default:
            logger.debug("Naming file bands %s as %s", default, wanted)
            return raster.rename(dict(zip(default, wanted)))
        return raster

    def _build_layers(
        self,
        source: Raster,
        index: Raster,
        mask: Raster,
        clusters: Raster,
        collection: Sequence[Raster] = (),
    ) -> LayerPlan:
        label = self.profile.label
        water_only = np.where(mask.band(mask.band_names[0]) == 1, index.band(INDEX_BAND), NODATA)
        water_index = Raster(
            bands={INDEX_BAND: water_only},
            transform=index.transform,
            crs=index.crs,
            nodata=NODATA,
        )

        plan = LayerPlan().add_layer(source, self.profile.display, f"{label} imagery")
        if self.elevation is not None:
            plan = plan.add_layer(self.elevation, ELEVATION_VIS, "Elevation", shown=False)
        plan = (
            plan.add_layer(index, self.profile.index_vis, f"{label} MNDWI")
            .add_layer(mask, MASK_VIS, f"{label} water mask", shown=False)
            .add_layer(water_index, WATER_VIS, f"{label} water")
            .add_layer(clusters, random_visualizer(self.config.k, self.config.seed), f"{label} clusters")
        )
        for number, scene in enumerate(collection, start=1):
            plan = (
                plan.add_layer(scene, self.profile.display, f"{label} collection {number}", shown=False)
                .add_layer(
                    scene.select([INDEX_BAND]),
                    WATER_VIS,
                    f"{label} collection {number} with MNDWI",
                    shown=False,
                )
            )
        if self.region is not None:
            plan = plan.center_on(self.region, self.config.zoom)
        return plan

    @property
    def result(self) -> PipelineResult:
        """Products of the last :meth:`run`.

        Raises:
            InputValidationError: If the pipeline has not run yet.
        """
        if self._result is None:
            raise InputValidationError("The pipeline has not been run yet.")
        return self._result


def compare_sensors(results: Sequence[PipelineResult]) -> LayerPlan:
    """One layer plan holding the layers of several runs, in order.

    The view and region come from the first run that has them.
    """
    plan = LayerPlan()
    for result in results:
        plan = plan.extend(result.layers)
    return plan
