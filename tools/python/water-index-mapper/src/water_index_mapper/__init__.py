"""
Water Index Mapper
==================
Map open water and beaded streams with MNDWI, a threshold and k-means.
"""

from water_index_mapper.aoi import Region
from water_index_mapper.clustering import ClusterModel, ClusterRunner, fit, predict
from water_index_mapper.config import (
    DEFAULT_PIPELINE,
    PLANET,
    PROFILES,
    SENTINEL2,
    PipelineConfig,
    SensorProfile,
    get_profile,
    load_profiles,
    study_region,
)
from water_index_mapper.export import ExportRequest, ExportResult, GeoTiffExportSink, export
from water_index_mapper.index import NODATA, MNDWIStrategy, add_index, compute_index, normalized_difference
from water_index_mapper.pipeline import PipelineResult, WaterIndexPipeline, compare_sensors
from water_index_mapper.raster import Raster
from water_index_mapper.render import LayerPlan, VisParams, random_visualizer, render
from water_index_mapper.sampling import SampleSet, sample_pixels
from water_index_mapper.threshold import threshold_mask, water_fraction

__version__ = "1.0.0"

__all__ = [
    "Raster",
    "Region",
    "SensorProfile",
    "PipelineConfig",
    "PLANET",
    "SENTINEL2",
    "PROFILES",
    "DEFAULT_PIPELINE",
    "get_profile",
    "load_profiles",
    "study_region",
    "NODATA",
    "MNDWIStrategy",
    "normalized_difference",
    "compute_index",
    "add_index",
    "threshold_mask",
    "water_fraction",
    "SampleSet",
    "sample_pixels",
    "ClusterModel",
    "ClusterRunner",
    "fit",
    "predict",
    "VisParams",
    "LayerPlan",
    "render",
    "random_visualizer",
    "ExportRequest",
    "ExportResult",
    "GeoTiffExportSink",
    "export",
    "WaterIndexPipeline",
    "PipelineResult",
    "compare_sensors",
]
