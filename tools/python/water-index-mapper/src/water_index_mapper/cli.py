"""
Water Index Mapper — CLI Entry Point
=====================================
Exposes :class:`~water_index_mapper.pipeline.WaterIndexPipeline` as the
``bs-water-index`` command.

Usage::

    # Planet scene on disk, whole image
    bs-water-index --sensor planet --input planet_scene.tif --output-dir output

    # Sentinel-2 from Planetary Computer over the study ROI, with a map
    bs-water-index --sensor sentinel2 --fetch --html output/map.html

    # Planet and Sentinel-2 side by side
    bs-water-index --sensor planet --input planet.tif \\
                   --sensor sentinel2 --input s2.tif --png output/panels.png

Run ``bs-water-index --help`` for the full option list.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from shared.python.exceptions import BeadedStreamsError, ConfigurationError
from water_index_mapper.aoi import Region
from water_index_mapper.config import (
    PLANET,
    PROFILES,
    SENTINEL2,
    STUDY_END,
    STUDY_START,
    PipelineConfig,
    get_profile,
    load_profiles,
    study_region,
)
from water_index_mapper.fetcher import (
    ImageQuery,
    ImageRepository,
    LocalImageRepository,
    StacImageRepository,
)
from water_index_mapper.pipeline import PipelineResult, WaterIndexPipeline, compare_sensors
from water_index_mapper.presenters import FoliumPresenter, MatplotlibPresenter
from water_index_mapper.raster import Raster

logger = logging.getLogger("beadedstreams.water_index_mapper.cli")


@click.command("bs-water-index")
@click.option(
    "--sensor", "sensors",
    multiple=True,
    help="Sensor profile name; repeat to compare sensors.  Defaults to sentinel2 "
         "with --fetch (Planet scenes are not on Planetary Computer), else planet.",
)
@click.option(
    "--input", "-i", "inputs",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Multi-band GeoTIFF, one per --sensor in the same order.",
)
@click.option(
    "--fetch",
    is_flag=True,
    default=False,
    help="Fetch the least-cloudy scene from Planetary Computer instead of --input "
         "(Planet scenes are not there; use --scenes for Planet).",
)
@click.option(
    "--scenes",
    "scenes_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Folder of GeoTIFF collections (one sub-folder per collection id).",
)
@click.option("--start", default=STUDY_START, show_default=True, help="Start date for --fetch/--scenes.")
@click.option("--end", default=STUDY_END, show_default=True, help="End date for --fetch/--scenes.")
@click.option("--max-cloud", type=float, default=None, help="Maximum scene cloud cover, in percent.")
@click.option("--timeout", type=float, default=60.0, show_default=True, help="STAC request timeout (s).")
@click.option(
    "--roi",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="GeoJSON polygon for sampling. Defaults to the study ROI when fetching, "
         "else the whole image.",
)
@click.option("--threshold", type=float, default=None, help="Override the sensor's MNDWI threshold.")
@click.option("--clusters", "k", type=int, default=5, show_default=True, help="Number of k-means clusters.")
@click.option("--num-pixels", type=int, default=5000, show_default=True, help="Maximum sampled pixels.")
@click.option("--seed", type=int, default=None, help="Seed for sampling and k-means.")
@click.option(
    "--cluster-on",
    type=click.Choice(["index", "bands"], case_sensitive=False),
    default="index",
    show_default=True,
    help="Cluster the MNDWI band or the raw spectral bands.",
)
@click.option("--sample-scale", type=float, default=None, help="Resample to this pixel size before sampling.")
@click.option("--export-scale", type=float, default=None, help="Pixel size of the exported index raster.")
@click.option(
    "--profiles", "profiles_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file overriding or adding sensor profiles.",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("output"),
    show_default=True,
    help="Directory for exported rasters.",
)
@click.option("--export/--no-export", "do_export", default=True, show_default=True, help="Write the index GeoTIFF.")
@click.option("--elevation", is_flag=True, default=False, help="Add a Copernicus DEM layer over the ROI, or the first "
              "image footprint without one (needs network).")
@click.option(
    "--collection",
    is_flag=True,
    default=False,
    help="Add MNDWI to every scene of the --fetch/--scenes collection and show each one.",
)
@click.option("--html", "html_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write an interactive Leaflet map here.")
@click.option("--png", "png_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write a static panel figure here.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable DEBUG-level logging.")
def cli(
    sensors: tuple[str, ...],
    inputs: tuple[Path, ...],
    fetch: bool,
    scenes_dir: Path | None,
    start: str,
    end: str,
    max_cloud: float | None,
    timeout: float,
    roi: Path | None,
    threshold: float | None,
    k: int,
    num_pixels: int,
    seed: int | None,
    cluster_on: str,
    sample_scale: float | None,
    export_scale: float | None,
    profiles_path: Path | None,
    output_dir: Path,
    do_export: bool,
    elevation: bool,
    collection: bool,
    html_path: Path | None,
    png_path: Path | None,
    verbose: bool,
) -> None:
    """Map open water with MNDWI and cluster pixels with k-means.

    Each sensor's index raster is written to OUTPUT_DIR as
    ``<Sensor>_MNDWI.tif``; a summary is printed per sensor.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        results = _run(
            sensors, inputs, fetch, scenes_dir, start, end, max_cloud, timeout, roi,
            PipelineConfig(
                k=k,
                max_samples=num_pixels,
                seed=seed,
                cluster_on=cluster_on.lower(),  # type: ignore[arg-type]
                threshold=threshold,
                sample_scale=sample_scale,
                export=do_export,
                export_scale=export_scale,
                collection=collection,
            ),
            profiles_path, output_dir, elevation, verbose,
        )
        plan = compare_sensors(results)
        if html_path is not None:
            FoliumPresenter().present(plan, html_path)
        if png_path is not None:
            MatplotlibPresenter().present(plan, png_path)
    except BeadedStreamsError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    for result in results:
        click.echo(f"\n{result.summary()}")
    if html_path is not None:
        click.echo(f"\nMap written to: {html_path}")
    if png_path is not None:
        click.echo(f"Figure written to: {png_path}")


def _run(
    sensors: tuple[str, ...],
    inputs: tuple[Path, ...],
    fetch: bool,
    scenes_dir: Path | None,
    start: str,
    end: str,
    max_cloud: float | None,
    timeout: float,
    roi: Path | None,
    config: PipelineConfig,
    profiles_path: Path | None,
    output_dir: Path,
    elevation: bool,
    verbose: bool,
) -> list[PipelineResult]:
    sources = sum([bool(inputs), fetch, scenes_dir is not None])
    if sources != 1:
        raise ConfigurationError("Choose exactly one of --input, --fetch or --scenes.")
    if not sensors:
        sensors = (SENTINEL2.name,) if fetch else (PLANET.name,)
    if inputs and len(inputs) != len(sensors):
        raise ConfigurationError(
            f"Got {len(inputs)} --input file(s) for {len(sensors)} --sensor value(s)."
        )

    registry = load_profiles(profiles_path) if profiles_path is not None else PROFILES
    profiles = [get_profile(name, registry) for name in sensors]
    if fetch and any(p.collection_id == PLANET.collection_id for p in profiles):
        raise ConfigurationError(
            "Planet scenes are not on Planetary Computer; use --input or --scenes for planet."
        )

    region: Region | None
    if roi is not None:
        region = Region.from_geojson(roi)
    elif inputs:
        region = None
    else:
        region = study_region()

    repository: ImageRepository | None = None
    if fetch:
        repository = StacImageRepository(timeout=timeout)
    elif scenes_dir is not None:
        repository = LocalImageRepository(scenes_dir)

    dem = None
    if elevation:
        # Without an ROI only --input runs reach here; use the first image
        dem_region = region or Region.footprint(Raster.from_geotiff(inputs[0]))
        dem = StacImageRepository(timeout=timeout).resolve_elevation(ImageQuery(region=dem_region))

    results: list[PipelineResult] = []
    for i, profile in enumerate(profiles):
        query = None
        if repository is not None and region is not None:
            query = ImageQuery.for_profile(profile, region, start, end, max_cloud_cover=max_cloud)
        pipeline = WaterIndexPipeline(
            input_path=inputs[i] if inputs else None,
            repository=repository,
            query=query,
            profile=profile,
            region=region,
            output_dir=output_dir,
            config=config,
            elevation=dem if i == 0 else None,
            verbose=verbose,
        )
        pipeline.run()
        results.append(pipeline.result)
    return results


if __name__ == "__main__":
    cli()
