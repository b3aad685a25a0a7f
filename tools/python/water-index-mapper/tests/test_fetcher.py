"""
Tests for the image repositories
=================================
The STAC client and stackstac are replaced with mocks so no request
leaves the machine.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import xarray as xr
from rasterio.transform import from_origin

from conftest import ROI_BOUNDS, make_geotiff
from shared.python.exceptions import ConfigurationError, ImageryFetchError
from water_index_mapper.aoi import Region
from water_index_mapper.config import SENTINEL2, study_region
from water_index_mapper.fetcher import (
    ELEVATION_BAND,
    ImageQuery,
    LocalImageRepository,
    StacImageRepository,
)

_OPEN = "water_index_mapper.fetcher.pystac_client.Client.open"
_STACK = "water_index_mapper.fetcher.stackstac.stack"


def _item(item_id: str, cloud: float | None) -> SimpleNamespace:
    props = {} if cloud is None else {"eo:cloud_cover": cloud}
    return SimpleNamespace(id=item_id, properties=props)


def _catalog(items: list) -> MagicMock:
    catalog = MagicMock()
    catalog.search.return_value.items.return_value = iter(items)
    return catalog


def _stack(values: np.ndarray, bands: list[str]) -> xr.DataArray:
    """A (time, band, y, x) array shaped like stackstac output."""
    t, _, rows, cols = values.shape
    return xr.DataArray(
        values.astype(np.float32),
        dims=("time", "band", "y", "x"),
        coords={"time": np.arange(t), "band": bands},
        attrs={"transform": from_origin(500000, 7700000, 10, 10), "crs": "epsg:32606"},
    )


@pytest.fixture()
def query() -> ImageQuery:
    return ImageQuery(
        region=study_region(),
        start_date="2019-07-01",
        end_date="2019-09-01",
        bands=("green", "swir"),
        asset_names={"green": "B03"},
        max_cloud_cover=20,
        scale=10,
    )


class TestImageQuery:

    def test_datetime_range(self, query: ImageQuery) -> None:
        assert query.datetime_range == "2019-07-01/2019-09-01"
        assert ImageQuery(region=study_region(), end_date="2019-09-01").datetime_range == "../2019-09-01"
        assert ImageQuery(region=study_region()).datetime_range is None

    def test_assets_use_mapping(self, query: ImageQuery) -> None:
        assert query.assets == ["B03", "swir"]

    def test_for_profile(self) -> None:
        q = ImageQuery.for_profile(SENTINEL2, study_region(), "2019-07-01", "2019-09-01")
        assert q.bands == SENTINEL2.bands
        assert q.scale == 10.0
        assert q.assets[:2] == ["B02", "B03"]

    def test_bad_scale_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            ImageQuery(region=study_region(), scale=-10)


class TestStacImageRepository:

    def test_search_parameters(self, query: ImageQuery) -> None:
        catalog = _catalog([_item("a", 3.0)])
        stack = _stack(np.ones((1, 2, 3, 3)), ["B03", "swir"])
        with patch(_OPEN, return_value=catalog) as client_open, patch(_STACK, return_value=stack):
            StacImageRepository(timeout=5).resolve("sentinel-2-l2a", query)

        assert client_open.call_args.kwargs["timeout"] == 5
        params = catalog.search.call_args.kwargs
        assert params["collections"] == ["sentinel-2-l2a"]
        assert params["datetime"] == "2019-07-01/2019-09-01"
        assert params["query"] == {"eo:cloud_cover": {"lte": 20}}
        assert params["bbox"] == pytest.approx(study_region().bbox)

    def test_least_cloudy_scene_first(self, query: ImageQuery) -> None:
        items = [_item("cloudy", 18.0), _item("unknown", None), _item("clear", 1.5)]
        values = np.stack([np.full((2, 3, 3), 100.0), np.full((2, 3, 3), 300.0)])[:1]
        with patch(_OPEN, return_value=_catalog(items)), patch(_STACK, return_value=_stack(values, ["B03", "swir"])) as stack:
            raster = StacImageRepository().resolve("sentinel-2-l2a", query)

        stacked_items = stack.call_args.args[0]
        assert [i.id for i in stacked_items] == ["clear"]
        assert raster.band_names == ["green", "swir"]
        assert raster.shape == (3, 3)
        assert raster.crs.to_epsg() == 32606
        assert stack.call_args.kwargs["epsg"] == study_region().utm_crs.to_epsg()

    def test_resolve_collection_one_raster_per_scene(self, query: ImageQuery) -> None:
        items = [_item("b", 9.0), _item("a", 2.0)]
        values = np.stack([np.full((2, 2, 2), 1.0), np.full((2, 2, 2), 2.0)])
        with patch(_OPEN, return_value=_catalog(items)), patch(_STACK, return_value=_stack(values, ["B03", "swir"])) as stack:
            rasters = StacImageRepository().resolve_collection("sentinel-2-l2a", query)

        assert [i.id for i in stack.call_args.args[0]] == ["a", "b"]
        assert len(rasters) == 2
        assert rasters[1].band("swir")[0, 0] == 2.0

    def test_empty_search_raises(self, query: ImageQuery) -> None:
        with patch(_OPEN, return_value=_catalog([])):
            with pytest.raises(ImageryFetchError, match="no scenes"):
                StacImageRepository().resolve("sentinel-2-l2a", query)

    def test_search_failure_is_wrapped(self, query: ImageQuery) -> None:
        catalog = MagicMock()
        catalog.search.side_effect = RuntimeError("503 Service Unavailable")
        with patch(_OPEN, return_value=catalog):
            with pytest.raises(ImageryFetchError, match="503"):
                StacImageRepository().resolve("sentinel-2-l2a", query)

    def test_stack_failure_is_wrapped(self, query: ImageQuery) -> None:
        with patch(_OPEN, return_value=_catalog([_item("a", 1.0)])), patch(_STACK, side_effect=ValueError("bad asset")):
            with pytest.raises(ImageryFetchError, match="bad asset"):
                StacImageRepository().resolve("sentinel-2-l2a", query)

    def test_elevation_mosaic(self, query: ImageQuery) -> None:
        values = np.array([[[[160.0, np.nan]]], [[[170.0, 175.0]]]])
        with patch(_OPEN, return_value=_catalog([_item("t1", None), _item("t2", None)])), \
                patch(_STACK, return_value=_stack(values, ["data"])) as stack:
            dem = StacImageRepository().resolve_elevation(query)

        assert dem.band_names == [ELEVATION_BAND]
        np.testing.assert_allclose(dem.band(ELEVATION_BAND), [[165.0, 175.0]])
        assert stack.call_args.kwargs["assets"] == ["data"]

    def test_catalog_opened_once(self) -> None:
        with patch(_OPEN, side_effect=lambda *a, **k: _catalog([])) as client_open:
            repo = StacImageRepository()
            catalog = repo.catalog
            assert repo.catalog is catalog
        assert client_open.call_count == 1


class TestLocalImageRepository:

    @pytest.fixture()
    def scenes(self, tmp_path: Path) -> Path:
        folder = tmp_path / "planet"
        folder.mkdir()
        bands = np.ones((2, 4, 4), dtype=np.float32)
        make_geotiff(folder / "b_inside.tif", bands * 2, bounds=ROI_BOUNDS)
        make_geotiff(folder / "a_far_away.tif", bands, bounds=(10.0, 10.0, 11.0, 11.0))
        make_geotiff(folder / "c_inside.tif", bands * 3, bounds=ROI_BOUNDS)
        (folder / "notes.txt").write_text("not a raster")
        return tmp_path

    def test_scene_paths_sorted_tifs_only(self, scenes: Path) -> None:
        names = [p.name for p in LocalImageRepository(scenes).scene_paths("planet")]
        assert names == ["a_far_away.tif", "b_inside.tif", "c_inside.tif"]

    def test_resolve_first_intersecting(self, scenes: Path) -> None:
        q = ImageQuery(region=study_region(), bands=("green", "nir"))
        raster = LocalImageRepository(scenes).resolve("planet", q)
        assert raster.band_names == ["green", "nir"]
        assert raster.band("green")[0, 0] == 2.0

    def test_resolve_collection(self, scenes: Path) -> None:
        rasters = LocalImageRepository(scenes).resolve_collection("planet", ImageQuery(region=study_region()))
        assert len(rasters) == 2

    def test_root_as_collection(self, scenes: Path) -> None:
        repo = LocalImageRepository(scenes / "planet")
        assert len(repo.resolve_collection(".", ImageQuery(region=study_region()))) == 2

    def test_no_intersecting_scene_raises(self, scenes: Path) -> None:
        far = ImageQuery(region=Region.from_bbox(-100, 40, -99, 41))
        with pytest.raises(ImageryFetchError, match="intersects"):
            LocalImageRepository(scenes).resolve("planet", far)

    def test_missing_collection_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ImageryFetchError):
            LocalImageRepository(tmp_path).resolve("sentinel", ImageQuery(region=study_region()))
