"""
Tests for pixel sampling
=========================
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import ConfigurationError, MissingBandError
from water_index_mapper.aoi import Region
from water_index_mapper.raster import Raster
from water_index_mapper.sampling import SampleSet, sample_pixels


class TestSamplePixels:

    def test_small_raster_returns_every_pixel(self) -> None:
        r = Raster.from_arrays(v=np.arange(4, dtype=np.float32).reshape(2, 2))
        samples = sample_pixels(r, max_count=10)
        assert len(samples) == 4
        assert sorted(samples.records["v"].tolist()) == [0.0, 1.0, 2.0, 3.0]

    def test_zero_max_count_is_empty(self, unit_square_raster: Raster) -> None:
        samples = sample_pixels(unit_square_raster, max_count=0)
        assert samples.empty
        assert list(samples.records.columns) == ["row", "col", "x", "y", "v"]
        assert samples.features().shape == (0, 1)

    def test_negative_max_count_raises(self, unit_square_raster: Raster) -> None:
        with pytest.raises(ConfigurationError):
            sample_pixels(unit_square_raster, max_count=-1)

    def test_bounded_and_without_replacement(self, roi_raster: Raster) -> None:
        samples = sample_pixels(roi_raster, max_count=50, seed=1)
        assert len(samples) == 50
        pairs = set(zip(samples.records["row"], samples.records["col"]))
        assert len(pairs) == 50

    def test_seed_is_reproducible(self, roi_raster: Raster) -> None:
        a = sample_pixels(roi_raster, max_count=30, seed=7)
        b = sample_pixels(roi_raster, max_count=30, seed=7)
        assert a.records.equals(b.records)

    def test_region_restricts_pixels(self, unit_square_raster: Raster, lower_left_region: Region) -> None:
        samples = sample_pixels(unit_square_raster, region=lower_left_region, max_count=100)
        assert len(samples) == 4
        assert set(samples.records["row"]) == {2, 3}
        assert set(samples.records["col"]) == {0, 1}

    def test_region_outside_raster_is_empty(self, unit_square_raster: Raster) -> None:
        samples = sample_pixels(unit_square_raster, region=Region.from_bbox(20, 20, 21, 21))
        assert samples.empty

    def test_invalid_pixels_are_skipped(self) -> None:
        r = Raster.from_arrays(nodata=-9999.0, v=np.array([[1.0, -9999.0], [np.nan, 4.0]]))
        samples = sample_pixels(r, max_count=10)
        assert sorted(samples.records["v"].tolist()) == [1.0, 4.0]

    def test_records_carry_map_coordinates(self, unit_square_raster: Raster) -> None:
        samples = sample_pixels(unit_square_raster, max_count=100)
        corner = samples.records[(samples.records["row"] == 3) & (samples.records["col"] == 0)]
        assert corner["x"].iloc[0] == pytest.approx(0.5)
        assert corner["y"].iloc[0] == pytest.approx(0.5)
        assert corner["v"].iloc[0] == 12.0

    def test_scale_resamples_first(self, utm_raster: Raster) -> None:
        samples = sample_pixels(utm_raster, scale=20, max_count=100)
        assert samples.scale == 20.0
        assert len(samples) == 4

    def test_native_scale_recorded(self, utm_raster: Raster) -> None:
        assert sample_pixels(utm_raster, max_count=1).scale == 10.0

    def test_band_subset(self, utm_raster: Raster) -> None:
        samples = sample_pixels(utm_raster, bands=["other"], max_count=5)
        assert samples.bands == ("other",)
        assert "green" not in samples.records.columns
        assert samples.features().shape == (5, 1)

    def test_missing_band_raises(self, utm_raster: Raster) -> None:
        with pytest.raises(MissingBandError):
            sample_pixels(utm_raster, bands=["swir"])

    def test_repr(self, utm_raster: Raster) -> None:
        samples = sample_pixels(utm_raster, max_count=3)
        assert isinstance(samples, SampleSet)
        assert "3 px" in repr(samples)
