"""
Tests for the MNDWI computation and the water threshold
=========================================================

Test classes:
    TestNormalizedDifference   Formula, nodata and band handling.
    TestIndexHelpers           Profile-driven helpers.
    TestThresholdMask          Strict ``<`` and nodata propagation.
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import ConfigurationError, MissingBandError
from water_index_mapper.config import PLANET, SENTINEL2
from water_index_mapper.index import (
    INDEX_BAND,
    NODATA,
    MNDWIStrategy,
    add_index,
    compute_index,
    map_collection,
    normalized_difference,
)
from water_index_mapper.raster import Raster
from water_index_mapper.threshold import MASK_NODATA, threshold_mask, water_fraction


def _raster(**bands: list) -> Raster:
    return Raster.from_arrays(**{k: np.asarray(v, dtype=np.float32) for k, v in bands.items()})


class TestNormalizedDifference:

    def test_worked_example(self) -> None:
        """(0.6-0.2)/(0.8)=0.5, (0.3-0.1)/0.4=0.5, 0/0.2=0, 0.4/1.2≈0.333."""
        r = _raster(green=[[0.6, 0.3], [0.1, 0.8]], other=[[0.2, 0.1], [0.1, 0.4]])
        out = normalized_difference(r, "green", "other")
        np.testing.assert_allclose(out.band(INDEX_BAND), [[0.5, 0.5], [0.0, 1 / 3]], rtol=1e-5)

    def test_output_is_single_float32_band(self) -> None:
        r = _raster(green=[[1.0]], other=[[1.0]])
        out = normalized_difference(r, "green", "other")
        assert out.band_names == [INDEX_BAND]
        assert out.band(INDEX_BAND).dtype == np.float32
        assert out.nodata == NODATA

    def test_zero_denominator_is_nodata(self) -> None:
        r = _raster(green=[[0.0, 0.5]], other=[[0.0, 0.5]])
        out = normalized_difference(r, "green", "other").band(INDEX_BAND)
        assert out[0, 0] == pytest.approx(NODATA)
        assert out[0, 1] == pytest.approx(0.0)

    def test_opposite_values_cancel_to_nodata(self) -> None:
        r = _raster(green=[[0.3]], other=[[-0.3]])
        assert normalized_difference(r, "green", "other").band(INDEX_BAND)[0, 0] == pytest.approx(NODATA)

    def test_never_emits_nan(self) -> None:
        r = _raster(green=[[np.nan, 1.0, 0.0]], other=[[1.0, np.inf, 0.0]])
        out = normalized_difference(r, "green", "other").band(INDEX_BAND)
        assert not np.isnan(out).any()
        assert (out == NODATA).all()

    def test_input_nodata_stays_nodata(self) -> None:
        r = Raster.from_arrays(nodata=0, green=np.array([[0, 700]], dtype=np.uint16),
                               other=np.array([[500, 100]], dtype=np.uint16))
        out = normalized_difference(r, "green", "other")
        assert out.valid_mask().tolist() == [[False, True]]
        assert out.band(INDEX_BAND)[0, 1] == pytest.approx(0.75)

    def test_integer_bands_do_not_underflow(self) -> None:
        r = Raster.from_arrays(green=np.array([[100]], dtype=np.uint16), other=np.array([[300]], dtype=np.uint16))
        assert normalized_difference(r, "green", "other").band(INDEX_BAND)[0, 0] == pytest.approx(-0.5)

    def test_values_within_unit_interval(self) -> None:
        rng = np.random.default_rng(3)
        r = _raster(green=rng.uniform(0, 1, (8, 8)).tolist(), other=rng.uniform(0, 1, (8, 8)).tolist())
        out = normalized_difference(r, "green", "other")
        values = out.band(INDEX_BAND)[out.valid_mask()]
        assert values.min() >= -1.0 and values.max() <= 1.0

    def test_negative_band_is_nodata(self) -> None:
        """0.5 vs -0.3 would give 4.0; a negative reflectance has no index."""
        r = _raster(green=[[0.5, -0.2, 0.5]], other=[[-0.3, 0.4, 0.3]])
        out = normalized_difference(r, "green", "other").band(INDEX_BAND)
        assert out[0, 0] == pytest.approx(NODATA)
        assert out[0, 1] == pytest.approx(NODATA)
        assert out[0, 2] == pytest.approx(0.25)

    def test_mixed_sign_input_stays_in_unit_interval(self) -> None:
        rng = np.random.default_rng(5)
        r = _raster(green=rng.uniform(-1, 1, (8, 8)).tolist(), other=rng.uniform(-1, 1, (8, 8)).tolist())
        out = normalized_difference(r, "green", "other")
        values = out.band(INDEX_BAND)[out.valid_mask()]
        assert values.size > 0
        assert values.min() >= -1.0 and values.max() <= 1.0

    def test_missing_band_raises(self) -> None:
        r = _raster(green=[[1.0]])
        with pytest.raises(MissingBandError, match="other"):
            normalized_difference(r, "green", "other")

    def test_strategy_reports_required_bands(self) -> None:
        strategy = MNDWIStrategy("B3", "B11")
        assert strategy.required_bands == ["B3", "B11"]
        assert strategy.name == INDEX_BAND


class TestIndexHelpers:

    def test_planet_uses_b2_and_b4(self) -> None:
        r = _raster(B1=[[9.0]], B2=[[0.6]], B3=[[9.0]], B4=[[0.2]])
        assert compute_index(r, PLANET).band(INDEX_BAND)[0, 0] == pytest.approx(0.5)

    def test_sentinel_uses_b3_and_b8(self) -> None:
        r = _raster(B3=[[0.1]], B8=[[0.3]])
        assert compute_index(r, SENTINEL2).band(INDEX_BAND)[0, 0] == pytest.approx(-0.5)

    def test_add_index_appends_band(self) -> None:
        r = _raster(B1=[[1.0]], B2=[[0.6]], B3=[[1.0]], B4=[[0.2]])
        out = add_index(r, PLANET)
        assert out.band_names == ["B1", "B2", "B3", "B4", INDEX_BAND]
        np.testing.assert_array_equal(out.band("B2"), r.band("B2"))

    def test_add_index_keeps_zero_index_valid(self) -> None:
        r = _raster(B1=[[1.0]], B2=[[0.5]], B3=[[1.0]], B4=[[0.5]])
        out = add_index(r, PLANET)
        assert out.band(INDEX_BAND)[0, 0] == 0.0
        assert out.valid_mask([INDEX_BAND]).all()

    def test_map_collection(self) -> None:
        scenes = [_raster(B3=[[0.2]], B8=[[0.2]]), _raster(B3=[[0.0]], B8=[[0.0]])]
        mapped = map_collection(scenes, SENTINEL2)
        assert [s.band_names for s in mapped] == [["B3", "B8", INDEX_BAND]] * 2
        assert mapped[0].band(INDEX_BAND)[0, 0] == 0.0
        assert mapped[1].band(INDEX_BAND)[0, 0] == pytest.approx(NODATA)


class TestThresholdMask:

    def test_worked_example_all_zero(self) -> None:
        index = Raster.from_arrays(nodata=NODATA, MNDWI=np.array([[0.5, 0.5], [0.0, 1 / 3]], dtype=np.float32))
        mask = threshold_mask(index, -0.5)
        assert mask.band("water").tolist() == [[0, 0], [0, 0]]
        assert mask.band("water").dtype == np.uint8

    def test_strictly_less_than(self) -> None:
        index = Raster.from_arrays(MNDWI=np.array([[-0.8, -0.75, -0.7]], dtype=np.float32))
        assert threshold_mask(index, -0.75).band("water").tolist() == [[1, 0, 0]]

    def test_nodata_propagates(self) -> None:
        index = Raster.from_arrays(nodata=NODATA, MNDWI=np.array([[NODATA, -0.9]], dtype=np.float32))
        mask = threshold_mask(index, -0.5)
        # NODATA itself is below any threshold but must not be flagged
        assert mask.band("water").tolist() == [[MASK_NODATA, 1]]
        assert mask.nodata == MASK_NODATA

    def test_keeps_grid(self, utm_raster: Raster) -> None:
        index = normalized_difference(utm_raster, "green", "other")
        mask = threshold_mask(index, 0.0)
        assert mask.transform == utm_raster.transform
        assert mask.crs == utm_raster.crs

    def test_non_finite_threshold_raises(self) -> None:
        index = Raster.from_arrays(MNDWI=np.zeros((1, 1), dtype=np.float32))
        with pytest.raises(ConfigurationError):
            threshold_mask(index, float("nan"))

    def test_multi_band_needs_band_name(self) -> None:
        r = _raster(a=[[0.0]], b=[[0.0]])
        with pytest.raises(ConfigurationError):
            threshold_mask(r, 0.5)
        assert threshold_mask(r, 0.5, band="b").band("water")[0, 0] == 1

    def test_water_fraction(self) -> None:
        index = Raster.from_arrays(nodata=NODATA, MNDWI=np.array([[-0.9, 0.1, 0.2, NODATA]], dtype=np.float32))
        assert water_fraction(threshold_mask(index, -0.5)) == pytest.approx(1 / 3)

    def test_water_fraction_no_valid_pixels_is_nan(self) -> None:
        index = Raster.from_arrays(nodata=NODATA, MNDWI=np.array([[NODATA]], dtype=np.float32))
        assert np.isnan(water_fraction(threshold_mask(index, -0.5)))
