"""
Tests for k-means clustering
=============================
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import ConfigurationError, InsufficientDataError, MissingBandError
from water_index_mapper.clustering import CLUSTER_NODATA, ClusterRunner, fit, predict
from water_index_mapper.raster import Raster
from water_index_mapper.sampling import sample_pixels


@pytest.fixture()
def two_groups() -> Raster:
    """Left half near 0, right half near 10, one nodata pixel."""
    rng = np.random.default_rng(0)
    values = np.zeros((4, 4)) + rng.normal(0, 0.05, (4, 4))
    values[:, 2:] += 10.0
    values[0, 0] = -9999.0
    return Raster.from_arrays(nodata=-9999.0, v=values.astype(np.float32))


class TestFit:

    def test_fewer_samples_than_k_raises(self) -> None:
        r = Raster.from_arrays(v=np.array([[0.1, 0.2, 0.3]]))
        samples = sample_pixels(r, max_count=10)
        with pytest.raises(InsufficientDataError):
            fit(samples, k=5)

    def test_empty_sample_raises(self, two_groups: Raster) -> None:
        with pytest.raises(InsufficientDataError):
            fit(sample_pixels(two_groups, max_count=0), k=2)

    @pytest.mark.parametrize("k", [0, -3, 255])
    def test_bad_k_raises(self, two_groups: Raster, k: int) -> None:
        with pytest.raises(ConfigurationError):
            fit(sample_pixels(two_groups, max_count=100), k=k)

    def test_model_metadata(self, two_groups: Raster) -> None:
        samples = sample_pixels(two_groups, max_count=100, seed=0)
        model = fit(samples, k=2, seed=0)
        assert model.k == 2
        assert model.features == ("v",)
        assert model.n_train == 15
        assert model.seed == 0

    def test_centroids_in_feature_units(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0)
        centres = sorted(model.centroids[:, 0])
        assert centres[0] == pytest.approx(0.0, abs=0.2)
        assert centres[1] == pytest.approx(10.0, abs=0.2)

    def test_without_normalisation(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0, normalize=False)
        assert not model.normalized
        np.testing.assert_array_equal(model.centers, model.centroids)
        assert sorted(model.centroids[:, 0]) == pytest.approx([0.0, 10.0], abs=0.2)

    def test_normalised_centres_in_unit_range(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0)
        assert model.centers.min() >= 0.0
        assert model.centers.max() <= 1.0

    def test_constant_feature_does_not_divide_by_zero(self, utm_raster: Raster) -> None:
        model = fit(sample_pixels(utm_raster, max_count=100, seed=0), k=2, seed=0)
        assert np.isfinite(model.centers).all()
        np.testing.assert_allclose(model.centroids[:, 1], 2.0)

    def test_more_clusters_than_distinct_values_still_fits(self) -> None:
        r = Raster.from_arrays(v=np.array([[1.0, 1.0, 1.0, 2.0]]))
        model = fit(sample_pixels(r, max_count=10), k=3, seed=0)
        labels = predict(model, r).band("cluster")
        assert labels[0, 0] == labels[0, 1] == labels[0, 2]
        assert labels[0, 3] != labels[0, 0]


class TestPredict:

    def test_labels_in_range_and_nodata(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0)
        labels = predict(model, two_groups).band("cluster")
        assert labels.dtype == np.uint8
        assert labels[0, 0] == CLUSTER_NODATA
        valid = labels[two_groups.valid_mask()]
        assert set(np.unique(valid)) <= {0, 1}

    def test_groups_separate(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0)
        labels = predict(model, two_groups).band("cluster")
        left = set(labels[1:, :2].ravel())
        right = set(labels[:, 2:].ravel())
        assert len(left) == 1 and len(right) == 1
        assert left != right

    def test_applies_to_unseen_raster(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100, seed=0), k=2, seed=0)
        other = Raster.from_arrays(v=np.array([[0.0, 10.0]], dtype=np.float32))
        labels = predict(model, other).band("cluster")
        assert labels[0, 0] != labels[0, 1]

    def test_same_seed_same_labels(self, roi_raster: Raster) -> None:
        samples = sample_pixels(roi_raster, max_count=200, seed=4)
        a = predict(fit(samples, k=5, seed=4), roi_raster).band("cluster")
        b = predict(fit(samples, k=5, seed=4), roi_raster).band("cluster")
        np.testing.assert_array_equal(a, b)
        assert set(np.unique(a)) <= set(range(5))

    def test_missing_band_raises(self, two_groups: Raster) -> None:
        model = fit(sample_pixels(two_groups, max_count=100), k=2, seed=0)
        with pytest.raises(MissingBandError):
            predict(model, Raster.from_arrays(w=np.zeros((2, 2))))

    def test_keeps_grid(self, utm_raster: Raster) -> None:
        model = fit(sample_pixels(utm_raster, max_count=100, seed=0), k=3, seed=0)
        clusters = predict(model, utm_raster)
        assert clusters.transform == utm_raster.transform
        assert clusters.nodata == CLUSTER_NODATA


class TestClusterRunner:

    def test_fit_predict(self, two_groups: Raster) -> None:
        runner = ClusterRunner(k=2, seed=1)
        model, clusters = runner.fit_predict(sample_pixels(two_groups, max_count=100, seed=1), two_groups)
        assert model.k == 2
        assert clusters.shape == two_groups.shape

    def test_invalid_k_rejected_early(self) -> None:
        with pytest.raises(ConfigurationError):
            ClusterRunner(k=0)

    def test_negative_seed_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            ClusterRunner(k=2, seed=-1)

    def test_numpy_integer_k(self, two_groups: Raster) -> None:
        runner = ClusterRunner(k=np.int64(2), seed=np.int64(1))
        model, clusters = runner.fit_predict(sample_pixels(two_groups, max_count=100, seed=1), two_groups)
        assert model.k == 2
        assert set(np.unique(clusters.band("cluster")[two_groups.valid_mask()])) <= {0, 1}

    def test_model_compares_by_identity(self, two_groups: Raster) -> None:
        samples = sample_pixels(two_groups, max_count=100, seed=0)
        a, b = fit(samples, k=2, seed=0), fit(samples, k=2, seed=0)
        assert a == a and a != b
        assert len({a, b}) == 2
