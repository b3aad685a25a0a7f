"""
clustering.py
=============
Unsupervised k-means classification of raster pixels.

A :class:`ClusterModel` is trained once on a
:class:`~water_index_mapper.sampling.SampleSet` and then applied, without
retraining, to every pixel of a raster.  By default features are min-max
scaled before k-means, matching the attribute normalisation of the
Weka k-means clusterer the exploratory scripts used.

Lloyd iterations come from ``scipy.cluster.vq.kmeans2``.  Each fit runs
:data:`N_INIT` restarts from randomly chosen sample points and keeps the
partition with the lowest within-cluster sum of squares.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Tuple

import numpy as np
import numpy.typing as npt
from scipy.cluster.vq import kmeans2, vq

from shared.python.exceptions import ConfigurationError, InsufficientDataError
from shared.python.validators import Validators

from .raster import Raster
from .sampling import SampleSet

logger = logging.getLogger("beadedstreams.water_index_mapper.clustering")

DEFAULT_K = 5
CLUSTER_NODATA = 255
CLUSTER_BAND = "cluster"
MAX_K = CLUSTER_NODATA - 1
N_INIT = 10
MAX_ITER = 30


@dataclass(frozen=True, eq=False)
class ClusterModel:
    """A fitted k-means partition over named features.

    Attributes:
        centers: ``(k, features)`` cluster centres in scaled units.
        offset: Per-feature minimum subtracted before clustering.
        span: Per-feature range divided out before clustering (1 where a
            feature is constant or normalisation is off).
        features: Band names, in the order the centres expect.
        k: Number of clusters.
        seed: Seed used for initialisation, if any.
        n_train: Number of sample records it was trained on.
        inertia: Within-cluster sum of squares of the kept partition.
        normalized: Whether features were min-max scaled.
    """

    centers: npt.NDArray[np.float64] = field(repr=False)
    offset: npt.NDArray[np.float64] = field(repr=False)
    span: npt.NDArray[np.float64] = field(repr=False)
    features: Tuple[str, ...]
    k: int
    seed: int | None
    n_train: int
    inertia: float
    normalized: bool = True

    @property
    def centroids(self) -> npt.NDArray[np.float64]:
        """``(k, features)`` cluster centres in original feature units."""
        return self.centers * self.span + self.offset

    def scale(self, features: npt.NDArray) -> npt.NDArray[np.float64]:
        return (np.asarray(features, dtype=np.float64) - self.offset) / self.span

    def predict_features(self, features: npt.NDArray) -> npt.NDArray[np.int64]:
        """Labels for an ``(n, features)`` array (nearest centre)."""
        codes, _ = vq(self.scale(features), self.centers, check_finite=False)
        return codes.astype(np.int64)


def _validate_k(k: int) -> None:
    Validators.assert_positive_int(k, "cluster count k")
    if k > MAX_K:
        raise ConfigurationError(f"cluster count k must be at most {MAX_K}, got {k}.")


def _min_max(X: npt.NDArray[np.float64]) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    offset = X.min(axis=0)
    span = X.max(axis=0) - offset
    span[span == 0] = 1.0
    return offset, span


def fit(
    samples: SampleSet,
    k: int = DEFAULT_K,
    seed: int | None = None,
    normalize: bool = True,
) -> ClusterModel:
    """Train k-means on *samples*.

    Raises:
        ConfigurationError: If *k* is not in ``1..254`` or *seed* is invalid.
        InsufficientDataError: If *samples* has fewer than *k* records.
    """
    _validate_k(k)
    Validators.assert_seed_valid(seed)
    k = int(k)
    if len(samples) < k:
        raise InsufficientDataError(available=len(samples), required=k)

    X = samples.features()
    if normalize:
        offset, span = _min_max(X)
    else:
        offset, span = np.zeros(X.shape[1]), np.ones(X.shape[1])
    scaled = (X - offset) / span

    rng = np.random.default_rng(seed)
    best_inertia, best_centers = np.inf, None
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        for _ in range(N_INIT):
            start = scaled[rng.choice(len(scaled), size=k, replace=False)]
            centers, labels = kmeans2(scaled, start, iter=MAX_ITER, minit="matrix", missing="warn")
            inertia = float(((scaled - centers[labels]) ** 2).sum())
            if best_centers is None or inertia < best_inertia:
                best_inertia, best_centers = inertia, centers

    empty = [w for w in caught if "empty" in str(w.message)]
    if empty:
        logger.warning(
            "k-means: %d restart(s) left a cluster empty; the sample may hold "
            "fewer distinct values than k=%d.", len(empty), k,
        )
    for w in caught:
        if w not in empty:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)

    logger.info(
        "Trained k-means (k=%d) on %d sample(s) of %s, inertia=%.4g",
        k, len(samples), list(samples.bands), best_inertia,
    )
    return ClusterModel(
        centers=np.asarray(best_centers, dtype=np.float64),
        offset=offset,
        span=span,
        features=tuple(samples.bands),
        k=k,
        seed=seed,
        n_train=len(samples),
        inertia=best_inertia,
        normalized=normalize,
    )


def predict(model: ClusterModel, raster: Raster, name: str = CLUSTER_BAND) -> Raster:
    """Label every pixel of *raster* with its cluster.

    Pixels valid in every feature band get a label in ``0..k-1``; pixels
    missing any feature get :data:`CLUSTER_NODATA`.

    Raises:
        MissingBandError: If *raster* lacks a band the model was trained on.
    """
    features = list(model.features)
    Validators.assert_bands_present(raster.band_names, features)
    rows, cols = raster.shape

    valid = raster.valid_mask(features).ravel()
    stacked = raster.stack(features).reshape(len(features), -1).T
    labels = np.full(rows * cols, CLUSTER_NODATA, dtype=np.uint8)
    if valid.any():
        labels[valid] = model.predict_features(stacked[valid]).astype(np.uint8)

    counts = np.bincount(labels[valid], minlength=model.k) if valid.any() else np.zeros(model.k, int)
    logger.debug("Cluster sizes: %s", counts.tolist())
    return Raster(
        bands={name: labels.reshape(rows, cols)},
        transform=raster.transform,
        crs=raster.crs,
        nodata=CLUSTER_NODATA,
    )


class ClusterRunner:
    """Bundles the clustering parameters used by a pipeline run.

    Args:
        k: Number of clusters.
        seed: Seed for k-means initialisation.
        normalize: Min-max scale features before clustering.
    """

    def __init__(self, k: int = DEFAULT_K, seed: int | None = None, normalize: bool = True) -> None:
        _validate_k(k)
        Validators.assert_seed_valid(seed)
        self.k = k
        self.seed = seed
        self.normalize = normalize

    def fit(self, samples: SampleSet) -> ClusterModel:
        return fit(samples, k=self.k, seed=self.seed, normalize=self.normalize)

    def predict(self, model: ClusterModel, raster: Raster) -> Raster:
        return predict(model, raster)

    def fit_predict(self, samples: SampleSet, raster: Raster) -> Tuple[ClusterModel, Raster]:
        model = self.fit(samples)
        return model, self.predict(model, raster)

    def __repr__(self) -> str:
        return f"ClusterRunner(k={self.k}, seed={self.seed}, normalize={self.normalize})"
