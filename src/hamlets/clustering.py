"""
Hamlet clustering of building points.

Building centroids are partitioned into K hamlets with Lloyd's k-means
(scikit-learn, `algorithm="lloyd"`) on raw x/y coordinates:
- K = round(N / R) from the reference ratio R (households per hamlet), min 1
- seeded k-means++ initialisation, so identical input and seed reproduce the
  same labels, centroids and sizes
- at most `max_iter` relocation rounds (default 50); hitting the bound is
  reported as non-convergence, not raised
- cluster ids are 1..K; empty clusters are allowed and kept in the output
"""

import warnings
from dataclasses import dataclass
from typing import List, Optional

import geopandas as gpd
import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import pairwise_distances_argmin


DEFAULT_REFERENCE_RATIO = 51
DEFAULT_MAX_ITER = 50
DEFAULT_TOL = 1e-4


class InputCardinalityError(Exception):
    """Raised when there are no building points to cluster."""
    pass


@dataclass(frozen=True)
class ClusteringResult:
    """Partition of N points into K clusters."""
    labels: np.ndarray       # (N,) cluster ids in 1..K, input order
    centroids: np.ndarray    # (K, 2) mean of members; NaN rows for empty clusters
    sizes: np.ndarray        # (K,) member counts, sum == N
    n_iter: int
    converged: bool
    inertia: float
    notes: tuple = ()

    @property
    def n_clusters(self) -> int:
        return len(self.sizes)

    @property
    def cluster_ids(self) -> np.ndarray:
        return np.arange(1, self.n_clusters + 1)

    @property
    def empty_cluster_ids(self) -> List[int]:
        return [int(c) for c in self.cluster_ids[self.sizes == 0]]


def derive_cluster_count(n_points: int, reference_ratio: float = DEFAULT_REFERENCE_RATIO) -> int:
    """
    Derive the target hamlet count K from the number of building points.

    K = round(N / R) with halves rounded up, clamped to at least 1.

    Raises:
        InputCardinalityError: If n_points < 1
        ValueError: If reference_ratio is not positive
    """
    if n_points < 1:
        raise InputCardinalityError(
            f"Need at least 1 building point to form hamlets, got {n_points}"
        )
    if not reference_ratio > 0:
        raise ValueError(f"reference_ratio must be positive, got {reference_ratio}")

    k = int(np.floor(n_points / reference_ratio + 0.5))
    return max(k, 1)


def points_to_coordinates(points: gpd.GeoDataFrame) -> np.ndarray:
    """Extract an (N, 2) array of x/y coordinates from point geometries."""
    return np.column_stack([points.geometry.x.to_numpy(), points.geometry.y.to_numpy()]).astype(float)


def nearest_centroid_labels(coords: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """
    Cluster id (1..K) of the nearest centroid for each point.

    A point equidistant from several centroids goes to the lowest cluster id.
    """
    return pairwise_distances_argmin(np.asarray(coords, dtype=float), np.asarray(centroids, dtype=float)) + 1


def _member_centroids(coords: np.ndarray, labels0: np.ndarray, n_clusters: int) -> np.ndarray:
    """Mean coordinates per cluster (0-based labels); NaN for empty clusters."""
    sizes = np.bincount(labels0, minlength=n_clusters)
    centroids = np.full((n_clusters, 2), np.nan)
    filled = sizes > 0
    for axis in range(2):
        totals = np.bincount(labels0, weights=coords[:, axis], minlength=n_clusters)
        centroids[filled, axis] = totals[filled] / sizes[filled]
    return centroids


def cluster_points(
    coords: np.ndarray,
    n_clusters: int,
    random_seed: int,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
    n_init: int = 1,
    logger=None,
) -> ClusteringResult:
    """
    Partition points into `n_clusters` groups minimising within-cluster
    squared Euclidean distance.

    Args:
        coords: (N, 2) coordinate array
        n_clusters: Target cluster count K (>= 1)
        random_seed: Seed for centroid initialisation
        max_iter: Iteration bound for the relocation loop
        tol: Centroid shift tolerance for convergence
        n_init: Number of seeded initialisations (best inertia kept)
        logger: Optional logger for warnings

    Returns:
        ClusteringResult

    Raises:
        InputCardinalityError: If there are no points
        ValueError: If n_clusters < 1 or coords are not (N, 2) finite values
    """
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise ValueError(f"Expected an (N, 2) coordinate array, got shape {coords.shape}")

    n_points = len(coords)
    if n_points < 1:
        raise InputCardinalityError("Need at least 1 building point to form hamlets, got 0")
    if n_clusters < 1:
        raise ValueError(f"n_clusters must be >= 1, got {n_clusters}")
    if not np.isfinite(coords).all():
        raise ValueError("Coordinates contain NaN or infinite values")

    notes = []
    n_fit = n_clusters
    if n_clusters > n_points:
        n_fit = n_points
        notes.append(
            f"Requested {n_clusters} clusters for {n_points} points; "
            f"{n_clusters - n_points} clusters will be empty"
        )

    kmeans = KMeans(
        n_clusters=n_fit,
        init="k-means++",
        n_init=n_init,
        max_iter=max_iter,
        tol=tol,
        algorithm="lloyd",
        random_state=random_seed,
    )
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        kmeans.fit(coords)
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            notes.append(str(w.message))
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno, source=w.source)

    # Final assignment against the final centroids, ties to the lowest id
    labels0 = (nearest_centroid_labels(coords, kmeans.cluster_centers_) - 1).astype(np.int64)
    sizes = np.bincount(labels0, minlength=n_clusters).astype(np.int64)
    centroids = _member_centroids(coords, labels0, n_clusters)

    n_iter = int(kmeans.n_iter_)
    converged = n_iter < max_iter
    if not converged:
        notes.append(f"k-means reached the iteration bound ({max_iter}) before centroids settled")

    if logger:
        for note in notes:
            logger.warning(note)

    return ClusteringResult(
        labels=labels0 + 1,
        centroids=centroids,
        sizes=sizes,
        n_iter=n_iter,
        converged=converged,
        inertia=float(kmeans.inertia_),
        notes=tuple(notes),
    )


def cluster_buildings(
    buildings: gpd.GeoDataFrame,
    random_seed: int,
    reference_ratio: float = DEFAULT_REFERENCE_RATIO,
    n_clusters: Optional[int] = None,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
    n_init: int = 1,
    logger=None,
) -> ClusteringResult:
    """
    Cluster building points into hamlets, deriving K from the reference ratio
    unless `n_clusters` is given.
    """
    if len(buildings) < 1:
        raise InputCardinalityError("No building points left to cluster after filtering")

    if n_clusters is None:
        n_clusters = derive_cluster_count(len(buildings), reference_ratio)

    if logger:
        logger.info(
            f"Clustering {len(buildings):,} buildings into {n_clusters} hamlets "
            f"(ratio={reference_ratio}, seed={random_seed}, max_iter={max_iter})"
        )

    return cluster_points(
        points_to_coordinates(buildings),
        n_clusters=n_clusters,
        random_seed=random_seed,
        max_iter=max_iter,
        tol=tol,
        n_init=n_init,
        logger=logger,
    )
