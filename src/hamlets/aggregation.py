"""
Hamlet aggregation.

Turns cluster membership plus synthesized household sizes into one record per
hamlet (cluster ids 1..K, empty clusters included):

- centroid: mean of member coordinates (no geometry for empty clusters)
- member_count: number of member buildings
- population_estimate: sum of known member household sizes (0 when empty)
- n_unsized: members without a household size, so a shortfall stays visible
- admin_unit_id: unit containing the centroid, matched on its own
- member_admin_unit_id: most common unit among members (lowest id on ties)
- admin_mismatch: the two unit ids differ
"""

from typing import Dict, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Point

from hamlets.clustering import ClusteringResult
from hamlets.joins import match_points_to_polygons


def _majority_unit(values: pd.Series) -> Optional[str]:
    """Most frequent value; ties go to the lowest id."""
    counts = values.value_counts().sort_index()
    if counts.empty:
        return None
    return counts.idxmax()


def member_majority_units(buildings: pd.DataFrame, cluster_ids: np.ndarray) -> pd.Series:
    """Majority admin_unit_id of each cluster's members (NA if none matched)."""
    matched = buildings[buildings["admin_unit_id"].notna()]
    majority = matched.groupby("cluster_id")["admin_unit_id"].agg(_majority_unit)
    return majority.reindex(cluster_ids).astype("string")


def centroid_geometries(centroids: np.ndarray) -> list:
    """Point per centroid row; None where the cluster is empty."""
    return [
        Point(x, y) if np.isfinite(x) and np.isfinite(y) else None
        for x, y in centroids
    ]


def aggregate_hamlets(
    buildings: gpd.GeoDataFrame,
    clustering: ClusteringResult,
    boundaries: gpd.GeoDataFrame,
    logger=None,
) -> Tuple[gpd.GeoDataFrame, Dict]:
    """
    Build hamlet records from clustered, sized buildings.

    Args:
        buildings: Buildings with cluster_id, household_size and admin_unit_id
        clustering: Result the buildings' cluster_id came from
        boundaries: Administrative polygons with admin_unit_id
        logger: Optional logger

    Returns:
        Tuple of (hamlets GeoDataFrame, centroid join stats)
    """
    cluster_ids = clustering.cluster_ids
    by_cluster = buildings.groupby("cluster_id")

    member_count = by_cluster.size().reindex(cluster_ids, fill_value=0)
    population = by_cluster["household_size"].sum(min_count=0).reindex(cluster_ids, fill_value=0)
    n_unsized = (
        buildings["household_size"].isna()
        .groupby(buildings["cluster_id"]).sum()
        .reindex(cluster_ids, fill_value=0)
    )

    if not np.array_equal(member_count.to_numpy(), clustering.sizes):
        raise ValueError("Building cluster_id counts disagree with the clustering result")

    hamlets = gpd.GeoDataFrame(
        {
            "cluster_id": pd.array(cluster_ids, dtype="Int64"),
            "member_count": pd.array(member_count.to_numpy(), dtype="Int64"),
            "population_estimate": pd.array(population.to_numpy(), dtype="Int64"),
            "n_unsized": pd.array(n_unsized.to_numpy(), dtype="Int64"),
        },
        geometry=centroid_geometries(clustering.centroids),
        crs=buildings.crs,
    )

    hamlet_units, join_stats = match_points_to_polygons(hamlets, boundaries, "admin_unit_id")
    hamlets["admin_unit_id"] = hamlet_units
    hamlets["member_admin_unit_id"] = member_majority_units(buildings, cluster_ids).array
    hamlets["admin_mismatch"] = (
        hamlets["admin_unit_id"].fillna("") != hamlets["member_admin_unit_id"].fillna("")
    ).astype(bool)

    hamlets = hamlets[[
        "cluster_id", "member_count", "population_estimate", "n_unsized",
        "admin_unit_id", "member_admin_unit_id", "admin_mismatch", "geometry",
    ]]

    if logger:
        logger.info(
            f"Aggregated {len(hamlets)} hamlets: "
            f"{int(hamlets['population_estimate'].sum()):,} people, "
            f"{int((hamlets['member_count'] == 0).sum())} empty, "
            f"{int(hamlets['admin_mismatch'].sum())} with centroid/member unit mismatch"
        )

    return hamlets, join_stats
