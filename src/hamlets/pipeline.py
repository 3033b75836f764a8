"""
Hamlet formation and population synthesis pipeline.

Stages run strictly in order, each returning new tables:

1. administrative matching of building points
2. clustering of building points into K hamlets
3. household size synthesis per administrative unit
4. aggregation into hamlet records (centroid units matched independently)

Only InputCardinalityError aborts a run. Unmatched points, units without
statistics, empty clusters and non-convergence are collected as anomalies.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import geopandas as gpd
import pandas as pd

from hamlets.admin import AdminReference
from hamlets.aggregation import aggregate_hamlets
from hamlets.clustering import (
    DEFAULT_MAX_ITER,
    DEFAULT_REFERENCE_RATIO,
    DEFAULT_TOL,
    ClusteringResult,
    InputCardinalityError,
    cluster_buildings,
)
from hamlets.joins import log_join_stats, match_points_to_polygons
from hamlets.qa import (
    EMPTY_CLUSTERS,
    NON_CONVERGENCE,
    UNMATCHED_ADMIN_UNIT,
    AnomalyReport,
    check_hamlet_invariants,
)
from hamlets.schemas import BUILDINGS_SCHEMA, HAMLETS_SCHEMA, validate_schema
from hamlets.synthesis import SynthesisReport, synthesize_household_sizes


@dataclass
class HamletParams:
    """Run parameters, normally read from the params.yml `clustering` and `synthesis` blocks."""
    reference_ratio: float = DEFAULT_REFERENCE_RATIO
    n_clusters: Optional[int] = None
    clustering_seed: int = 123
    max_iter: int = DEFAULT_MAX_ITER
    tol: float = DEFAULT_TOL
    n_init: int = 1
    synthesis_seed: int = 123
    seed_policy: str = "per_unit"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HamletParams":
        clustering = config.get("clustering", {}) or {}
        synthesis = config.get("synthesis", {}) or {}
        defaults = cls()
        return cls(
            reference_ratio=clustering.get("reference_ratio", defaults.reference_ratio),
            n_clusters=clustering.get("n_clusters", defaults.n_clusters),
            clustering_seed=clustering.get("random_seed", defaults.clustering_seed),
            max_iter=clustering.get("max_iter", defaults.max_iter),
            tol=clustering.get("tol", defaults.tol),
            n_init=clustering.get("n_init", defaults.n_init),
            synthesis_seed=synthesis.get("random_seed", defaults.synthesis_seed),
            seed_policy=synthesis.get("seed_policy", defaults.seed_policy),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HamletRun:
    """Everything one pipeline run produces."""
    buildings: gpd.GeoDataFrame
    hamlets: gpd.GeoDataFrame
    clustering: ClusteringResult
    synthesis: SynthesisReport
    anomalies: AnomalyReport
    join_stats: Dict[str, Dict] = field(default_factory=dict)
    qa_stats: Dict[str, Any] = field(default_factory=dict)

    def metrics(self) -> Dict[str, Any]:
        return {
            "n_buildings": len(self.buildings),
            "n_hamlets": len(self.hamlets),
            "n_empty_hamlets": len(self.clustering.empty_cluster_ids),
            "clustering_iterations": self.clustering.n_iter,
            "clustering_converged": self.clustering.converged,
            "clustering_inertia": self.clustering.inertia,
            "total_population": int(self.hamlets["population_estimate"].sum()),
            "hamlet_admin_mismatches": int(self.hamlets["admin_mismatch"].sum()),
            "synthesis": self.synthesis.to_metrics(),
            "anomaly_kinds": self.anomalies.kinds(),
        }


def assign_clusters(buildings: gpd.GeoDataFrame, clustering: ClusteringResult) -> gpd.GeoDataFrame:
    """Copy of buildings with cluster_id (1..K) attached in input order."""
    if len(buildings) != len(clustering.labels):
        raise ValueError(
            f"{len(buildings)} buildings but {len(clustering.labels)} cluster labels"
        )
    clustered = buildings.copy()
    clustered["cluster_id"] = pd.array(clustering.labels, dtype="Int64")
    return clustered


def run_hamlet_pipeline(
    buildings: gpd.GeoDataFrame,
    admin: AdminReference,
    params: HamletParams,
    logger,
) -> HamletRun:
    """
    Run matching, clustering, synthesis and aggregation.

    Args:
        buildings: Prepared building points (building_id + point geometry)
        admin: Administrative reference data
        params: Run parameters
        logger: JSONLLogger instance

    Returns:
        HamletRun with the building and hamlet layers plus reports

    Raises:
        InputCardinalityError: If there are no building points
    """
    if len(buildings) < 1:
        raise InputCardinalityError("No valid building points to form hamlets from")

    logger.info(f"Running hamlet pipeline on {len(buildings):,} buildings", extra=params.to_dict())
    join_stats = {}

    # 1. Administrative matching
    unit_ids, join_stats["buildings"] = match_points_to_polygons(buildings, admin.boundaries, "admin_unit_id")
    log_join_stats(join_stats["buildings"], "buildings", logger)
    matched = buildings.copy()
    matched["admin_unit_id"] = unit_ids

    # 2. Clustering
    clustering = cluster_buildings(
        matched,
        random_seed=params.clustering_seed,
        reference_ratio=params.reference_ratio,
        n_clusters=params.n_clusters,
        max_iter=params.max_iter,
        tol=params.tol,
        n_init=params.n_init,
        logger=logger,
    )
    logger.info(
        f"Clustering finished after {clustering.n_iter} iterations "
        f"(converged={clustering.converged}, inertia={clustering.inertia:.4g})"
    )
    clustered = assign_clusters(matched, clustering)

    # 3. Household size synthesis
    sizes, synthesis = synthesize_household_sizes(
        clustered,
        admin.household_rates(),
        random_seed=params.synthesis_seed,
        seed_policy=params.seed_policy,
        logger=logger,
    )
    sized = clustered.copy()
    sized["household_size"] = sizes

    # 4. Aggregation
    hamlets, join_stats["hamlet_centroids"] = aggregate_hamlets(sized, clustering, admin.boundaries, logger)
    log_join_stats(join_stats["hamlet_centroids"], "hamlet centroids", logger)

    anomalies = AnomalyReport()
    anomalies.extend(synthesis.anomalies())
    if not clustering.converged:
        anomalies.add(NON_CONVERGENCE, 1, f"k-means stopped at the iteration bound ({clustering.n_iter})")
    anomalies.add(
        EMPTY_CLUSTERS,
        len(clustering.empty_cluster_ids),
        "hamlets without member buildings",
        [str(c) for c in clustering.empty_cluster_ids],
    )
    stray = hamlets[hamlets["admin_unit_id"].isna() & (hamlets["member_count"] > 0)]
    anomalies.add(
        UNMATCHED_ADMIN_UNIT,
        len(stray),
        "hamlet centroids outside every administrative polygon",
        [str(c) for c in stray["cluster_id"]],
    )
    logger.log_anomalies(anomalies.to_records())

    qa_stats = check_hamlet_invariants(sized, hamlets, logger)
    validate_schema(sized, BUILDINGS_SCHEMA, context="pipeline buildings")
    validate_schema(hamlets, HAMLETS_SCHEMA, context="pipeline hamlets")

    run = HamletRun(
        buildings=sized,
        hamlets=hamlets,
        clustering=clustering,
        synthesis=synthesis,
        anomalies=anomalies,
        join_stats=join_stats,
        qa_stats=qa_stats,
    )
    logger.log_metrics(run.metrics())
    return run
