"""
Quality assurance utilities for hamlet outputs.

- CRS handling between layers is explicit: layers are aligned with to_crs(),
  never with set_crs overrides. Coordinates are otherwise treated as a flat
  plane; no projection suitability checks are made.
- Recoverable data conditions (unmatched points, missing statistics, empty
  clusters, non-convergence) are collected as anomalies, never coerced away.
- Output invariants (member counts, population sums) are checked before write.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import geopandas as gpd
import pandas as pd
from pyproj import CRS


# =============================================================================
# Anomaly kinds
# =============================================================================

UNMATCHED_ADMIN_UNIT = "UnmatchedAdministrativeUnit"
MISSING_STATISTICS_JOIN = "MissingStatisticsJoin"
NON_CONVERGENCE = "NonConvergence"
EMPTY_CLUSTERS = "EmptyClusters"


class CRSError(Exception):
    """Raised when CRS validation fails."""
    pass


# =============================================================================
# CRS Handling
# =============================================================================

def assert_crs_not_none(gdf: gpd.GeoDataFrame, context: str = "") -> None:
    """
    Assert that the GeoDataFrame has a CRS set.

    Raises:
        CRSError: If CRS is None
    """
    if gdf.crs is None:
        msg = "GeoDataFrame has no CRS set"
        if context:
            msg = f"{msg} ({context})"
        raise CRSError(msg)


def safe_reproject(
    gdf: gpd.GeoDataFrame,
    target_crs: Any,
    context: str = "",
) -> gpd.GeoDataFrame:
    """
    Safely reproject a GeoDataFrame to a target CRS.

    Only uses to_crs(), never set_crs with override.

    Args:
        gdf: GeoDataFrame to reproject
        target_crs: Anything pyproj.CRS.from_user_input accepts
        context: Optional context string for error message

    Returns:
        Reprojected GeoDataFrame (the input itself if already in target CRS)

    Raises:
        CRSError: If source CRS is None
    """
    assert_crs_not_none(gdf, context)

    target_crs = CRS.from_user_input(target_crs)

    if gdf.crs.equals(target_crs):
        return gdf

    return gdf.to_crs(target_crs)


def align_crs(
    gdf: gpd.GeoDataFrame,
    reference: gpd.GeoDataFrame,
    context: str = "",
) -> gpd.GeoDataFrame:
    """
    Bring `gdf` into the CRS of `reference` when both declare one.

    Layers without a CRS are taken as already sharing the same plane.
    """
    if gdf.crs is None or reference.crs is None:
        return gdf
    return safe_reproject(gdf, reference.crs, context)


# =============================================================================
# Geometry Validation
# =============================================================================

def assert_point_geometries(gdf: gpd.GeoDataFrame, context: str = "") -> None:
    """
    Assert every geometry is a non-empty Point.

    Raises:
        ValueError: If any geometry is missing, empty or not a Point
    """
    geoms = gdf.geometry
    bad = geoms.isna() | geoms.is_empty | (geoms.geom_type != "Point")
    if bad.any():
        msg = f"{int(bad.sum())} missing, empty or non-Point geometries found"
        if context:
            msg = f"{msg} ({context})"
        raise ValueError(msg)


# =============================================================================
# Anomaly Reporting
# =============================================================================

@dataclass
class Anomaly:
    """A recoverable data condition encountered during a run."""
    kind: str
    count: int
    detail: str = ""
    ids: List[str] = field(default_factory=list)


@dataclass
class AnomalyReport:
    """Anomalies collected across pipeline stages."""
    anomalies: List[Anomaly] = field(default_factory=list)

    def add(self, kind: str, count: int, detail: str = "", ids: Optional[List[str]] = None) -> None:
        """Record an anomaly; zero-count conditions are not recorded."""
        if count <= 0:
            return
        self.anomalies.append(Anomaly(kind=kind, count=int(count), detail=detail, ids=list(ids or [])))

    def extend(self, other: "AnomalyReport") -> None:
        self.anomalies.extend(other.anomalies)

    def kinds(self) -> List[str]:
        return [a.kind for a in self.anomalies]

    def count(self, kind: str) -> int:
        """Total count recorded for an anomaly kind."""
        return sum(a.count for a in self.anomalies if a.kind == kind)

    def to_records(self, max_ids: int = 20) -> List[Dict[str, Any]]:
        """Serializable records, with id lists capped for logging."""
        records = []
        for anomaly in self.anomalies:
            record = asdict(anomaly)
            record["ids"] = record["ids"][:max_ids]
            records.append(record)
        return records

    def __len__(self) -> int:
        return len(self.anomalies)


# =============================================================================
# Output Invariants
# =============================================================================

def check_hamlet_invariants(
    buildings: pd.DataFrame,
    hamlets: pd.DataFrame,
    logger=None,
) -> Dict[str, Any]:
    """
    Check member-count and population invariants between buildings and hamlets.

    - sum(member_count) equals the number of buildings
    - member_count per hamlet equals the buildings carrying its cluster_id
    - population_estimate equals the sum of known household sizes per hamlet
    - no household_size below 1

    Returns:
        QA stats dictionary with a boolean "passed"
    """
    qa_stats: Dict[str, Any] = {}
    passed = True

    total_members = int(hamlets["member_count"].sum())
    qa_stats["n_buildings"] = len(buildings)
    qa_stats["total_members"] = total_members
    if total_members != len(buildings):
        passed = False
        if logger:
            logger.error(f"Member counts sum to {total_members}, expected {len(buildings)}")

    grouped = buildings.groupby("cluster_id")
    counts = grouped.size()
    sums = grouped["household_size"].sum(min_count=0)

    by_id = hamlets.set_index("cluster_id")
    expected_counts = counts.reindex(by_id.index, fill_value=0)
    expected_sums = sums.reindex(by_id.index, fill_value=0)

    count_mismatch = (by_id["member_count"].astype("int64") != expected_counts.astype("int64"))
    pop_mismatch = (by_id["population_estimate"].astype("int64") != expected_sums.astype("int64"))

    qa_stats["member_count_mismatches"] = int(count_mismatch.sum())
    qa_stats["population_mismatches"] = int(pop_mismatch.sum())
    if count_mismatch.any() or pop_mismatch.any():
        passed = False
        if logger:
            logger.error(
                f"Hamlet totals disagree with buildings: {int(count_mismatch.sum())} count, "
                f"{int(pop_mismatch.sum())} population mismatches"
            )

    sizes = buildings["household_size"].dropna()
    qa_stats["n_below_one"] = int((sizes < 1).sum())
    if qa_stats["n_below_one"] > 0:
        passed = False
        if logger:
            logger.error(f"Found {qa_stats['n_below_one']} household sizes below 1")

    qa_stats["passed"] = passed
    if logger:
        logger.info(f"QA validation {'PASSED' if passed else 'FAILED'}")

    return qa_stats


def compute_na_rates(df: pd.DataFrame) -> dict[str, float]:
    """
    Compute NA rates for all non-geometry columns in a DataFrame.

    Returns:
        Dictionary of column_name -> NA rate (0-1)
    """
    if len(df) == 0:
        return {}
    cols = [c for c in df.columns if c != "geometry"]
    return (df[cols].isna().sum() / len(df)).to_dict()
