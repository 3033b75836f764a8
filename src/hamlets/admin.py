"""
Administrative reference table.

Joins administrative boundaries (unit id, name, polygon) to the district
statistics table (mean household size, total population) with an explicit
inner join. Units that lose their statistics in the join, or whose statistics
are unusable, are kept in the boundary layer so buildings inside them can
still be matched, and are reported as MissingStatisticsJoin.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from hamlets.schemas import ADMIN_UNITS_SCHEMA, ensure_id_dtype, validate_merge, validate_schema


@dataclass(frozen=True)
class AdminReference:
    """Read-only administrative reference data for one run."""
    boundaries: gpd.GeoDataFrame
    units: gpd.GeoDataFrame
    missing_statistics: List[str] = field(default_factory=list)
    orphan_statistics: List[str] = field(default_factory=list)

    def household_rates(self) -> Dict[str, float]:
        """Map admin_unit_id -> λ (total_population / mean_household_size)."""
        return dict(zip(self.units["admin_unit_id"], self.units["household_rate"].astype(float)))


def _prepare_boundaries(
    boundaries: gpd.GeoDataFrame,
    id_col: str,
    name_col: Optional[str],
) -> gpd.GeoDataFrame:
    """Rename boundary columns to canonical names and keep only what is used."""
    if id_col not in boundaries.columns:
        raise KeyError(f"Boundary layer has no '{id_col}' column")

    renames = {id_col: "admin_unit_id"}
    if name_col and name_col in boundaries.columns:
        renames[name_col] = "admin_name"

    prepared = boundaries.rename(columns=renames)
    if "admin_name" not in prepared.columns:
        prepared["admin_name"] = pd.NA

    prepared = ensure_id_dtype(prepared, ["admin_unit_id"])
    prepared = prepared[["admin_unit_id", "admin_name", prepared.geometry.name]]
    return prepared.reset_index(drop=True)


def _prepare_statistics(
    statistics: pd.DataFrame,
    id_col: str,
    mean_household_size_col: str,
    population_col: str,
) -> pd.DataFrame:
    """Rename statistics columns and coerce values to numbers."""
    missing = {id_col, mean_household_size_col, population_col} - set(statistics.columns)
    if missing:
        raise KeyError(f"Statistics table is missing columns: {sorted(missing)}")

    stats = statistics[[id_col, mean_household_size_col, population_col]].rename(columns={
        id_col: "admin_unit_id",
        mean_household_size_col: "mean_household_size",
        population_col: "total_population",
    })
    stats = ensure_id_dtype(stats, ["admin_unit_id"])
    stats["mean_household_size"] = pd.to_numeric(stats["mean_household_size"], errors="coerce").astype("float64")
    stats["total_population"] = pd.to_numeric(stats["total_population"], errors="coerce")
    return stats


def _usable_statistics(stats: pd.DataFrame) -> pd.Series:
    """Rows with an id, mean_household_size > 0 and a whole, non-negative population."""
    mean_size = stats["mean_household_size"]
    population = stats["total_population"].astype("float64")
    return (
        stats["admin_unit_id"].notna()
        & np.isfinite(mean_size) & (mean_size > 0)
        & np.isfinite(population) & (population >= 0) & (population == np.floor(population))
    )


def build_admin_units(
    boundaries: gpd.GeoDataFrame,
    statistics: pd.DataFrame,
    logger,
    boundary_id_col: str = "admin_unit_id",
    boundary_name_col: Optional[str] = "admin_name",
    stats_id_col: str = "admin_unit_id",
    mean_household_size_col: str = "mean_household_size",
    population_col: str = "total_population",
) -> AdminReference:
    """
    Build the administrative reference table.

    Args:
        boundaries: Administrative polygons with id and (optional) name columns
        statistics: Table keyed by unit id with household size and population
        logger: JSONLLogger instance
        boundary_id_col, boundary_name_col: Column names in `boundaries`
        stats_id_col, mean_household_size_col, population_col: Column names in
            `statistics`

    Returns:
        AdminReference with all boundaries and the statistics-joined units

    Raises:
        ValueError: If either table repeats a unit id
    """
    bounds = _prepare_boundaries(boundaries, boundary_id_col, boundary_name_col)
    stats = _prepare_statistics(statistics, stats_id_col, mean_household_size_col, population_col)
    logger.info(f"Loaded {len(bounds)} administrative boundaries, {len(stats)} statistics rows")

    if bounds["admin_unit_id"].isna().any():
        raise ValueError("Administrative boundaries contain NA unit ids")

    usable = _usable_statistics(stats)
    if (~usable).any():
        bad_ids = stats.loc[~usable, "admin_unit_id"].dropna().tolist()
        logger.warning(
            f"{int((~usable).sum())} statistics rows have unusable values and are ignored",
            extra={"admin_unit_ids": bad_ids[:20]},
        )
    stats = stats[usable].copy()
    stats["total_population"] = stats["total_population"].astype("Int64")

    units = validate_merge(
        bounds,
        stats,
        on="admin_unit_id",
        how="inner",
        validate="one_to_one",
        context="admin boundaries x statistics",
    )
    units = gpd.GeoDataFrame(units, geometry=bounds.geometry.name, crs=bounds.crs)
    units["household_rate"] = (
        units["total_population"].astype("float64") / units["mean_household_size"]
    )

    boundary_ids = set(bounds["admin_unit_id"])
    stats_ids = set(stats["admin_unit_id"].dropna())
    missing_statistics = sorted(boundary_ids - set(units["admin_unit_id"]))
    orphan_statistics = sorted(stats_ids - boundary_ids)

    if missing_statistics:
        logger.warning(
            f"{len(missing_statistics)} administrative units have no statistics; "
            "their buildings will not receive household sizes",
            extra={"admin_unit_ids": missing_statistics[:20]},
        )
    if orphan_statistics:
        logger.warning(
            f"{len(orphan_statistics)} statistics rows match no boundary and are dropped",
            extra={"admin_unit_ids": orphan_statistics[:20]},
        )

    if len(units) > 0:
        validate_schema(units, ADMIN_UNITS_SCHEMA, context="admin units")
    else:
        logger.warning("No administrative unit has usable statistics")

    logger.info(f"Administrative reference: {len(units)} of {len(bounds)} units with statistics")

    return AdminReference(
        boundaries=bounds,
        units=units.reset_index(drop=True),
        missing_statistics=missing_statistics,
        orphan_statistics=orphan_statistics,
    )
