"""
Export formatting for hamlet, building point and building polygon layers.

Column names are shortened to fit the 10-character shapefile limit and the
hamlet member count is published as "size". Missing household sizes and
admin units are written as nulls, never as 0.
"""

from typing import Dict

import geopandas as gpd


HAMLET_EXPORT_COLUMNS: Dict[str, str] = {
    "cluster_id": "cluster_id",
    "member_count": "size",
    "population_estimate": "pop_est",
    "n_unsized": "n_unsized",
    "admin_unit_id": "admin_id",
    "member_admin_unit_id": "mem_admin",
    "admin_mismatch": "admin_diff",
}

BUILDING_EXPORT_COLUMNS: Dict[str, str] = {
    "building_id": "bldg_id",
    "admin_unit_id": "admin_id",
    "cluster_id": "cluster_id",
    "household_size": "hh_size",
}


def _format_layer(gdf: gpd.GeoDataFrame, columns: Dict[str, str]) -> gpd.GeoDataFrame:
    geometry_name = gdf.geometry.name
    present = [c for c in columns if c in gdf.columns]
    out = gdf[present + [geometry_name]].rename(columns=columns)

    # Shapefile attribute tables have no boolean type
    for col in out.columns:
        if col != geometry_name and out[col].dtype == bool:
            out[col] = out[col].astype("int32")

    return out


def format_hamlets_for_export(hamlets: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Hamlet layer with export column names (member_count -> size)."""
    return _format_layer(hamlets, HAMLET_EXPORT_COLUMNS)


def format_buildings_for_export(buildings: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Building point or polygon layer with export column names."""
    return _format_layer(buildings, BUILDING_EXPORT_COLUMNS)
