"""
Building layer preparation.

Building points arrive with an id, a point geometry and an optional name
label. Points that already carry a name are recognised places and are not
clustered. Building polygons share the point ids and receive the clustered
attributes through an id join.
"""

from typing import Optional

import geopandas as gpd
import pandas as pd

from hamlets.qa import assert_point_geometries
from hamlets.schemas import ensure_id_dtype, validate_merge


def filter_unnamed_points(
    points: gpd.GeoDataFrame,
    name_col: Optional[str],
    logger=None,
) -> gpd.GeoDataFrame:
    """
    Keep only points whose name label is absent (NA or blank).

    If `name_col` is None or missing from the layer every point is kept.
    """
    if not name_col or name_col not in points.columns:
        if logger and name_col:
            logger.warning(f"Name column '{name_col}' not found; no points filtered")
        return points

    names = points[name_col].astype("string").str.strip()
    unnamed = names.isna() | (names == "")
    kept = points[unnamed.to_numpy()]

    if logger:
        logger.info(f"Name filter: kept {len(kept):,} of {len(points):,} points ({len(points) - len(kept):,} named)")

    return kept


def prepare_buildings(
    points: gpd.GeoDataFrame,
    id_col: str,
    name_col: Optional[str] = None,
    logger=None,
) -> gpd.GeoDataFrame:
    """
    Filter and trim the building point layer to `building_id` + geometry.

    Raises:
        KeyError: If `id_col` is missing
        ValueError: On NA/duplicate ids or non-point geometries
    """
    if id_col not in points.columns:
        raise KeyError(f"Building layer has no '{id_col}' column")

    kept = filter_unnamed_points(points, name_col, logger)
    kept = ensure_id_dtype(kept, [id_col]).rename(columns={id_col: "building_id"})

    if kept["building_id"].isna().any():
        raise ValueError(f"{int(kept['building_id'].isna().sum())} building points have no id")
    duplicates = kept["building_id"].duplicated()
    if duplicates.any():
        raise ValueError(
            f"{int(duplicates.sum())} duplicate building ids, e.g. "
            f"{kept.loc[duplicates, 'building_id'].head(5).tolist()}"
        )

    buildings = gpd.GeoDataFrame(
        kept[["building_id"]].reset_index(drop=True),
        geometry=list(kept.geometry),
        crs=kept.crs,
    )
    assert_point_geometries(buildings, "building points")
    return buildings


def attach_building_attributes(
    polygons: gpd.GeoDataFrame,
    buildings: pd.DataFrame,
    id_col: str,
    logger=None,
) -> gpd.GeoDataFrame:
    """
    Attach cluster_id and household_size to building polygons by id.

    Inner join: polygons whose id was not carried through clustering are
    dropped (and counted).
    """
    if id_col not in polygons.columns:
        raise KeyError(f"Building polygon layer has no '{id_col}' column")

    geometry_name = polygons.geometry.name
    shapes = ensure_id_dtype(polygons, [id_col]).rename(columns={id_col: "building_id"})
    shapes = shapes[["building_id", geometry_name]]

    attributes = pd.DataFrame(buildings[["building_id", "cluster_id", "household_size", "admin_unit_id"]])
    joined = validate_merge(
        shapes,
        attributes,
        on="building_id",
        how="inner",
        validate="one_to_one",
        context="building polygons x clustered points",
    )
    joined = gpd.GeoDataFrame(joined, geometry=geometry_name, crs=polygons.crs)

    if logger:
        dropped = len(polygons) - len(joined)
        logger.info(f"Building polygons: {len(joined):,} joined, {dropped:,} without a clustered point")

    return joined
