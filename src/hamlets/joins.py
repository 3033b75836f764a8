"""
Point-in-polygon matching.

Every point→polygon assignment in the project (buildings to administrative
units, hamlet centroids to administrative units) goes through this shared
utility:
- boundary points count as contained (`intersects`)
- a point inside several overlapping polygons takes the first polygon in the
  polygon layer's order
- a point inside none gets NA, never a nearest-polygon fallback
- match counts are returned for logging
"""

from typing import Dict, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from hamlets.qa import align_crs


class SpatialJoinError(Exception):
    """Raised when a polygon layer cannot be used for matching."""
    pass


def match_points_to_polygons(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    polygon_id_col: str = "admin_unit_id",
) -> Tuple[pd.Series, Dict]:
    """
    Return the id of the polygon containing each point.

    Args:
        points: GeoDataFrame of points
        polygons: GeoDataFrame of polygons carrying `polygon_id_col`
        polygon_id_col: Column holding the polygon id

    Returns:
        Tuple of (nullable "string" Series aligned to points.index,
        stats dictionary)

    Raises:
        SpatialJoinError: If the id column is missing or holds NA values
    """
    if polygon_id_col not in polygons.columns:
        raise SpatialJoinError(f"Polygon layer has no '{polygon_id_col}' column")
    if polygons[polygon_id_col].isna().any():
        raise SpatialJoinError(f"Polygon layer has NA values in '{polygon_id_col}'")

    polygons = align_crs(polygons, points, "polygons")
    crs = points.crs if (points.crs is not None and polygons.crs is not None) else None

    # Positional keys keep the join independent of either layer's index
    pts = gpd.GeoDataFrame(
        {"_point_pos": np.arange(len(points))},
        geometry=list(points.geometry),
        crs=crs,
    )
    candidates = gpd.GeoDataFrame(
        {
            "_polygon_id": polygons[polygon_id_col].astype("string").to_numpy(),
            "_polygon_order": np.arange(len(polygons)),
        },
        geometry=list(polygons.geometry),
        crs=crs,
    )

    stats = {
        "total_points": len(points),
        "matched": 0,
        "unmatched": len(points),
        "multi_match": 0,
        "match_rate": None,
    }

    result = pd.Series(pd.NA, index=points.index, dtype="string")
    if len(points) == 0 or len(polygons) == 0:
        return result, stats

    joined = gpd.sjoin(pts, candidates, how="inner", predicate="intersects")
    joined = joined.sort_values(["_point_pos", "_polygon_order"], kind="mergesort")

    duplicated = joined["_point_pos"].duplicated(keep="first")
    first = joined[~duplicated]

    result.iloc[first["_point_pos"].to_numpy()] = first["_polygon_id"].to_numpy()

    stats["matched"] = len(first)
    stats["unmatched"] = len(points) - len(first)
    stats["multi_match"] = int(joined.loc[duplicated, "_point_pos"].nunique())
    stats["match_rate"] = len(first) / len(points)

    return result, stats


def log_join_stats(stats: Dict, context: str = "", logger=None) -> None:
    """
    Log point-in-polygon statistics.

    Args:
        stats: Statistics dictionary from match_points_to_polygons
        context: Which layer was matched (e.g. "buildings")
        logger: Optional logger instance (uses print if None)
    """
    label = f" [{context}]" if context else ""
    msg = (
        f"Point-in-polygon{label}: "
        f"{stats['total_points']} total, "
        f"{stats['matched']} matched, "
        f"{stats['unmatched']} unmatched"
    )
    if stats.get("multi_match"):
        msg += f", {stats['multi_match']} inside overlapping polygons (first kept)"

    if logger:
        logger.info(msg)
        logger.log_join_stats({"context": context, **stats})
    else:
        print(msg)
