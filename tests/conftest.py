"""
Shared fixtures: synthetic building points, administrative polygons, logger.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box

from hamlets.admin import build_admin_units
from hamlets.logging_utils import JSONLLogger


def make_points(coords, ids=None, crs=None, **columns) -> gpd.GeoDataFrame:
    """Point GeoDataFrame with a string building_id column."""
    coords = list(coords)
    if ids is None:
        ids = [f"b{i:04d}" for i in range(len(coords))]
    data = {"building_id": pd.array([str(i) for i in ids], dtype="string"), **columns}
    return gpd.GeoDataFrame(data, geometry=[Point(x, y) for x, y in coords], crs=crs)


def make_units(boxes, ids, names=None, crs=None) -> gpd.GeoDataFrame:
    """Polygon GeoDataFrame with admin_unit_id / admin_name columns."""
    names = names or [f"Unit {i}" for i in ids]
    return gpd.GeoDataFrame(
        {"admin_unit_id": list(ids), "admin_name": names},
        geometry=[box(*b) for b in boxes],
        crs=crs,
    )


@pytest.fixture
def logger(tmp_path):
    """JSONL logger writing into a temporary directory."""
    log = JSONLLogger("test_run", log_dir=tmp_path / "logs")
    yield log
    log.close()


@pytest.fixture
def two_units():
    """Two adjacent 10x10 units: A on x in [0, 10], B on x in [10, 20]."""
    return make_units([(0, 0, 10, 10), (10, 0, 20, 10)], ["A", "B"])


@pytest.fixture
def two_unit_statistics():
    """Statistics for A (λ = 1000 / 5 = 200) and B (λ = 300 / 3 = 100)."""
    return pd.DataFrame({
        "admin_unit_id": ["A", "B"],
        "mean_household_size": [5.0, 3.0],
        "total_population": [1000, 300],
    })


@pytest.fixture
def two_unit_admin(two_units, two_unit_statistics, logger):
    """AdminReference built from the two adjacent units."""
    return build_admin_units(two_units, two_unit_statistics, logger)


@pytest.fixture
def village_points():
    """510 points spread over both units, seeded."""
    rng = np.random.default_rng(7)
    xs = rng.uniform(0.5, 19.5, 510)
    ys = rng.uniform(0.5, 9.5, 510)
    return make_points(zip(xs, ys))
