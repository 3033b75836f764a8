"""
Tests for anomaly collection, output invariants and CRS helpers.
"""

import geopandas as gpd
import pandas as pd
import pytest

from conftest import make_points
from hamlets.qa import (
    EMPTY_CLUSTERS,
    NON_CONVERGENCE,
    AnomalyReport,
    CRSError,
    align_crs,
    check_hamlet_invariants,
    compute_na_rates,
    safe_reproject,
)


def make_tables(sizes=(2, 3, None), members=(2, 1), populations=(5, 0)):
    buildings = pd.DataFrame({
        "cluster_id": pd.array([1, 1, 2], dtype="Int64"),
        "household_size": pd.array(list(sizes), dtype="Int64"),
    })
    hamlets = pd.DataFrame({
        "cluster_id": pd.array([1, 2, 3], dtype="Int64"),
        "member_count": pd.array(list(members) + [0], dtype="Int64"),
        "population_estimate": pd.array(list(populations) + [0], dtype="Int64"),
    })
    return buildings, hamlets


class TestAnomalyReport:
    """Tests for anomaly bookkeeping."""

    def test_zero_counts_not_recorded(self):
        report = AnomalyReport()
        report.add(EMPTY_CLUSTERS, 0)
        assert len(report) == 0

    def test_counts_summed_per_kind(self):
        report = AnomalyReport()
        report.add(EMPTY_CLUSTERS, 2, ids=["4", "5"])
        report.add(EMPTY_CLUSTERS, 1, ids=["9"])
        report.add(NON_CONVERGENCE, 1)
        assert report.count(EMPTY_CLUSTERS) == 3
        assert report.kinds() == [EMPTY_CLUSTERS, EMPTY_CLUSTERS, NON_CONVERGENCE]

    def test_records_cap_ids(self):
        report = AnomalyReport()
        report.add(EMPTY_CLUSTERS, 30, ids=[str(i) for i in range(30)])
        record = report.to_records(max_ids=5)[0]
        assert record["count"] == 30
        assert record["ids"] == ["0", "1", "2", "3", "4"]

    def test_extend(self):
        first, second = AnomalyReport(), AnomalyReport()
        second.add(NON_CONVERGENCE, 1)
        first.extend(second)
        assert first.kinds() == [NON_CONVERGENCE]


class TestCheckHamletInvariants:
    """Member counts and population sums agree with the buildings."""

    def test_consistent_tables_pass(self, logger):
        buildings, hamlets = make_tables()
        stats = check_hamlet_invariants(buildings, hamlets, logger)
        assert stats["passed"] is True
        assert stats["total_members"] == 3

    def test_member_count_mismatch_fails(self):
        buildings, hamlets = make_tables(members=(2, 2))
        stats = check_hamlet_invariants(buildings, hamlets)
        assert stats["passed"] is False
        assert stats["member_count_mismatches"] == 1

    def test_population_mismatch_fails(self):
        buildings, hamlets = make_tables(populations=(6, 0))
        stats = check_hamlet_invariants(buildings, hamlets)
        assert stats["passed"] is False
        assert stats["population_mismatches"] == 1

    def test_household_size_below_one_fails(self):
        buildings, hamlets = make_tables(sizes=(0, 5, None))
        stats = check_hamlet_invariants(buildings, hamlets)
        assert stats["n_below_one"] == 1
        assert stats["passed"] is False


class TestCRSHelpers:
    """Layers are aligned with to_crs only."""

    def test_reproject_requires_crs(self):
        with pytest.raises(CRSError):
            safe_reproject(make_points([(0, 0)]), "EPSG:3857")

    def test_reproject_noop_when_same(self):
        points = make_points([(0, 0)], crs="EPSG:4326")
        assert safe_reproject(points, "EPSG:4326") is points

    def test_align_skips_layers_without_crs(self):
        points = make_points([(0, 0)])
        reference = make_points([(0, 0)], crs="EPSG:4326")
        assert align_crs(points, reference) is points

    def test_align_reprojects(self):
        points = make_points([(1, 1)], crs="EPSG:4326")
        reference = gpd.GeoDataFrame(geometry=[], crs="EPSG:3857")
        assert align_crs(points, reference).crs == reference.crs


def test_na_rates_skip_geometry():
    points = make_points([(0, 0), (1, 1)], hh_size=pd.array([1, None], dtype="Int64"))
    assert compute_na_rates(points) == {"building_id": 0.0, "hh_size": 0.5}
