"""
Tests for building layer preparation and export formatting.
"""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from conftest import make_points
from hamlets.buildings import attach_building_attributes, filter_unnamed_points, prepare_buildings
from hamlets.exports import format_buildings_for_export, format_hamlets_for_export


class TestFilterUnnamedPoints:
    """Named points are recognised places and are not clustered."""

    def test_named_points_dropped(self):
        points = make_points([(0, 0), (1, 1), (2, 2), (3, 3)], name=["Masjid", None, "  ", ""])
        kept = filter_unnamed_points(points, "name")
        assert kept["building_id"].tolist() == ["b0001", "b0002", "b0003"]

    def test_missing_name_column_keeps_all(self, logger):
        points = make_points([(0, 0), (1, 1)])
        assert len(filter_unnamed_points(points, "name", logger)) == 2

    def test_no_name_column_configured(self):
        points = make_points([(0, 0)], name=["Pasar"])
        assert len(filter_unnamed_points(points, None)) == 1


class TestPrepareBuildings:
    """Tests for trimming the point layer."""

    def test_renames_and_trims(self):
        points = make_points([(0, 0), (1, 1)], ids=["x", "y"], name=[None, None], height=[3, 4])
        points = points.rename(columns={"building_id": "bldg_id"})
        buildings = prepare_buildings(points, "bldg_id", "name")
        assert list(buildings.columns) == ["building_id", "geometry"]
        assert buildings["building_id"].tolist() == ["x", "y"]
        assert str(buildings["building_id"].dtype) == "string"

    def test_float_ids_keep_integer_text(self):
        points = gpd.GeoDataFrame({"fid": [12.0, 13.0]}, geometry=make_points([(0, 0), (1, 1)]).geometry)
        buildings = prepare_buildings(points, "fid")
        assert buildings["building_id"].tolist() == ["12", "13"]

    def test_index_reset_after_filter(self):
        points = make_points([(0, 0), (1, 1), (2, 2)], name=["Named", None, None])
        buildings = prepare_buildings(points, "building_id", "name")
        assert list(buildings.index) == [0, 1]

    def test_duplicate_ids_raise(self):
        points = make_points([(0, 0), (1, 1)], ids=["a", "a"])
        with pytest.raises(ValueError, match="duplicate"):
            prepare_buildings(points, "building_id")

    def test_missing_id_raises(self):
        points = make_points([(0, 0), (1, 1)])
        points.loc[1, "building_id"] = None
        with pytest.raises(ValueError):
            prepare_buildings(points, "building_id")

    def test_unknown_id_column_raises(self):
        with pytest.raises(KeyError):
            prepare_buildings(make_points([(0, 0)]), "osm_id")

    def test_polygon_geometry_rejected(self):
        shapes = gpd.GeoDataFrame({"building_id": ["a"]}, geometry=[box(0, 0, 1, 1)])
        with pytest.raises(ValueError, match="non-Point"):
            prepare_buildings(shapes, "building_id")


class TestAttachBuildingAttributes:
    """Polygons receive attributes from their clustered point."""

    @pytest.fixture
    def clustered(self):
        points = make_points([(0, 0), (5, 5)], ids=["1", "2"])
        points["cluster_id"] = pd.array([1, 2], dtype="Int64")
        points["household_size"] = pd.array([4, None], dtype="Int64")
        points["admin_unit_id"] = pd.array(["A", None], dtype="string")
        return points

    def test_inner_join_by_id(self, clustered, logger):
        polygons = gpd.GeoDataFrame(
            {"bldg_id": [2, 1, 9]},
            geometry=[box(5, 5, 6, 6), box(0, 0, 1, 1), box(9, 9, 10, 10)],
        )
        joined = attach_building_attributes(polygons, clustered, "bldg_id", logger)
        assert len(joined) == 2
        by_id = joined.set_index("building_id")
        assert by_id.loc["1", "cluster_id"] == 1
        assert by_id.loc["1", "household_size"] == 4
        assert pd.isna(by_id.loc["2", "household_size"])
        assert by_id.loc["2", "geometry"].geom_type == "Polygon"

    def test_duplicate_polygon_ids_raise(self, clustered):
        polygons = gpd.GeoDataFrame({"bldg_id": ["1", "1"]}, geometry=[box(0, 0, 1, 1), box(0, 0, 2, 2)])
        with pytest.raises(ValueError):
            attach_building_attributes(polygons, clustered, "bldg_id")


class TestExportFormatting:
    """Column renames for the published layers."""

    def test_hamlet_columns(self):
        hamlets = gpd.GeoDataFrame(
            {
                "cluster_id": pd.array([1], dtype="Int64"),
                "member_count": pd.array([3], dtype="Int64"),
                "population_estimate": pd.array([12], dtype="Int64"),
                "n_unsized": pd.array([0], dtype="Int64"),
                "admin_unit_id": pd.array(["A"], dtype="string"),
                "member_admin_unit_id": pd.array(["B"], dtype="string"),
                "admin_mismatch": [True],
            },
            geometry=make_points([(1, 1)]).geometry,
        )
        out = format_hamlets_for_export(hamlets)
        assert list(out.columns) == [
            "cluster_id", "size", "pop_est", "n_unsized", "admin_id", "mem_admin", "admin_diff", "geometry",
        ]
        assert out["admin_diff"].tolist() == [1]
        assert all(len(c) <= 10 for c in out.columns)

    def test_building_columns_keep_nulls(self):
        buildings = make_points([(0, 0)], ids=["7"])
        buildings["admin_unit_id"] = pd.array([None], dtype="string")
        buildings["cluster_id"] = pd.array([2], dtype="Int64")
        buildings["household_size"] = pd.array([None], dtype="Int64")
        out = format_buildings_for_export(buildings)
        assert list(out.columns) == ["bldg_id", "admin_id", "cluster_id", "hh_size", "geometry"]
        assert pd.isna(out["hh_size"].iloc[0])
