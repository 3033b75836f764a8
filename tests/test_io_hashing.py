"""
Tests for atomic writes, metadata sidecars and cache validation.
"""

import geopandas as gpd
import pandas as pd
import pyogrio
import pytest
from shapely.geometry import Point

from hamlets.hashing import hash_dict, hash_file, validate_cache, write_metadata_sidecar
from hamlets.io_utils import atomic_write_gdf, atomic_write_json, read_df, read_gdf, read_json


def plain_points(n, crs="EPSG:4326", **columns):
    """Point layer with plain object/int columns, as the export formatter produces."""
    data = {"bldg_id": [str(i) for i in range(n)], **columns}
    return gpd.GeoDataFrame(data, geometry=[Point(i, i) for i in range(n)], crs=crs)


class TestAtomicWrites:
    """Outputs appear complete or not at all."""

    def test_shapefile_parts_written_without_leftovers(self, tmp_path):
        target = tmp_path / "hamlets.shp"
        atomic_write_gdf(plain_points(2), target)
        names = sorted(p.name for p in tmp_path.iterdir())
        assert "hamlets.shp" in names
        assert "hamlets.dbf" in names
        assert not any(n.startswith(".") for n in names)

    def test_geopackage_replaces_existing(self, tmp_path):
        target = tmp_path / "hamlets.gpkg"
        atomic_write_gdf(plain_points(1), target)
        atomic_write_gdf(plain_points(3), target)
        assert len(read_gdf(target)) == 3

    def test_geopackage_layer_named_after_target(self, tmp_path):
        """The staging file name never leaks into the layer name."""
        target = tmp_path / "empirical_hamlets.gpkg"
        atomic_write_gdf(plain_points(2), target)
        layers = [name for name, _ in pyogrio.list_layers(target)]
        assert layers == ["empirical_hamlets"]
        assert not any(p.name.startswith(".") for p in tmp_path.iterdir())

    def test_unsupported_geo_format(self, tmp_path):
        with pytest.raises(ValueError):
            atomic_write_gdf(plain_points(1), tmp_path / "hamlets.kml")

    def test_read_missing_geo_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_gdf(tmp_path / "nothing.shp")

    def test_json_written(self, tmp_path):
        atomic_write_json({"k": 1}, tmp_path / "meta.json")
        assert read_json(tmp_path / "meta.json") == {"k": 1}


class TestHashing:
    """Hashes used for provenance."""

    def test_hash_dict_ignores_key_order(self):
        assert hash_dict({"a": 1, "b": 2}) == hash_dict({"b": 2, "a": 1})

    def test_hash_dict_sees_value_change(self):
        assert hash_dict({"random_seed": 123}) != hash_dict({"random_seed": 124})

    def test_shapefile_hash_covers_attribute_table(self, tmp_path):
        target = tmp_path / "pts.shp"
        layer = plain_points(1)
        layer["hh_size"] = [3]
        atomic_write_gdf(layer, target)
        before = hash_file(target)
        layer["hh_size"] = [4]
        atomic_write_gdf(layer, target)
        assert hash_file(target) != before

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            hash_file(tmp_path / "none.csv")


class TestValidateCache:
    """Cache hits require the same config and inputs."""

    @pytest.fixture
    def cached(self, tmp_path):
        stats = tmp_path / "stats.csv"
        stats.write_text("admin_id,population\nA,10\n", encoding="utf-8")
        output = tmp_path / "hamlets.csv"
        output.write_text("cluster_id\n1\n", encoding="utf-8")
        inputs = {"statistics": str(stats)}
        config = {"clustering": {"random_seed": 123}}
        write_metadata_sidecar(output, inputs, config, run_id="r1", metadata_dir=tmp_path / "meta")
        return output, inputs, config, tmp_path / "meta"

    def test_hit(self, cached):
        output, inputs, config, meta = cached
        assert validate_cache(output, inputs, config, metadata_dir=meta) is True

    def test_config_change_misses(self, cached):
        output, inputs, _, meta = cached
        assert validate_cache(output, inputs, {"clustering": {"random_seed": 1}}, metadata_dir=meta) is False

    def test_input_change_misses(self, cached):
        output, inputs, config, meta = cached
        with open(inputs["statistics"], "a", encoding="utf-8") as f:
            f.write("B,20\n")
        assert validate_cache(output, inputs, config, metadata_dir=meta) is False

    def test_missing_output_misses(self, cached):
        output, inputs, config, meta = cached
        output.unlink()
        assert validate_cache(output, inputs, config, metadata_dir=meta) is False


class TestReadDf:
    """Statistics tables keep their id column as text."""

    def test_csv_ids_stay_text(self, tmp_path):
        path = tmp_path / "stats.csv"
        path.write_text("admin_id,population\n007,12\n", encoding="utf-8")
        df = read_df(path, string_columns=["admin_id"])
        assert df["admin_id"].tolist() == ["007"]
        assert df["population"].tolist() == [12]

    def test_parquet_ids_become_string(self, tmp_path):
        path = tmp_path / "stats.parquet"
        pd.DataFrame({"admin_id": [3201], "population": [5]}).to_parquet(path)
        df = read_df(path, string_columns=["admin_id"])
        assert df["admin_id"].tolist() == ["3201"]

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "stats.xlsx"
        path.write_bytes(b"")
        with pytest.raises(ValueError):
            read_df(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_df(tmp_path / "stats.csv")
