"""
Tests for the administrative reference table (boundaries x statistics).
"""

import pandas as pd
import pytest

from conftest import make_units
from hamlets.admin import build_admin_units


class TestBuildAdminUnits:
    """Tests for the statistics join."""

    def test_household_rate_is_population_over_mean_size(self, two_unit_admin):
        assert two_unit_admin.household_rates() == {"A": 200.0, "B": 100.0}

    def test_all_units_joined(self, two_unit_admin):
        assert len(two_unit_admin.units) == 2
        assert two_unit_admin.missing_statistics == []
        assert two_unit_admin.orphan_statistics == []

    def test_unit_without_statistics_reported_and_kept_in_boundaries(self, two_units, logger):
        stats = pd.DataFrame({
            "admin_unit_id": ["A"],
            "mean_household_size": [4.0],
            "total_population": [400],
        })
        admin = build_admin_units(two_units, stats, logger)
        assert admin.units["admin_unit_id"].tolist() == ["A"]
        assert admin.missing_statistics == ["B"]
        assert admin.boundaries["admin_unit_id"].tolist() == ["A", "B"]

    def test_orphan_statistics_dropped(self, two_units, two_unit_statistics, logger):
        stats = pd.concat([
            two_unit_statistics,
            pd.DataFrame({"admin_unit_id": ["Q"], "mean_household_size": [2.0], "total_population": [10]}),
        ])
        admin = build_admin_units(two_units, stats, logger)
        assert admin.orphan_statistics == ["Q"]
        assert set(admin.units["admin_unit_id"]) == {"A", "B"}

    def test_unusable_statistics_treated_as_missing(self, two_units, logger):
        stats = pd.DataFrame({
            "admin_unit_id": ["A", "B"],
            "mean_household_size": [0.0, 3.0],
            "total_population": [100, 30],
        })
        admin = build_admin_units(two_units, stats, logger)
        assert admin.missing_statistics == ["A"]
        assert admin.household_rates() == {"B": 10.0}

    def test_duplicate_statistics_rows_raise(self, two_units, two_unit_statistics, logger):
        stats = pd.concat([two_unit_statistics, two_unit_statistics.iloc[[0]]])
        with pytest.raises(ValueError):
            build_admin_units(two_units, stats, logger)

    def test_custom_column_names(self, logger):
        units = make_units([(0, 0, 1, 1)], ["7"]).rename(columns={"admin_unit_id": "code", "admin_name": "nm"})
        stats = pd.DataFrame({"kode": ["7"], "hh": [4.0], "pop": [40]})
        admin = build_admin_units(
            units, stats, logger,
            boundary_id_col="code", boundary_name_col="nm",
            stats_id_col="kode", mean_household_size_col="hh", population_col="pop",
        )
        assert admin.household_rates() == {"7": 10.0}
        assert admin.units["admin_name"].tolist() == ["Unit 7"]

    def test_numeric_ids_become_strings(self, logger):
        """Float ids from an attribute table keep their integer text."""
        units = make_units([(0, 0, 1, 1)], [3201.0])
        stats = pd.DataFrame({"admin_unit_id": [3201], "mean_household_size": [4.0], "total_population": [8]})
        admin = build_admin_units(units, stats, logger)
        assert admin.units["admin_unit_id"].tolist() == ["3201"]

    def test_zero_population_gives_zero_rate(self, two_units, logger):
        stats = pd.DataFrame({
            "admin_unit_id": ["A", "B"],
            "mean_household_size": [4.0, 4.0],
            "total_population": [0, 8],
        })
        admin = build_admin_units(two_units, stats, logger)
        assert admin.household_rates()["A"] == 0.0

    def test_missing_statistics_column_raises(self, two_units, logger):
        stats = pd.DataFrame({"admin_unit_id": ["A"], "total_population": [1]})
        with pytest.raises(KeyError):
            build_admin_units(two_units, stats, logger)
