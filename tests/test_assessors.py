"""Tests for the temporal and taxonomic assessors.

Every assessor must:
- report one row per (period, identifier), with 0 (or missing) for
  periods without records
- count each excluded record once, under the first reason that applies
- treat a blank string exactly like a missing value
- leave its input untouched and give the same result when run twice
"""

import numpy as np
import pandas as pd
import pytest

from occbias.assessors import (
    assess_rarity_bias,
    assess_record_number,
    assess_species_id,
    assess_species_number,
)
from occbias.assessors.base import IDENTIFIER_COL, is_missing, prepare_records
from occbias.periods import PERIOD_COL

from conftest import cell_centre, make_records


def value(result, period, ident, column):
    row = result.data[(result.data[PERIOD_COL] == period) & (result.data[IDENTIFIER_COL] == ident)]
    assert len(row) == 1
    return row[column].iloc[0]


# ── Common contract ──────────────────────────────────────────────────────

class TestPrepareRecords:
    """Exclusion bookkeeping shared by every assessor."""

    def test_exclusion_order(self, scenario_periods):
        df = make_records([
            {"year": None, "family": None, "species": None},
            {"year": 1950, "species": None},
            {"year": 1905, "family": "", "species": None},
            {"year": 1905, "species": None},
            {"year": 1905, "species": "Rhagium mordax"},
        ])
        prepared = prepare_records(df, scenario_periods, "family", required=["species", "coordinates"])
        assert prepared.excluded == {
            "missing_year": 1,
            "outside_periods": 1,
            "missing_identifier": 1,
            "missing_species": 1,
            "missing_coordinates": 1,
        }
        assert len(prepared.data) == 0

    def test_is_missing_treats_blank_as_missing(self):
        s = pd.Series(["Rhagium", "", "  ", None, np.nan])
        assert is_missing(s).tolist() == [False, True, True, True, True]

    def test_identifiers_from_full_input(self, scenario_periods):
        df = make_records([
            {"year": 1905, "species": "A a", "family": "Cerambycidae"},
            {"year": 1950, "species": "B b", "family": "Chrysomelidae"},
        ])
        prepared = prepare_records(df, scenario_periods, "family")
        assert prepared.identifiers == ["Cerambycidae", "Chrysomelidae"]

    def test_identifier_not_a_column(self, scenario_records, scenario_periods):
        with pytest.raises(KeyError):
            assess_record_number(scenario_records, scenario_periods, "order")

    @pytest.mark.parametrize("identifier", [None, "", 3])
    def test_identifier_malformed(self, scenario_records, scenario_periods, identifier):
        with pytest.raises(ValueError):
            assess_record_number(scenario_records, scenario_periods, identifier)

    def test_malformed_periods_fatal(self, scenario_records):
        with pytest.raises(ValueError):
            assess_record_number(scenario_records, [(2000, 1990)], "family")


# ── Number of records ────────────────────────────────────────────────────

class TestRecordNumber:
    """Records per period and identifier."""

    def test_scenario(self, scenario_records, scenario_periods):
        result = assess_record_number(scenario_records, scenario_periods, "family")
        assert result.name == "record_number"
        assert result.data["n_records"].tolist() == [1, 2, 1]
        assert result.excluded["outside_periods"] == 1
        assert result.n_used == 4

    def test_empty_periods_reported_as_zero(self, scenario_records):
        periods = [(1900, 1909), (1950, 1959), (1990, 1999)]
        result = assess_record_number(scenario_records, periods, "family")
        assert len(result.data) == 3
        assert value(result, "1950-1959", "Cerambycidae", "n_records") == 0

    def test_full_period_by_identifier_table(self, scenario_periods):
        df = make_records([
            {"year": 1905, "species": "A a", "family": "Cerambycidae"},
            {"year": 2005, "species": "B b", "family": "Chrysomelidae"},
        ])
        result = assess_record_number(df, scenario_periods, "family")
        assert len(result.data) == 6
        assert value(result, "1900-1909", "Chrysomelidae", "n_records") == 0
        assert value(result, "2000-2009", "Chrysomelidae", "n_records") == 1

    def test_period_column_is_ordered(self, scenario_records, scenario_periods):
        data = assess_record_number(scenario_records, scenario_periods, "family").data
        assert data[PERIOD_COL].cat.ordered
        assert list(data[PERIOD_COL].astype(str)) == ["1900-1909", "1990-1999", "2000-2009"]

    def test_used_plus_excluded_is_input(self, scenario_records, scenario_periods):
        df = pd.concat([scenario_records, make_records([{"year": None, "species": "A a"},
                                                        {"year": 1995, "family": "", "species": "A a"}])],
                       ignore_index=True)
        result = assess_record_number(df, scenario_periods, "family")
        assert result.n_used + result.n_excluded == len(df)
        assert result.excluded["missing_identifier"] == 1

    def test_idempotent_and_input_untouched(self, scenario_records, scenario_periods):
        before = scenario_records.copy()
        first = assess_record_number(scenario_records, scenario_periods, "family")
        second = assess_record_number(scenario_records, scenario_periods, "family")
        pd.testing.assert_frame_equal(first.data, second.data)
        pd.testing.assert_frame_equal(scenario_records, before)

    def test_normalized(self, scenario_records, scenario_periods):
        data = assess_record_number(scenario_records, scenario_periods, "family", normalize=True).data
        assert data["n_records_normalized"].tolist() == pytest.approx([0.5, 1.0, 0.5])

    def test_other_identifier(self, scenario_records, scenario_periods):
        result = assess_record_number(scenario_records, scenario_periods, "genus")
        assert set(result.data[IDENTIFIER_COL]) == {"Rhagium", "Leptura", "Monochamus"}
        assert len(result.data) == 9

    def test_empty_input(self, scenario_records, scenario_periods):
        result = assess_record_number(scenario_records.iloc[0:0], scenario_periods, "family")
        assert result.data[PERIOD_COL].astype(str).tolist() == ["1900-1909", "1990-1999", "2000-2009"]
        assert result.data["n_records"].tolist() == [0, 0, 0]
        assert result.n_used == 0

    def test_no_identifier_values(self, scenario_periods):
        df = make_records([{"year": 1995, "species": "Rhagium mordax", "family": None},
                           {"year": 2005, "species": "Rhagium mordax", "family": ""}])
        result = assess_record_number(df, scenario_periods, "family")
        assert len(result.data) == 3
        assert result.data[IDENTIFIER_COL].tolist() == ["all"] * 3
        assert result.data["n_records"].tolist() == [0, 0, 0]
        assert result.excluded["missing_identifier"] == 2


# ── Number of species ────────────────────────────────────────────────────

class TestSpeciesNumber:
    """Distinct species per period and identifier."""

    def test_scenario(self, scenario_records, scenario_periods):
        result = assess_species_number(scenario_records, scenario_periods, "family")
        assert result.data["n_species"].tolist() == [1, 2, 1]

    def test_blank_species_same_as_missing(self, scenario_periods):
        rows = [{"year": 1905, "species": "Rhagium mordax"}, {"year": 1905, "species": "Leptura maculata"}]
        blank = make_records(rows + [{"year": 1905, "species": ""}, {"year": 1995, "species": "   "}])
        missing = make_records(rows + [{"year": 1905, "species": None}, {"year": 1995, "species": None}])
        a = assess_species_number(blank, scenario_periods, "family")
        b = assess_species_number(missing, scenario_periods, "family")
        pd.testing.assert_frame_equal(a.data, b.data)
        assert a.excluded == b.excluded
        assert a.excluded["missing_species"] == 2

    def test_unidentified_records_do_not_change_counts(self, scenario_records, scenario_periods):
        base = assess_species_number(scenario_records, scenario_periods, "family")
        extra = pd.concat([scenario_records, make_records([{"year": 1995, "species": None}] * 3)],
                          ignore_index=True)
        more = assess_species_number(extra, scenario_periods, "family")
        pd.testing.assert_frame_equal(base.data, more.data)
        assert more.excluded["missing_species"] == base.excluded["missing_species"] + 3

    def test_whitespace_variants_are_one_species(self, scenario_periods):
        df = make_records([{"year": 1905, "species": "Rhagium mordax"},
                           {"year": 1905, "species": " Rhagium mordax "}])
        assert assess_species_number(df, scenario_periods, "family").data["n_species"].iloc[0] == 1

    def test_empty_period_zero(self, scenario_records):
        result = assess_species_number(scenario_records, [(1800, 1809), (1900, 1909)], "family")
        assert result.data["n_species"].tolist() == [0, 1]


# ── Taxonomic resolution ─────────────────────────────────────────────────

class TestSpeciesId:
    """Share of records identified to species level."""

    def test_proportion(self, scenario_periods):
        df = make_records([
            {"year": 1905, "species": "Rhagium mordax"},
            {"year": 1905, "species": "Rhagium inquisitor"},
            {"year": 1905, "species": "Leptura maculata"},
            {"year": 1905, "species": ""},
            {"year": 1995, "species": None},
        ])
        result = assess_species_id(df, scenario_periods, "family")
        assert result.name == "species_id"
        assert value(result, "1900-1909", "Cerambycidae", "n_records") == 4
        assert value(result, "1900-1909", "Cerambycidae", "n_identified") == 3
        assert value(result, "1900-1909", "Cerambycidae", "prop_identified") == pytest.approx(0.75)
        assert value(result, "1990-1999", "Cerambycidae", "prop_identified") == 0.0
        assert np.isnan(value(result, "2000-2009", "Cerambycidae", "prop_identified"))

    def test_blank_species_same_as_missing(self, scenario_periods):
        blank = make_records([{"year": 1905, "species": "A a"}, {"year": 1905, "species": ""}])
        missing = make_records([{"year": 1905, "species": "A a"}, {"year": 1905, "species": None}])
        a = assess_species_id(blank, scenario_periods, "family")
        b = assess_species_id(missing, scenario_periods, "family")
        pd.testing.assert_frame_equal(a.data, b.data)
        assert a.data["prop_identified"].iloc[0] == pytest.approx(0.5)

    def test_unidentified_records_are_not_excluded(self, scenario_periods):
        df = make_records([{"year": 1905, "species": None}, {"year": 1905, "species": "A a"}])
        result = assess_species_id(df, scenario_periods, "family")
        assert result.n_used == 2
        assert "missing_species" not in result.excluded

    def test_count_type(self, scenario_records, scenario_periods):
        result = assess_species_id(scenario_records, scenario_periods, "family", type="count")
        assert result.data["n_identified"].tolist() == [1, 2, 1]

    def test_no_identifier_values(self, scenario_periods):
        df = make_records([{"year": 1905, "species": "A a", "family": ""}])
        result = assess_species_id(df, scenario_periods, "family")
        assert result.data["n_records"].tolist() == [0, 0, 0]
        assert result.data["prop_identified"].isna().all()

    def test_invalid_type(self, scenario_records, scenario_periods):
        with pytest.raises(ValueError):
            assess_species_id(scenario_records, scenario_periods, "family", type="percent")

    def test_missing_species_column(self, scenario_records, scenario_periods):
        with pytest.raises(KeyError):
            assess_species_id(scenario_records.drop(columns="species"), scenario_periods, "family")


# ── Rarity bias ──────────────────────────────────────────────────────────

def ranged_species(year, n_species=4):
    """Species i occupies i distinct cells with one record per cell."""
    rows = []
    for i in range(1, n_species + 1):
        for j in range(i):
            x, y = cell_centre(i, j)
            rows.append({"year": year, "species": f"Species{i} sp", "x": x, "y": y})
    return rows


class TestRarityBias:
    """R² of records per species against range size."""

    def test_perfect_fit(self, scenario_periods):
        result = assess_rarity_bias(make_records(ranged_species(1905)), scenario_periods, "family")
        assert result.name == "rarity_bias"
        assert value(result, "1900-1909", "Cerambycidae", "r2") == pytest.approx(1.0)
        assert value(result, "1900-1909", "Cerambycidae", "slope") == pytest.approx(1.0)
        assert value(result, "1900-1909", "Cerambycidae", "n_species") == 4

    def test_records_unrelated_to_range(self, scenario_periods):
        rows = ranged_species(1905)
        x, y = cell_centre(0, 0)
        rows += [{"year": 1905, "species": "Species1 sp", "x": x, "y": y}] * 12
        result = assess_rarity_bias(make_records(rows), scenario_periods, "family")
        assert value(result, "1900-1909", "Cerambycidae", "r2") < 0.5

    def test_too_few_species(self, scenario_periods):
        result = assess_rarity_bias(make_records(ranged_species(1905, n_species=2)), scenario_periods, "family")
        assert np.isnan(value(result, "1900-1909", "Cerambycidae", "r2"))
        assert value(result, "1900-1909", "Cerambycidae", "n_species") == 2

    def test_empty_periods_present(self, scenario_periods):
        result = assess_rarity_bias(make_records(ranged_species(1905)), scenario_periods, "family")
        assert len(result.data) == 3
        assert value(result, "2000-2009", "Cerambycidae", "n_species") == 0
        assert np.isnan(value(result, "2000-2009", "Cerambycidae", "r2"))

    def test_species_details(self, scenario_periods):
        result = assess_rarity_bias(make_records(ranged_species(1905)), scenario_periods, "family")
        details = result.details.set_index("species")
        assert details.loc["Species3 sp", "n_records"] == 3
        assert details.loc["Species3 sp", "range_size"] == 3

    def test_range_size_across_or_within_periods(self, scenario_periods):
        rows = ranged_species(1905)
        x, y = cell_centre(9, 9)
        rows += [{"year": 1995, "species": "Species1 sp", "x": x, "y": y}]
        df = make_records(rows)
        pooled = assess_rarity_bias(df, scenario_periods, "family").details
        per_period = assess_rarity_bias(df, scenario_periods, "family", prev_per_period=True).details
        pick = (pooled["species"] == "Species1 sp") & (pooled[PERIOD_COL] == "1900-1909")
        assert pooled.loc[pick, "range_size"].iloc[0] == 2
        pick = (per_period["species"] == "Species1 sp") & (per_period[PERIOD_COL] == "1900-1909")
        assert per_period.loc[pick, "range_size"].iloc[0] == 1

    def test_requires_coordinates_and_species(self, scenario_periods):
        rows = ranged_species(1905) + [{"year": 1905, "species": "Species9 sp"},
                                      {"year": 1905, "species": ""}]
        result = assess_rarity_bias(make_records(rows), scenario_periods, "family")
        assert result.excluded["missing_species"] == 1
        assert result.excluded["missing_coordinates"] == 1
        assert result.n_used == 10
