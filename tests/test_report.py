"""Tests for occbias.report and occbias.plotting: rendering assessment results."""

import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from occbias.assessors import assess_record_number, assess_species_id
from occbias.assessors.base import AssessmentResult
from occbias.plotting import plot_environment, plot_rasters, plot_trend
from occbias.report import BiasReport, describe_exclusions, describe_trend


class TestNarrative:
    """Short text generated from result tables."""

    def test_describe_trend(self, scenario_records, scenario_periods):
        result = assess_record_number(scenario_records, scenario_periods, "family")
        text = describe_trend(result.data, "n_records", "the number of records")
        assert text.startswith("Cerambycidae: the number of records went from 1 in 1900-1909 to 1 in 2000-2009")
        assert "highest in 1990-1999 (2)" in text

    def test_describe_trend_without_data(self, scenario_records):
        result = assess_record_number(scenario_records, [(1800, 1809)], "family")
        assert describe_trend(result.data, "n_records", "records") == "Cerambycidae: no records in any period."

    def test_describe_exclusions(self, scenario_records, scenario_periods):
        result = assess_record_number(scenario_records, scenario_periods, "family")
        assert describe_exclusions(result) == "4 records used; excluded: 1 year outside all periods."

    def test_nothing_excluded(self):
        result = AssessmentResult(name="x", data=pd.DataFrame(), excluded={"missing_year": 0}, n_used=7)
        assert describe_exclusions(result) == "All 7 records in the periods were used."


class TestBiasReport:
    """Markdown report with one PNG per assessment."""

    def test_write(self, scenario_records, scenario_periods, tmp_path):
        report = BiasReport("Bias assessment", tmp_path / "out")
        report.add_text("Dataset", "Five synthetic records.")
        report.add_result("Number of records", assess_record_number(scenario_records, scenario_periods, "family"))
        report.add_result("Taxonomic resolution", assess_species_id(scenario_records, scenario_periods, "family"),
                          text="Custom text.")
        path = report.write()

        text = path.read_text(encoding="utf-8")
        assert path.name == "bias_report.md"
        assert text.startswith("# Bias assessment")
        assert "## Dataset\n\nFive synthetic records." in text
        assert "![Number of records](figures/record_number.png)" in text
        assert "Custom text." in text
        assert "1 year outside all periods" in text
        assert (tmp_path / "out" / "figures" / "record_number.png").exists()
        assert (tmp_path / "out" / "figures" / "species_id.png").exists()

    def test_result_without_figure(self, tmp_path):
        data = pd.DataFrame({"period": ["1900-1909"], "identifier": ["X"], "n_records": [3]})
        report = BiasReport("Report", tmp_path)
        report.add_result("Plain", AssessmentResult(name="plain", data=data, n_used=3))
        text = report.write("plain.md").read_text(encoding="utf-8")
        assert "![" not in text
        assert "n_records" in text


class TestPlotting:
    """Chart functions return figures without saving them."""

    def test_plot_trend(self, scenario_records, scenario_periods):
        data = assess_record_number(scenario_records, scenario_periods, "family").data
        fig = plot_trend(data, "n_records", "Records", "Records per period")
        assert isinstance(fig, Figure)
        assert [t.get_text() for t in fig.axes[0].get_xticklabels()] == ["1900-1909", "1990-1999", "2000-2009"]

    def test_plot_rasters(self, mask):
        rasters = {"a": np.ones((10, 10)), "b": np.full((10, 10), np.nan)}
        fig = plot_rasters(rasters, (500_000, 600_000, 6_500_000, 6_600_000), mask=mask, title="t")
        assert isinstance(fig, Figure)

    def test_plot_environment(self):
        scores = pd.DataFrame({
            "period": pd.Categorical(["1900-1909", "1990-1999"], ordered=True),
            "identifier": ["X", "X"],
            "PC1": [0.1, -0.2],
            "PC2": [0.3, 0.0],
        })
        background = pd.DataFrame({"PC1": [0.0, 1.0, -1.0], "PC2": [0.5, -0.5, 0.0]})
        fig = plot_environment(scores, background, "PC1", "PC2", explained=np.array([0.6, 0.3]))
        assert "PC1 (60.0%)" == fig.axes[0].get_xlabel()

    def test_plot_environment_without_records(self):
        scores = pd.DataFrame(columns=["period", "identifier", "PC1", "PC2"])
        background = pd.DataFrame({"PC1": [0.0, 1.0], "PC2": [0.5, -0.5]})
        assert isinstance(plot_environment(scores, background, "PC1", "PC2"), Figure)


@pytest.mark.parametrize("name", ["record_number", "species_number", "species_id", "rarity_bias",
                                  "spatial_coverage", "spatial_bias", "environmental_bias"])
def test_every_assessor_has_a_narrative(name):
    from occbias.report import NARRATIVES
    assert name in NARRATIVES
