"""
Module: report.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Renders the assessment results into a single markdown report: one
section per assessor with its chart (saved as PNG next to the report),
its summary table, a short narrative and the number of records it had to
exclude, so that the effect of filtering itself stays visible.

Output:
- results/bias_assessment/bias_report.md
- results/bias_assessment/figures/<assessor>.png
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import matplotlib.pyplot as plt
import pandas as pd

from .assessors.base import IDENTIFIER_COL, AssessmentResult
from .periods import PERIOD_COL

logger = logging.getLogger(__name__)

EXCLUSION_LABELS = {
    "missing_year": "no year",
    "outside_periods": "year outside all periods",
    "missing_identifier": "no grouping identifier",
    "missing_species": "no species name",
    "missing_coordinates": "no coordinates",
    "outside_mask": "outside the region mask",
    "missing_environment": "no environmental data",
}


# ----------------------------------------------------------------------
# Narrative helpers
# ----------------------------------------------------------------------

def describe_trend(data: pd.DataFrame, value_col: str, what: str, fmt: str = "{:.0f}") -> str:
    """
    One sentence per identifier comparing the first and last periods with
    data, and naming the period with the highest value.
    """
    sentences = []
    for ident, sub in data.groupby(IDENTIFIER_COL, sort=True):
        values = sub[[PERIOD_COL, value_col]].dropna()
        values = values[values[value_col] != 0] if value_col.startswith("n_") else values
        if values.empty:
            sentences.append(f"{ident}: no {what} in any period.")
            continue
        first, last = values.iloc[0], values.iloc[-1]
        peak = values.loc[values[value_col].astype(float).idxmax()]
        sentences.append(
            f"{ident}: {what} went from {fmt.format(first[value_col])} in {first[PERIOD_COL]} "
            f"to {fmt.format(last[value_col])} in {last[PERIOD_COL]}, "
            f"highest in {peak[PERIOD_COL]} ({fmt.format(peak[value_col])})."
        )
    return " ".join(sentences)


def describe_exclusions(result: AssessmentResult) -> str:
    parts = [f"{n} {EXCLUSION_LABELS.get(reason, reason)}"
             for reason, n in result.excluded.items() if n]
    if not parts:
        return f"All {result.n_used} records in the periods were used."
    return f"{result.n_used} records used; excluded: " + ", ".join(parts) + "."


NARRATIVES = {
    "record_number": lambda r: describe_trend(r.data, "n_records", "the number of records"),
    "species_number": lambda r: describe_trend(r.data, "n_species", "the number of species"),
    "species_id": lambda r: describe_trend(r.data, "prop_identified",
                                           "the proportion identified to species", "{:.2f}"),
    "rarity_bias": lambda r: describe_trend(r.data, "r2", "R² of records on range size", "{:.2f}") + (
        " Low values mean the number of records is poorly explained by range size."),
    "spatial_coverage": lambda r: describe_trend(r.data, "prop_cells_sampled",
                                                 "the share of grid cells sampled", "{:.2f}"),
    "spatial_bias": lambda r: describe_trend(r.data, "nni", "the nearest neighbour index", "{:.2f}") + (
        " Values below the random-sampling band indicate clustered recording."),
    "environmental_bias": lambda r: (
        "Records are shown over the environmental space of the region (grey). "
        "Periods whose points cover only part of the background were sampled in "
        "a restricted set of conditions."),
}


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------

@dataclass
class Section:
    title: str
    text: str
    result: Optional[AssessmentResult] = None


class BiasReport:
    """Collects sections and writes them as markdown with PNG figures."""

    def __init__(self, title: str, output_dir):
        self.title = title
        self.output_dir = Path(output_dir)
        self.sections: List[Section] = []

    def add_text(self, title: str, text: str) -> None:
        self.sections.append(Section(title=title, text=text))

    def add_result(self, title: str, result: AssessmentResult, text: Optional[str] = None) -> None:
        if text is None:
            narrate = NARRATIVES.get(result.name)
            text = narrate(result) if narrate else ""
        self.sections.append(Section(title=title, text=text, result=result))

    def _save_figure(self, result: AssessmentResult, figures_dir: Path) -> Optional[Path]:
        if result.figure is None:
            return None
        out_file = figures_dir / f"{result.name}.png"
        result.figure.savefig(out_file, dpi=150, bbox_inches="tight")
        plt.close(result.figure)
        return out_file

    def write(self, filename: str = "bias_report.md") -> Path:
        figures_dir = self.output_dir / "figures"
        figures_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename

        with open(path, "w", encoding="utf-8") as report:
            report.write(f"# {self.title}\n\n")
            for section in self.sections:
                report.write(f"## {section.title}\n\n")
                if section.text:
                    report.write(section.text + "\n\n")
                result = section.result
                if result is None:
                    continue

                figure = self._save_figure(result, figures_dir)
                if figure is not None:
                    report.write(f"![{section.title}](figures/{figure.name})\n\n")

                report.write("```\n")
                report.write(result.data.to_string(index=False))
                report.write("\n```\n\n")
                report.write(f"*{describe_exclusions(result)}*\n\n")

        logger.info("Report written to %s", path)
        return path
