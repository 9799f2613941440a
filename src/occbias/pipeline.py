"""
Module: pipeline.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Runs the full exploratory bias assessment of a GBIF occurrence download:

1. Load the occurrence file (DwC-A ZIP, tab-separated or CSV export) and
   apply the optional quality filters.
2. Write the textual summary report and validate the dataset.
3. Bin the records into periods (decades 1900-2019 by default).
4. Run the assessors:
   - number of records
   - number of species
   - taxonomic resolution (proportion identified to species)
   - rarity bias (R2 of records on range size)
   - spatial coverage (gridded, inside the boundary mask)
   - spatial bias (nearest neighbour index against random sampling)
   - environmental bias (PCA of covariates against the background)
5. Write every summary table as CSV and render the markdown report.

Notes:
The spatial assessors are skipped when the boundary file is missing and the
environmental assessor when the covariate raster is missing; the report
states which were skipped. No assessor result is a correction: the output
documents bias, it does not remove it.

Inputs (defaults from occbias.config):
- data/raw/GBIF_CERAMBYCIDAE_SE.zip
- data/external/sweden_boundary.gpkg
- data/external/worldclim_bio_sweden.tif

Outputs:
- results/bias_assessment/bias_report.md (+ figures/)
- results/bias_assessment/tables/<assessor>.csv
- data/filtered/GBIF_CERAMBYCIDAE_SE_summary_report.txt
- logs/bias_assessment/bias_assessment_<timestamp>.log
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import config
from .assessors import (
    assess_environmental_bias,
    assess_rarity_bias,
    assess_record_number,
    assess_spatial_bias,
    assess_spatial_coverage,
    assess_species_id,
    assess_species_number,
    extract_environment,
    sample_background,
)
from .assessors.base import AssessmentResult
from .geo import load_boundary
from .loader import apply_quality_filters, load_occurrences, write_summary_report
from .periods import make_periods
from .report import BiasReport
from .utils import cast_int_columns, log, rel, setup_logging
from .validate import validate_occurrences

logger = logging.getLogger(__name__)

COUNT_COLUMNS = ["n_records", "n_species", "n_identified", "n_cells_sampled", "n_points"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="occbias",
        description="Exploratory bias assessment of GBIF occurrence data.",
    )
    parser.add_argument("--input", type=Path, default=config.OCCURRENCE_FILE,
                        help="GBIF occurrence file (DwC-A ZIP, .txt/.tsv or .csv)")
    parser.add_argument("--boundary", type=Path, default=config.BOUNDARY_FILE,
                        help="Boundary polygon layer used as region mask")
    parser.add_argument("--boundary-name", default=config.BOUNDARY_NAME,
                        help=f"Value of {config.BOUNDARY_NAME_COL} selecting the region (empty keeps all features)")
    parser.add_argument("--env-raster", type=Path, default=config.ENV_RASTER_FILE,
                        help="Multi-band covariate raster for the environmental assessment")
    parser.add_argument("--output", type=Path, default=config.RESULTS_DIR,
                        help="Directory for the report, figures and tables")
    parser.add_argument("--summary-report", type=Path, default=config.SUMMARY_REPORT_FILE,
                        help="Plain-text summary of the loaded dataset")
    parser.add_argument("--identifier", default=config.IDENTIFIER,
                        help="Column the results are grouped by (e.g. family, genus)")
    parser.add_argument("--res", type=float, default=config.GRID_RES,
                        help="Grid resolution in metres")
    parser.add_argument("--start", type=int, default=config.PERIOD_START, help="First year of the first period")
    parser.add_argument("--end", type=int, default=config.PERIOD_END, help="Last year of the last period")
    parser.add_argument("--width", type=int, default=config.PERIOD_WIDTH, help="Period length in years")
    parser.add_argument("--n-samples", type=int, default=config.N_SAMPLES,
                        help="Bootstrap and random samples for the nearest neighbour index")
    parser.add_argument("--seed", type=int, default=config.RANDOM_SEED, help="Random seed")
    parser.add_argument("--max-uncertainty", type=float, default=config.MAX_UNCERTAINTY,
                        help="Drop records with coordinate uncertainty above this (metres)")
    parser.add_argument("--exclude-issue", action="append", default=list(config.EXCLUDE_ISSUES),
                        help="Drop records carrying this GBIF issue flag (repeatable)")
    return parser.parse_args(argv)


def save_table(result: AssessmentResult, tables_dir: Path) -> Path:
    """Write an assessment table as CSV with integer count columns."""
    tables_dir.mkdir(parents=True, exist_ok=True)
    out_file = tables_dir / f"{result.name}.csv"
    table = cast_int_columns(result.data.copy(), COUNT_COLUMNS)
    table.to_csv(out_file, index=False)
    log(f"{result.name}: {result.n_used} records used, {result.n_excluded} excluded -> {rel(out_file)}")
    return out_file


def run(args: argparse.Namespace) -> Path:
    """Run the assessment described by the parsed arguments; return the report path."""
    output_dir = Path(args.output)
    tables_dir = output_dir / "tables"

    # ------------------------------------------------------------------
    # Load, filter, summarise, validate
    # ------------------------------------------------------------------
    log(f"Input occurrences: {rel(args.input)}")
    raw = load_occurrences(args.input)
    df, removed = apply_quality_filters(raw, max_uncertainty=args.max_uncertainty,
                                        exclude_issues=args.exclude_issue)
    summary_file = write_summary_report(df, args.summary_report, source=Path(args.input).name,
                                        n_raw=len(raw), removed=removed)
    log(f"Summary report saved to: {rel(summary_file)}")

    validation = validate_occurrences(df)
    periods = make_periods(args.start, args.end, args.width)
    log(f"Periods: {len(periods)} from {periods[0].label} to {periods[-1].label}")

    report = BiasReport(f"Occurrence data bias assessment: {Path(args.input).name}", output_dir)
    report.add_text(
        "Dataset",
        f"{len(raw)} records loaded, {len(df)} after quality filters, from "
        f"{validation.n_datasets} source datasets. Results are grouped by '{args.identifier}' "
        f"over {len(periods)} periods of {args.width} years.",
    )

    # ------------------------------------------------------------------
    # Non-spatial assessors
    # ------------------------------------------------------------------
    results = [
        ("Number of records", assess_record_number(df, periods, args.identifier)),
        ("Number of species", assess_species_number(df, periods, args.identifier)),
        ("Taxonomic resolution", assess_species_id(df, periods, args.identifier)),
        ("Rarity bias", assess_rarity_bias(df, periods, args.identifier, res=args.res)),
    ]

    # ------------------------------------------------------------------
    # Spatial assessors (need the boundary mask)
    # ------------------------------------------------------------------
    mask = None
    if Path(args.boundary).exists():
        mask = load_boundary(args.boundary, config.ANALYSIS_CRS,
                             name_col=config.BOUNDARY_NAME_COL if args.boundary_name else None,
                             name=args.boundary_name or None)
        results.append(("Spatial coverage",
                        assess_spatial_coverage(df, periods, args.identifier, mask, res=args.res)))
        results.append(("Spatial bias",
                        assess_spatial_bias(df, periods, args.identifier, mask, n_samples=args.n_samples,
                                            res=args.res, seed=args.seed)))
    else:
        logger.warning("Boundary file %s not found; spatial assessors skipped", args.boundary)
        report.add_text("Spatial coverage and spatial bias",
                        f"Skipped: boundary file {Path(args.boundary).name} not found.")

    # ------------------------------------------------------------------
    # Environmental assessor (needs the covariate raster)
    # ------------------------------------------------------------------
    if Path(args.env_raster).exists():
        env = extract_environment(df, args.env_raster)
        background = sample_background(args.env_raster, mask=mask, seed=args.seed)
        results.append(("Environmental bias",
                        assess_environmental_bias(df, periods, args.identifier, env, background)))
    else:
        logger.warning("Covariate raster %s not found; environmental assessor skipped", args.env_raster)
        report.add_text("Environmental bias",
                        f"Skipped: covariate raster {Path(args.env_raster).name} not found.")

    for title, result in results:
        save_table(result, tables_dir)
        report.add_result(title, result)

    path = report.write()
    log(f"Bias report saved to: {rel(path)}")
    return path


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("bias_assessment")
    log("=== Occurrence bias assessment started ===")
    try:
        run(args)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Bias assessment failed: %s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    log("=== Occurrence bias assessment completed ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
