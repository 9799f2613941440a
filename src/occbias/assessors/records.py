"""Number of records per period."""

from typing import Iterable

from ..plotting import plot_trend
from .base import AssessmentResult, finish_table, group_counts, prepare_records


def assess_record_number(df, periods: Iterable, identifier: str, normalize: bool = False) -> AssessmentResult:
    """
    Count occurrence records per period and identifier.

    Periods without records are reported as 0. With normalize=True each
    identifier's counts are also divided by its maximum across periods, so
    groups of very different size can be compared on one axis.
    """
    prepared = prepare_records(df, periods, identifier, name="record number")

    table = group_counts(prepared).rename("n_records").to_frame()
    value_col = "n_records"
    if normalize:
        peak = table.groupby(level=1)["n_records"].transform("max")
        table["n_records_normalized"] = (table["n_records"] / peak.where(peak > 0)).fillna(0.0)
        value_col = "n_records_normalized"

    data = finish_table(table, prepared)
    figure = plot_trend(data, value_col,
                        "Records (normalised)" if normalize else "Number of records",
                        "Number of records per period")
    return AssessmentResult(name="record_number", data=data, figure=figure,
                            excluded=prepared.excluded, n_used=len(prepared.data))
