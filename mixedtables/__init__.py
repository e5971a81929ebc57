"""
mixedtables: data checking, Arrow persistence and linear mixed models

Load tables from CSV, verify that value columns are consistent with key
columns, save tables as Arrow IPC files, and fit linear mixed models by
minimizing the profiled ML/REML deviance.
"""

from .control import FitControl
from .tables import Schema, read_table, schema, column_table, rows, columns, describe, nrow
from .consistency import (
    inconsistent,
    inconsistent_columns,
    is_consistent,
    all_values,
    repeated,
    count_unique,
    count_unique_rows,
    GroupedTable,
    group_rows,
    check_consistency,
)
from .arrow_io import write_arrow, read_arrow, file_size
from .models import LinearMixedModel, fit_lmm, lrt, parse_formula
from .plotting import plot_ranef, plot_residuals, plot_value_counts

__version__ = "0.1.0"

__all__ = [
    "FitControl",
    "Schema",
    "read_table",
    "schema",
    "column_table",
    "rows",
    "columns",
    "describe",
    "nrow",
    "inconsistent",
    "inconsistent_columns",
    "is_consistent",
    "all_values",
    "repeated",
    "count_unique",
    "count_unique_rows",
    "GroupedTable",
    "group_rows",
    "check_consistency",
    "write_arrow",
    "read_arrow",
    "file_size",
    "LinearMixedModel",
    "fit_lmm",
    "lrt",
    "parse_formula",
    "plot_ranef",
    "plot_residuals",
    "plot_value_counts",
]
