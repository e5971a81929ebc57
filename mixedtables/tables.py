"""
Table loading and row/column views.

A table is held as a pandas DataFrame (column storage). The helpers here give
the two access patterns used when checking data: iterating over row records
and pulling whole columns as arrays.
"""

import io
import os
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import requests


TableSource = Union[str, os.PathLike, bytes, io.IOBase]


class Schema:
    """
    Column names and element types of a table.

    Attributes
    ----------
    names : tuple of str
        Column names in table order
    types : tuple of str
        pandas dtype name of each column
    nullable : tuple of bool
        Whether each column holds at least one missing value
    """
    __slots__ = ("names", "types", "nullable")

    def __init__(self, names: Sequence[str], types: Sequence[str], nullable: Sequence[bool]):
        if not (len(names) == len(types) == len(nullable)):
            raise ValueError("names, types and nullable must have the same length")
        self.names = tuple(names)
        self.types = tuple(types)
        self.nullable = tuple(bool(v) for v in nullable)

    def __len__(self) -> int:
        return len(self.names)

    def __getitem__(self, name: str) -> Tuple[str, bool]:
        try:
            i = self.names.index(name)
        except ValueError:
            raise KeyError(name) from None
        return self.types[i], self.nullable[i]

    def __iter__(self):
        return iter(zip(self.names, self.types, self.nullable))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "name": list(self.names),
            "type": list(self.types),
            "nullable": list(self.nullable),
        })

    def __repr__(self) -> str:
        lines = ["Schema:"]
        for name, typ, null in self:
            suffix = " (missing)" if null else ""
            lines.append(f"  {name:20s} {typ}{suffix}")
        return "\n".join(lines)


def fetch_bytes(url: str, timeout: float = 30.0) -> bytes:
    """
    Download the body of ``url``.

    Raises
    ------
    requests.HTTPError
        If the server answers with a non-2xx status
    """
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def _is_url(source: Any) -> bool:
    return isinstance(source, str) and source.lower().startswith(("http://", "https://"))


def _to_buffer(source: TableSource, timeout: float):
    if _is_url(source):
        return io.BytesIO(fetch_bytes(source, timeout=timeout))
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(bytes(source))
    if isinstance(source, (str, os.PathLike)):
        return source
    if hasattr(source, "read"):
        return source
    raise TypeError(f"Unsupported table source of type {type(source).__name__}")


def _coerce_logical(df: pd.DataFrame, true_strings, false_strings) -> pd.DataFrame:
    """Turn object columns holding only true/false markers into nullable booleans."""
    truthy = set(true_strings) | {True}
    falsy = set(false_strings) | {False}
    for col in df.columns:
        if pd.api.types.is_bool_dtype(df[col]):
            df[col] = df[col].astype("boolean")
            continue
        if df[col].dtype != object:
            continue
        observed = df[col].dropna()
        if observed.empty:
            continue
        values = set(observed.unique().tolist())
        if values <= (truthy | falsy):
            df[col] = df[col].map(
                lambda v: pd.NA if pd.isna(v) else (v in truthy)
            ).astype("boolean")
    return df


def read_table(
    source: TableSource,
    missing_strings: Sequence[str] = ("NA",),
    true_strings: Sequence[str] = ("TRUE",),
    false_strings: Sequence[str] = ("FALSE",),
    timeout: float = 30.0,
    **read_kwargs
) -> pd.DataFrame:
    """
    Read a CSV table from a path, URL, raw bytes or an open buffer.

    Only the strings in ``missing_strings`` mark missing values; pandas'
    default list of NA spellings is switched off so that, for example, an
    empty string or "null" stays a value.

    Parameters
    ----------
    source : str, os.PathLike, bytes or file-like
        Location or content of the CSV data. Strings starting with
        ``http://`` or ``https://`` are downloaded with requests.
    missing_strings : sequence of str, default=("NA",)
        Cell contents read as missing
    true_strings, false_strings : sequence of str
        Cell contents read as logical true / false
    timeout : float, default=30.0
        HTTP timeout in seconds
    **read_kwargs
        Passed through to ``pandas.read_csv``

    Returns
    -------
    pd.DataFrame

    Examples
    --------
    >>> df = read_table(b"id,flag\\n1,TRUE\\n2,NA\\n")
    >>> df["flag"].dtype
    BooleanDtype
    """
    buf = _to_buffer(source, timeout)
    df = pd.read_csv(
        buf,
        na_values=list(missing_strings),
        keep_default_na=False,
        true_values=list(true_strings),
        false_values=list(false_strings),
        **read_kwargs
    )
    return _coerce_logical(df, true_strings, false_strings)


def nrow(table) -> int:
    """Number of rows in a DataFrame or column mapping."""
    if isinstance(table, pd.DataFrame):
        return len(table)
    cols = columns(table)
    if not cols:
        return 0
    return len(next(iter(cols.values())))


def schema(table) -> Schema:
    """Return the :class:`Schema` of a table."""
    df = table if isinstance(table, pd.DataFrame) else pd.DataFrame(dict(columns(table)))
    return Schema(
        names=[str(c) for c in df.columns],
        types=[str(df[c].dtype) for c in df.columns],
        nullable=[bool(df[c].isna().any()) for c in df.columns],
    )


def column_table(table: pd.DataFrame) -> Mapping[str, np.ndarray]:
    """
    Column view of a table as a read-only mapping of name -> array.

    The set of columns is fixed: assigning or deleting keys raises
    ``TypeError``. The arrays themselves are independent copies and can be
    modified in place.
    """
    df = table if isinstance(table, pd.DataFrame) else pd.DataFrame(dict(columns(table)))
    return MappingProxyType({
        str(c): np.array(df[c].to_numpy(), copy=True) for c in df.columns
    })


def rows(table: pd.DataFrame) -> Iterator[tuple]:
    """Iterate over rows as namedtuples with one field per column."""
    df = table if isinstance(table, pd.DataFrame) else pd.DataFrame(dict(columns(table)))
    return df.itertuples(index=False, name="Row")


def columns(table) -> Dict[str, Sequence]:
    """
    Column access for any supported table representation.

    Parameters
    ----------
    table : DataFrame, mapping of columns, or iterable of rows
        Rows may be namedtuples or dicts; all rows must share the same fields.

    Returns
    -------
    dict
        Column name -> sequence of values
    """
    if isinstance(table, pd.DataFrame):
        return {str(c): table[c] for c in table.columns}
    if isinstance(table, Mapping):
        return dict(table)
    if isinstance(table, Iterable):
        return _columns_from_rows(table)
    raise TypeError(f"Cannot take columns of {type(table).__name__}")


def _row_fields(row) -> Tuple[str, ...]:
    if hasattr(row, "_fields"):
        return tuple(row._fields)
    if isinstance(row, Mapping):
        return tuple(row.keys())
    raise TypeError(f"Rows must be namedtuples or mappings, got {type(row).__name__}")


def _columns_from_rows(rows_iter: Iterable) -> Dict[str, list]:
    out: Dict[str, list] = {}
    fields: Optional[Tuple[str, ...]] = None
    for row in rows_iter:
        these = _row_fields(row)
        if fields is None:
            fields = these
            out = {f: [] for f in fields}
        elif these != fields:
            raise ValueError(f"Row fields {these} differ from {fields}")
        get = row.get if isinstance(row, Mapping) else (lambda f, r=row: getattr(r, f))
        for f in fields:
            out[f].append(get(f))
    return out


def describe(table) -> pd.DataFrame:
    """
    Summary of each column: element type, missing count, distinct values and,
    for numeric columns, min / median / max / mean.
    """
    df = table if isinstance(table, pd.DataFrame) else pd.DataFrame(dict(columns(table)))
    records = []
    for col in df.columns:
        s = df[col]
        numeric = pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s)
        observed = s.dropna()
        rec = {
            "variable": str(col),
            "eltype": str(s.dtype),
            "nmissing": int(s.isna().sum()),
            "nunique": int(observed.nunique()),
            "min": np.nan,
            "median": np.nan,
            "max": np.nan,
            "mean": np.nan,
        }
        if numeric and len(observed):
            rec.update(
                min=observed.min(),
                median=float(observed.median()),
                max=observed.max(),
                mean=float(observed.mean()),
            )
        elif len(observed):
            try:
                rec.update(min=observed.min(), max=observed.max())
            except TypeError:
                # mixed, unorderable values
                pass
        records.append(rec)
    return pd.DataFrame.from_records(
        records,
        columns=["variable", "eltype", "nmissing", "nunique", "min", "median", "max", "mean"],
    )
