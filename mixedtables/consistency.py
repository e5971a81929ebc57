"""
Consistency checks between key and value columns.

A value column is consistent with a key column when every row sharing a key
carries the same value, e.g. a subject's gender or a baby's lab should not
change across that subject's trials.

Missing values (None, NaN, pd.NA, NaT) are all normalized to ``None`` before
comparison, so two missing values for the same key agree with each other and
disagree with any recorded value.
"""

from __future__ import annotations
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Sequence, Set, Tuple, Union

import numpy as np
import pandas as pd

from .tables import columns


def _normalize(value: Any) -> Any:
    """Map every flavour of missing value to None and numpy scalars to Python ones."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        # array-like cells; compared as-is
        return value
    if isinstance(value, np.generic):
        return value.item()
    return value


def _normalize_key(k: Any) -> Any:
    if isinstance(k, tuple):
        return tuple(_normalize(p) for p in k)
    return _normalize(k)


def _pairs(keys: Sequence, values: Sequence) -> Iterator[Tuple[Any, Any]]:
    if len(keys) != len(values):
        raise ValueError(
            f"keys and values must have the same length ({len(keys)} != {len(values)})"
        )
    for k, v in zip(keys, values):
        yield _normalize(k), _normalize(v)


def _as_sequence(x) -> Sequence:
    if isinstance(x, (pd.Series, pd.Index)):
        return x.tolist()
    if isinstance(x, np.ndarray):
        return x.tolist()
    return x


def inconsistent(keys: Sequence, values: Sequence) -> Set:
    """
    Keys whose rows carry more than one distinct value.

    The first value seen for a key is recorded; any later row with the same
    key and a different value marks the key as inconsistent.

    Parameters
    ----------
    keys, values : sequence
        Columns of equal length

    Returns
    -------
    set
        Inconsistent keys (missing keys appear as None)

    Examples
    --------
    >>> inconsistent(["1", "1", "2"], ["labA", "labB", "labA"])
    {'1'}
    """
    first: Dict[Any, Any] = {}
    bad: Set = set()
    for k, v in _pairs(_as_sequence(keys), _as_sequence(values)):
        if first.setdefault(k, v) != v:
            bad.add(k)
    return bad


def _select(table, names: Iterable[str]) -> List[Sequence]:
    cols = columns(table)
    names = list(names)
    missing_cols = [n for n in names if n not in cols]
    if missing_cols:
        raise ValueError(f"Missing columns in data: {missing_cols}")
    return [_as_sequence(cols[n]) for n in names]


def inconsistent_columns(table, key: str, value: str) -> Set:
    """:func:`inconsistent` applied to two named columns of ``table``."""
    kcol, vcol = _select(table, [key, value])
    return inconsistent(kcol, vcol)


def is_consistent(keys: Sequence, values: Sequence) -> bool:
    """True when every key maps to a single value; stops at the first conflict."""
    first: Dict[Any, Any] = {}
    for k, v in _pairs(_as_sequence(keys), _as_sequence(values)):
        if first.setdefault(k, v) != v:
            return False
    return True


def all_values(keys: Sequence, values: Sequence) -> Dict[Any, Set]:
    """
    Every distinct value observed for each key.

    Keys are returned in first-seen order. Missing values are kept as None in
    the sets, so a key with a recorded value and a missing one has two
    entries.
    """
    out: Dict[Any, Set] = {}
    for k, v in _pairs(_as_sequence(keys), _as_sequence(values)):
        out.setdefault(k, set()).add(v)
    return out


def repeated(value_sets: Dict[Any, Set], min_count: int = 2) -> Dict[Any, Set]:
    """Entries of an :func:`all_values` result with at least ``min_count`` values."""
    if min_count < 1:
        raise ValueError("min_count must be >= 1")
    return {k: s for k, s in value_sets.items() if len(s) >= min_count}


def count_unique_rows(table, cols: Sequence[str]) -> int:
    """Number of distinct combinations of ``cols`` (missing counted as one value)."""
    selected = _select(table, cols)
    combos = {tuple(_normalize(v) for v in row) for row in zip(*selected)}
    return len(combos)


def count_unique(table, col: str) -> int:
    """Number of distinct values in one column."""
    return count_unique_rows(table, [col])


class GroupedTable:
    """
    Rows of a DataFrame split by the values of one or more key columns.

    Parameters
    ----------
    table : pd.DataFrame
        Table to split
    key : str or list of str
        Grouping column(s). With several columns, groups are addressed by
        tuples.

    Examples
    --------
    >>> gdf = GroupedTable(df, "subid")
    >>> gdf["1"]["lab"].unique()
    """

    def __init__(self, table: pd.DataFrame, key: Union[str, Sequence[str]]):
        if not isinstance(table, pd.DataFrame):
            table = pd.DataFrame(columns(table))
        self.key = [key] if isinstance(key, str) else list(key)
        missing_cols = [c for c in self.key if c not in table.columns]
        if missing_cols:
            raise ValueError(f"Missing columns in data: {missing_cols}")
        self.table = table
        positions: Dict[Hashable, List[int]] = {}
        keycols = [_as_sequence(table[c]) for c in self.key]
        for i, parts in enumerate(zip(*keycols)):
            parts = tuple(_normalize(p) for p in parts)
            k = parts[0] if len(parts) == 1 else parts
            positions.setdefault(k, []).append(i)
        self._index: Dict[Hashable, np.ndarray] = {
            k: np.asarray(v, dtype=int) for k, v in positions.items()
        }

    def __len__(self) -> int:
        return len(self._index)

    def keys(self) -> List[Hashable]:
        return list(self._index)

    def __contains__(self, k) -> bool:
        return _normalize_key(k) in self._index

    def __getitem__(self, k) -> pd.DataFrame:
        if isinstance(k, dict):
            k = tuple(k[c] for c in self.key)
            if len(k) == 1:
                k = k[0]
        k = _normalize_key(k)
        try:
            idx = self._index[k]
        except KeyError:
            raise KeyError(f"No group with key {k!r}") from None
        return self.table.iloc[idx]

    def get(self, k, default=None):
        try:
            return self[k]
        except KeyError:
            return default

    def __iter__(self):
        for k in self._index:
            yield k, self[k]

    def sizes(self) -> pd.Series:
        """Row count per group."""
        return pd.Series({k: len(v) for k, v in self._index.items()}, name="nrow")

    def __repr__(self) -> str:
        return f"GroupedTable({len(self)} groups by {self.key})"


def group_rows(table, key: Union[str, Sequence[str]]) -> GroupedTable:
    """Shorthand for :class:`GroupedTable`."""
    return GroupedTable(table, key)


class ColumnConsistency:
    """Consistency of one value column against the key column."""
    __slots__ = ("column", "n_keys", "inconsistent_keys")

    def __init__(self, column: str, n_keys: int, inconsistent_keys: Set):
        self.column = column
        self.n_keys = n_keys
        self.inconsistent_keys = inconsistent_keys

    @property
    def consistent(self) -> bool:
        return not self.inconsistent_keys

    def __repr__(self) -> str:
        return (f"ColumnConsistency('{self.column}', n_keys={self.n_keys}, "
                f"n_inconsistent={len(self.inconsistent_keys)})")


class ConsistencyReport:
    """Result of :func:`check_consistency` over several value columns."""

    def __init__(self, key: str, results: List[ColumnConsistency]):
        self.key = key
        self.results = results

    @property
    def consistent(self) -> bool:
        return all(r.consistent for r in self.results)

    @property
    def inconsistent_columns(self) -> List[str]:
        return [r.column for r in self.results if not r.consistent]

    def __getitem__(self, column: str) -> ColumnConsistency:
        for r in self.results:
            if r.column == column:
                return r
        raise KeyError(column)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "column": [r.column for r in self.results],
            "n_keys": [r.n_keys for r in self.results],
            "n_inconsistent": [len(r.inconsistent_keys) for r in self.results],
            "consistent": [r.consistent for r in self.results],
        })

    def summary(self):
        """Print one line per value column."""
        print(f"Consistency against key '{self.key}'")
        print("=" * 50)
        for r in self.results:
            status = "ok" if r.consistent else f"{len(r.inconsistent_keys)} inconsistent keys"
            print(f"  {r.column:25s} {status}")


def check_consistency(table, key: str, values: Sequence[str]) -> ConsistencyReport:
    """
    Check several value columns against one key column.

    Parameters
    ----------
    table : DataFrame, column mapping or row iterable
    key : str
        Key column name
    values : sequence of str
        Value columns expected to be constant within each key

    Returns
    -------
    ConsistencyReport
    """
    if isinstance(values, str):
        values = [values]
    selected = _select(table, [key, *values])
    kcol = selected[0]
    n_keys = len({_normalize(k) for k in kcol})
    results = [
        ColumnConsistency(name, n_keys, inconsistent(kcol, vcol))
        for name, vcol in zip(values, selected[1:])
    ]
    return ConsistencyReport(key, results)
