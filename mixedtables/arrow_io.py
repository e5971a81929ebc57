"""
Arrow IPC file persistence for tables.

Files are written in the Arrow IPC *file* format (random access, readable by
any Arrow implementation). Record batches can be compressed with zstd or lz4;
compressed files are smaller but must be decompressed on read.
"""

import os
from typing import Mapping, Optional, Union

import pandas as pd
import pyarrow as pa
import pyarrow.ipc

COMPRESSIONS = (None, "zstd", "lz4")


def to_arrow(table) -> pa.Table:
    """Convert a DataFrame, column mapping or pyarrow Table to a pyarrow Table."""
    if isinstance(table, pa.Table):
        return table
    if isinstance(table, pd.DataFrame):
        return pa.Table.from_pandas(table, preserve_index=False)
    if isinstance(table, Mapping):
        return pa.table({str(k): v for k, v in table.items()})
    raise TypeError(f"Cannot convert {type(table).__name__} to an Arrow table")


def write_arrow(
    table,
    path: Union[str, os.PathLike],
    compression: Optional[str] = None
) -> int:
    """
    Write ``table`` to ``path`` as an Arrow IPC file.

    Parameters
    ----------
    table : DataFrame, mapping of columns or pyarrow.Table
    path : str or os.PathLike
        Destination file; overwritten if present
    compression : {None, "zstd", "lz4"}, default=None
        Buffer compression codec

    Returns
    -------
    int
        Size of the written file in bytes
    """
    if compression not in COMPRESSIONS:
        raise ValueError(f"compression must be one of {COMPRESSIONS}, got {compression!r}")

    tbl = to_arrow(table)
    options = pa.ipc.IpcWriteOptions(compression=compression)
    with pa.OSFile(os.fspath(path), "wb") as sink:
        with pa.ipc.new_file(sink, tbl.schema, options=options) as writer:
            writer.write_table(tbl)
    return file_size(path)


def read_arrow(path: Union[str, os.PathLike], as_frame: bool = True):
    """
    Read an Arrow IPC file written by :func:`write_arrow` (or any Arrow writer).

    Parameters
    ----------
    path : str or os.PathLike
    as_frame : bool, default=True
        Return a pandas DataFrame; otherwise the pyarrow Table

    Returns
    -------
    pd.DataFrame or pyarrow.Table
    """
    with pa.memory_map(os.fspath(path), "r") as source:
        tbl = pa.ipc.open_file(source).read_all()
    if as_frame:
        return tbl.to_pandas()
    return tbl


def file_size(path: Union[str, os.PathLike]) -> int:
    """Size of a file in bytes."""
    return os.path.getsize(os.fspath(path))
