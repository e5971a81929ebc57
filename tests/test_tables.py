"""
Test cases for table loading and row/column views.
"""

import io
import pytest
import numpy as np
import pandas as pd
from collections import namedtuple
from unittest.mock import MagicMock, patch

import sys
import os
# Add parent directory to path to find mixedtables package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import requests

from mixedtables.tables import (
    Schema, read_table, fetch_bytes, schema, nrow,
    column_table, rows, columns, describe
)


CSV = (
    b"lab,subid,age,preterm,session_error\n"
    b"babylab,1,200,full term,FALSE\n"
    b"babylab,1,200,full term,FALSE\n"
    b"infantlab,1,310,NA,TRUE\n"
    b"infantlab,2,NA,preterm,NA\n"
)


class TestReadTable:
    """Test CSV reading from different sources."""

    def test_read_from_bytes(self):
        """Bytes are parsed as CSV content."""
        df = read_table(CSV)

        assert isinstance(df, pd.DataFrame)
        assert len(df) == 4
        assert list(df.columns) == ["lab", "subid", "age", "preterm", "session_error"]

    def test_missing_strings(self):
        """Only the configured markers become missing."""
        df = read_table(CSV)

        assert df["age"].isna().sum() == 1
        assert df["preterm"].isna().sum() == 1
        assert df.loc[1, "preterm"] == "full term"

    def test_default_na_list_disabled(self):
        """Spellings like 'null' or 'NaN' stay values unless requested."""
        df = read_table(b"x,y\nnull,1\nNaN,2\n")
        assert df["x"].tolist() == ["null", "NaN"]

        df2 = read_table(b"x,y\nnull,1\nok,2\n", missing_strings=["null"])
        assert df2["x"].isna().sum() == 1

    def test_logical_columns(self):
        """TRUE/FALSE markers with missing values give a nullable boolean column."""
        df = read_table(CSV)

        assert str(df["session_error"].dtype) == "boolean"
        assert df["session_error"].tolist()[:3] == [False, False, True]
        assert pd.isna(df["session_error"].tolist()[3])

    def test_logical_columns_without_missing(self):
        """A complete TRUE/FALSE column is also a nullable boolean."""
        complete = read_table(b"a,b\n1,TRUE\n2,FALSE\n")
        with_missing = read_table(b"a,b\n1,TRUE\n2,FALSE\n3,NA\n")

        assert str(complete["b"].dtype) == "boolean"
        assert complete["b"].dtype == with_missing["b"].dtype
        assert complete["b"].tolist() == [True, False]

    def test_custom_logical_markers(self):
        """Custom true/false strings are honoured."""
        df = read_table(b"flag\nyes\nno\nyes\n", true_strings=["yes"], false_strings=["no"])
        assert df["flag"].tolist() == [True, False, True]

    def test_read_from_path(self, tmp_path):
        """Filesystem paths are read directly."""
        path = tmp_path / "data.csv"
        path.write_bytes(CSV)

        df = read_table(str(path))
        assert len(df) == 4
        df2 = read_table(path)
        assert len(df2) == 4

    def test_read_from_buffer(self):
        """Open buffers are accepted."""
        df = read_table(io.BytesIO(CSV))
        assert len(df) == 4

    def test_read_from_url(self):
        """URLs are downloaded with requests."""
        response = MagicMock()
        response.content = CSV
        response.raise_for_status.return_value = None

        with patch("mixedtables.tables.requests.get", return_value=response) as get:
            df = read_table("https://example.org/data.csv", timeout=5)

        get.assert_called_once_with("https://example.org/data.csv", timeout=5)
        assert len(df) == 4

    def test_http_error_propagates(self):
        """Non-2xx answers raise requests.HTTPError."""
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("404 Not Found")

        with patch("mixedtables.tables.requests.get", return_value=response):
            with pytest.raises(requests.HTTPError):
                fetch_bytes("https://example.org/missing.csv")

    def test_unsupported_source(self):
        """Unknown source types raise TypeError."""
        with pytest.raises(TypeError, match="Unsupported table source"):
            read_table(12345)


class TestSchema:
    """Test schema extraction."""

    def setup_method(self):
        self.df = read_table(CSV)

    def test_schema_names_and_types(self):
        s = schema(self.df)

        assert isinstance(s, Schema)
        assert len(s) == 5
        assert s.names == ("lab", "subid", "age", "preterm", "session_error")
        assert s["subid"] == ("int64", False)
        assert s["age"][1] is True

    def test_schema_unknown_column(self):
        s = schema(self.df)
        with pytest.raises(KeyError):
            s["nope"]

    def test_schema_to_frame(self):
        frame = schema(self.df).to_frame()
        assert list(frame.columns) == ["name", "type", "nullable"]
        assert len(frame) == 5

    def test_empty_table(self):
        s = schema(pd.DataFrame())
        assert len(s) == 0

    def test_schema_length_mismatch(self):
        with pytest.raises(ValueError):
            Schema(["a", "b"], ["int64"], [False])


class TestViews:
    """Test row and column access."""

    def setup_method(self):
        self.df = read_table(CSV)

    def test_nrow(self):
        assert nrow(self.df) == 4
        assert nrow({"a": [1, 2, 3]}) == 3
        assert nrow({}) == 0

    def test_column_table_structure_is_immutable(self):
        ct = column_table(self.df)

        assert set(ct) == {"lab", "subid", "age", "preterm", "session_error"}
        with pytest.raises(TypeError):
            ct["new"] = np.zeros(4)
        with pytest.raises(TypeError):
            del ct["lab"]

    def test_column_table_values_are_mutable(self):
        ct = column_table(self.df)
        ct["subid"][0] = 99

        assert ct["subid"][0] == 99
        # the source table is untouched
        assert self.df["subid"].iloc[0] == 1

    def test_rows(self):
        rs = list(rows(self.df))

        assert len(rs) == 4
        assert rs[2].lab == "infantlab"
        assert rs[3].subid == 2

    def test_columns_from_frame_and_mapping(self):
        cols = columns(self.df)
        assert list(cols["lab"]) == ["babylab", "babylab", "infantlab", "infantlab"]

        cols2 = columns({"a": [1, 2]})
        assert cols2 == {"a": [1, 2]}

    def test_columns_from_rows(self):
        cols = columns(rows(self.df))
        assert cols["subid"] == [1, 1, 1, 2]

        dict_rows = [{"k": 1, "v": "a"}, {"k": 2, "v": "b"}]
        assert columns(dict_rows) == {"k": [1, 2], "v": ["a", "b"]}

    def test_columns_from_rows_field_mismatch(self):
        A = namedtuple("A", ["k", "v"])
        B = namedtuple("B", ["k", "w"])
        with pytest.raises(ValueError, match="differ"):
            columns([A(1, 2), B(1, 2)])

    def test_columns_rejects_scalars(self):
        with pytest.raises(TypeError):
            columns(3.5)


class TestDescribe:
    """Test per-column summaries."""

    def test_describe(self):
        df = read_table(CSV)
        d = describe(df).set_index("variable")

        assert list(d.index) == ["lab", "subid", "age", "preterm", "session_error"]
        assert d.loc["age", "nmissing"] == 1
        assert d.loc["age", "min"] == 200
        assert d.loc["age", "max"] == 310
        assert d.loc["age", "median"] == pytest.approx(200.0)
        assert d.loc["subid", "mean"] == pytest.approx(1.25)
        assert d.loc["lab", "nunique"] == 2
        assert np.isnan(d.loc["lab", "mean"])

    def test_describe_all_missing_column(self):
        df = pd.DataFrame({"x": [np.nan, np.nan]})
        d = describe(df)
        assert d.loc[0, "nmissing"] == 2
        assert d.loc[0, "nunique"] == 0
