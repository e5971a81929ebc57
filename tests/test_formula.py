"""
Test cases for model formula parsing.
"""

import pytest

import sys
import os
# Add parent directory to path to find mixedtables package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mixedtables.models.formula import parse_formula, RandomTerm


class TestParseFormula:

    def test_random_intercept(self):
        f = parse_formula("y ~ 1 + x + (1 | g)")

        assert f.response == "y"
        assert f.fixed == ["x"]
        assert f.intercept
        assert len(f.random) == 1
        assert f.random[0] == RandomTerm(columns=[], intercept=True, group="g")

    def test_random_slope(self):
        f = parse_formula("reaction ~ 1 + days + (1 + days | subj)")
        term = f.random[0]

        assert term.columns == ["days"]
        assert term.intercept
        assert term.names == ["(Intercept)", "days"]
        assert term.size == 2

    def test_implied_intercepts(self):
        f = parse_formula("y ~ x + (x | g)")
        assert f.intercept
        assert f.random[0].intercept

    def test_suppressed_intercepts(self):
        f = parse_formula("y ~ 0 + x + (0 + x | g)")
        assert not f.intercept
        assert not f.random[0].intercept
        assert f.random[0].names == ["x"]

    def test_several_terms(self):
        f = parse_formula("y ~ a + b + (1 | g) + (1 | h)")
        assert f.fixed == ["a", "b"]
        assert [t.group for t in f.random] == ["g", "h"]
        assert f.variables == ["y", "a", "b", "g", "h"]

    def test_intercept_only(self):
        f = parse_formula("y ~ 1 + (1 | g)")
        assert f.fixed == []
        assert f.intercept

    def test_whitespace_normalized(self):
        f = parse_formula("y~x+(1|g)")
        assert f.fixed == ["x"]
        assert str(f) == "y~x+(1|g)"
        assert str(f.random[0]) == "(1 | g)"

    @pytest.mark.parametrize("text", [
        "y x + (1 | g)",
        "y ~ x ~ z",
        "y ~ ",
        "y ~ x + (1 | g",
        "y ~ x + 1 | g)",
        "y ~ x + (1 | g | h)",
        "y ~ x + ( | g)",
        "y ~ x + (0 | g)",
        "y ~ x + + z",
        "y ~ 2x",
        "y ~ y",
    ])
    def test_malformed(self, text):
        with pytest.raises(ValueError):
            parse_formula(text)

    def test_not_a_string(self):
        with pytest.raises(ValueError):
            parse_formula(None)
