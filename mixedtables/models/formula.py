"""
Model formula parsing.

Supported grammar::

    response ~ term + term + ...

where each term is ``1`` (intercept, implied unless ``0`` is given), ``0``
(no intercept), a column name, or a random-effects term ``(expr | group)``.
Inside a random-effects term ``expr`` is a ``+``-separated list of ``1``,
``0`` and column names; an intercept is implied unless ``0`` is listed.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import List, Tuple

_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


@dataclass
class RandomTerm:
    """
    One ``(columns | group)`` term.

    Attributes
    ----------
    columns : list of str
        Covariates with a random slope per group level
    intercept : bool
        Whether the term has a random intercept
    group : str
        Grouping factor
    """
    columns: List[str]
    intercept: bool
    group: str

    @property
    def names(self) -> List[str]:
        """Coefficient names in model order."""
        return (["(Intercept)"] if self.intercept else []) + list(self.columns)

    @property
    def size(self) -> int:
        return len(self.names)

    def __str__(self) -> str:
        lhs = ["1"] + self.columns if self.intercept else ["0"] + self.columns
        return f"({' + '.join(lhs)} | {self.group})"


@dataclass
class Formula:
    """Parsed model formula."""
    response: str
    fixed: List[str] = field(default_factory=list)
    intercept: bool = True
    random: List[RandomTerm] = field(default_factory=list)
    text: str = ""

    @property
    def variables(self) -> List[str]:
        """Every data column the formula refers to, without duplicates."""
        seen = [self.response]
        for name in self.fixed:
            if name not in seen:
                seen.append(name)
        for term in self.random:
            for name in term.columns + [term.group]:
                if name not in seen:
                    seen.append(name)
        return seen

    def __str__(self) -> str:
        return self.text or repr(self)


def _split_top(text: str, sep: str) -> List[str]:
    """Split on ``sep`` outside parentheses."""
    parts, depth, buf = [], 0, []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced parentheses in '{text}'")
        if ch == sep and depth == 0:
            parts.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if depth != 0:
        raise ValueError(f"Unbalanced parentheses in '{text}'")
    parts.append("".join(buf).strip())
    return parts


def _check_name(name: str, where: str) -> str:
    if not _NAME.match(name):
        raise ValueError(f"Invalid {where} '{name}'")
    return name


def _parse_effects(text: str, where: str) -> Tuple[List[str], bool]:
    names, intercept = [], True
    for item in _split_top(text, "+"):
        if item == "":
            raise ValueError(f"Empty term in {where} '{text}'")
        if item == "1":
            intercept = True
        elif item == "0":
            intercept = False
        else:
            name = _check_name(item, "column name")
            if name not in names:
                names.append(name)
    return names, intercept


def _parse_random(inner: str) -> RandomTerm:
    pieces = inner.split("|")
    if len(pieces) != 2:
        raise ValueError(f"Random-effects term must have exactly one '|': '({inner})'")
    expr, group = pieces[0].strip(), pieces[1].strip()
    if not expr:
        raise ValueError(f"Missing left side in random-effects term '({inner})'")
    columns, intercept = _parse_effects(expr, "random-effects term")
    if not columns and not intercept:
        raise ValueError(f"Random-effects term '({inner})' has no coefficients")
    return RandomTerm(columns=columns, intercept=intercept, group=_check_name(group, "grouping factor"))


def parse_formula(text: str) -> Formula:
    """
    Parse a model formula.

    Parameters
    ----------
    text : str
        Formula such as ``"reaction ~ 1 + days + (1 + days | subj)"``

    Returns
    -------
    Formula

    Examples
    --------
    >>> f = parse_formula("y ~ x + (1 | g)")
    >>> f.fixed, f.random[0].group
    (['x'], 'g')
    """
    if not isinstance(text, str):
        raise ValueError("formula must be a string")
    sides = text.split("~")
    if len(sides) != 2:
        raise ValueError(f"Formula must contain exactly one '~': '{text}'")
    response = _check_name(sides[0].strip(), "response")
    rhs = sides[1].strip()
    if not rhs:
        raise ValueError(f"Formula has an empty right-hand side: '{text}'")

    fixed_parts, random_terms = [], []
    for term in _split_top(rhs, "+"):
        if term == "":
            raise ValueError(f"Empty term in formula '{text}'")
        if term.startswith("(") and term.endswith(")"):
            random_terms.append(_parse_random(term[1:-1]))
        else:
            fixed_parts.append(term)

    fixed, intercept = _parse_effects(" + ".join(fixed_parts), "fixed effects") if fixed_parts else ([], True)
    if response in fixed:
        raise ValueError(f"Response '{response}' also appears as a predictor")

    return Formula(
        response=response,
        fixed=fixed,
        intercept=intercept,
        random=random_terms,
        text=" ".join(text.split()),
    )
