"""
Design matrices for linear mixed models.

The model is

    y = X β + Z b + ε,    b = Λ(θ) u,    u ~ N(0, σ² I),    ε ~ N(0, σ² I)

X is a dense fixed-effects matrix. Z is the sparse horizontal concatenation of
one block per random-effects term. Within a term with k coefficients per level
the columns are ordered level-major (all k coefficients of level 0, then of
level 1, ...), so Λ(θ) for that term is ``I_levels ⊗ λ`` with λ a k x k
lower-triangular matrix filled from θ in column-major order.
"""

from __future__ import annotations
import warnings
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .formula import Formula, RandomTerm, parse_formula


def _is_categorical(s: pd.Series) -> bool:
    return (isinstance(s.dtype, pd.CategoricalDtype)
            or s.dtype == object
            or pd.api.types.is_string_dtype(s))


def _levels(s: pd.Series) -> List:
    """Observed levels, in category order for categoricals, sorted otherwise."""
    if isinstance(s.dtype, pd.CategoricalDtype):
        present = set(s.dropna().unique().tolist())
        return [c for c in s.cat.categories if c in present]
    observed = s.dropna().unique().tolist()
    try:
        return sorted(observed)
    except TypeError:
        return sorted(observed, key=str)


class FixedEffects:
    """
    Fixed-effects design.

    Attributes
    ----------
    X : np.ndarray
        n x p model matrix
    names : list of str
        Column names; treatment-coded factors appear as ``"factor: level"``
    rank : int
        Column rank of X
    """

    def __init__(self, X: np.ndarray, names: List[str], intercept: bool = True,
                 encodings: Optional[List[Tuple[str, Optional[List]]]] = None):
        self.X = np.asarray(X, dtype=float)
        self.names = list(names)
        self.intercept = intercept
        # (column, levels) per predictor; levels is None for numeric columns
        self.encodings = list(encodings or [])
        self.rank = int(np.linalg.matrix_rank(self.X)) if self.X.size else 0

    @property
    def p(self) -> int:
        return self.X.shape[1]

    @staticmethod
    def _encode(data: pd.DataFrame, intercept: bool,
                encodings: List[Tuple[str, Optional[List]]]) -> np.ndarray:
        n = len(data)
        cols = [np.ones(n)] if intercept else []
        for name, levels in encodings:
            s = data[name]
            if levels is None:
                cols.append(s.astype(float).to_numpy(dtype=float))
                continue
            unknown = set(s.dropna().unique().tolist()) - set(levels)
            if unknown:
                raise ValueError(f"Unknown levels for '{name}': {sorted(unknown, key=str)}")
            # treatment coding against the first level
            for level in levels[1:]:
                cols.append((s == level).to_numpy(dtype=float))
        return np.column_stack(cols) if cols else np.zeros((n, 0))

    @classmethod
    def from_data(cls, formula: Formula, data: pd.DataFrame) -> "FixedEffects":
        names = ["(Intercept)"] if formula.intercept else []
        encodings = []
        for name in formula.fixed:
            s = data[name]
            if pd.api.types.is_bool_dtype(s):
                encodings.append((name, None))
                names.append(name)
            elif _is_categorical(s):
                levels = _levels(s)
                encodings.append((name, levels))
                names.extend(f"{name}: {level}" for level in levels[1:])
            elif pd.api.types.is_numeric_dtype(s):
                encodings.append((name, None))
                names.append(name)
            else:
                raise ValueError(f"Fixed effect '{name}' has unsupported type {s.dtype}")
        X = cls._encode(data, formula.intercept, encodings)
        fe = cls(X, names, formula.intercept, encodings)
        if fe.rank < fe.p:
            raise ValueError(
                f"Fixed-effects model matrix is rank deficient (rank {fe.rank} < {fe.p} columns)"
            )
        return fe

    def model_matrix(self, data: pd.DataFrame) -> np.ndarray:
        """X for new rows, coded the same way as the fitted data."""
        return self._encode(data, self.intercept, self.encodings)


class RandomEffectsTerm:
    """
    One random-effects term ``(columns | group)``.

    Attributes
    ----------
    group : str
        Grouping factor name
    levels : list
        Observed levels of the grouping factor
    names : list of str
        Coefficient names, e.g. ``["(Intercept)", "days"]``
    Z : scipy.sparse.csc_matrix
        n x (n_levels * k) indicator-times-covariate matrix
    """

    def __init__(self, term: RandomTerm, data: pd.DataFrame):
        self.term = term
        self.group = term.group
        self.names = term.names
        k = len(self.names)

        g = data[term.group]
        self.levels = _levels(g)
        if len(self.levels) < 2:
            raise ValueError(
                f"Grouping factor '{term.group}' has insufficient levels ({len(self.levels)})"
            )
        lookup = {lev: i for i, lev in enumerate(self.levels)}
        codes = np.array([lookup[v] for v in g.tolist()], dtype=int)

        n = len(data)
        raw = self.raw_matrix(data)

        rows = np.repeat(np.arange(n), k)
        colidx = (codes[:, None] * k + np.arange(k)[None, :]).ravel()
        self.Z = sp.csc_matrix(
            (raw.ravel(), (rows, colidx)), shape=(n, len(self.levels) * k)
        )
        self.codes = codes
        self.k = k

        # lower-triangle positions of λ in column-major order
        self.template: List[Tuple[int, int]] = [
            (i, j) for j in range(k) for i in range(j, k)
        ]

    def raw_matrix(self, data: pd.DataFrame) -> np.ndarray:
        """n x k covariates of the term (intercept column first, if any)."""
        n = len(data)
        raw = []
        if self.term.intercept:
            raw.append(np.ones(n))
        for col in self.term.columns:
            s = data[col]
            if not pd.api.types.is_numeric_dtype(s) or pd.api.types.is_bool_dtype(s):
                raise ValueError(f"Random slope covariate '{col}' must be numeric")
            raw.append(s.to_numpy(dtype=float))
        return np.column_stack(raw)

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def n_theta(self) -> int:
        return len(self.template)

    @property
    def q(self) -> int:
        return self.Z.shape[1]

    @property
    def theta_init(self) -> np.ndarray:
        return np.array([1.0 if i == j else 0.0 for i, j in self.template])

    @property
    def lower(self) -> np.ndarray:
        return np.array([0.0 if i == j else -np.inf for i, j in self.template])

    def lambda_block(self, theta: np.ndarray) -> np.ndarray:
        """k x k lower-triangular relative covariance factor."""
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (self.n_theta,):
            raise ValueError(f"theta for term '{self.term}' must have length {self.n_theta}")
        lam = np.zeros((self.k, self.k))
        for t, (i, j) in zip(theta, self.template):
            lam[i, j] = t
        return lam

    def Lambda(self, theta: np.ndarray) -> sp.csc_matrix:
        """Block-diagonal factor I_levels ⊗ λ(θ)."""
        return sp.kron(sp.identity(self.n_levels, format="csc"),
                       sp.csc_matrix(self.lambda_block(theta)), format="csc")

    def covariance(self, theta: np.ndarray, sigma2: float) -> np.ndarray:
        """Covariance of one level's coefficients: σ² λλ'."""
        lam = self.lambda_block(theta)
        return sigma2 * lam @ lam.T

    def __repr__(self) -> str:
        return f"RandomEffectsTerm({self.term}, levels={self.n_levels})"


class ModelDesign:
    """
    Complete design of a linear mixed model.

    Attributes
    ----------
    y : np.ndarray
        Response
    fixed : FixedEffects
    terms : list of RandomEffectsTerm
    Z : scipy.sparse.csc_matrix
        All random-effects columns, term by term
    data : pd.DataFrame
        The complete-case rows used to build the design
    """

    def __init__(self, formula: Formula, y: np.ndarray, fixed: FixedEffects,
                 terms: List[RandomEffectsTerm], data: pd.DataFrame):
        self.formula = formula
        self.y = np.asarray(y, dtype=float)
        self.fixed = fixed
        self.terms = terms
        self.data = data
        if terms:
            self.Z = sp.hstack([t.Z for t in terms], format="csc")
        else:
            self.Z = sp.csc_matrix((len(self.y), 0))

        self.theta_slices: List[slice] = []
        self.u_slices: List[slice] = []
        t0 = u0 = 0
        for term in terms:
            self.theta_slices.append(slice(t0, t0 + term.n_theta))
            self.u_slices.append(slice(u0, u0 + term.q))
            t0 += term.n_theta
            u0 += term.q

    @property
    def X(self) -> np.ndarray:
        return self.fixed.X

    @property
    def n(self) -> int:
        return len(self.y)

    @property
    def p(self) -> int:
        return self.fixed.p

    @property
    def q(self) -> int:
        return self.Z.shape[1]

    @property
    def n_theta(self) -> int:
        return sum(t.n_theta for t in self.terms)

    @property
    def theta_init(self) -> np.ndarray:
        if not self.terms:
            return np.zeros(0)
        return np.concatenate([t.theta_init for t in self.terms])

    @property
    def lower(self) -> np.ndarray:
        if not self.terms:
            return np.zeros(0)
        return np.concatenate([t.lower for t in self.terms])

    def split_theta(self, theta: np.ndarray) -> List[np.ndarray]:
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (self.n_theta,):
            raise ValueError(f"theta must have length {self.n_theta}, got {theta.shape}")
        return [theta[s] for s in self.theta_slices]

    def Lambda(self, theta: np.ndarray) -> sp.csc_matrix:
        """Sparse block-diagonal relative covariance factor Λ(θ)."""
        parts = self.split_theta(theta)
        if not self.terms:
            return sp.csc_matrix((0, 0))
        return sp.block_diag(
            [t.Lambda(th) for t, th in zip(self.terms, parts)], format="csc"
        )


def build_design(formula, data: pd.DataFrame) -> ModelDesign:
    """
    Build the model design for ``formula`` from ``data``.

    Rows with a missing value in any column used by the formula are dropped
    with a warning.

    Parameters
    ----------
    formula : str or Formula
    data : pd.DataFrame

    Returns
    -------
    ModelDesign
    """
    if isinstance(formula, str):
        formula = parse_formula(formula)
    if not isinstance(data, pd.DataFrame):
        raise ValueError("data must be a pandas DataFrame")

    used = formula.variables
    missing_cols = [col for col in used if col not in data.columns]
    if missing_cols:
        raise ValueError(f"Missing columns in data: {missing_cols}")

    complete = data[used].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        warnings.warn(f"Dropping {n_dropped} rows with missing values in {used}")
    frame = data.loc[complete].reset_index(drop=True)
    if len(frame) == 0:
        raise ValueError("No complete observations left after removing missing values")

    response = frame[formula.response]
    if not pd.api.types.is_numeric_dtype(response) or pd.api.types.is_bool_dtype(response):
        raise ValueError(f"Response variable '{formula.response}' must be numeric")

    fixed = FixedEffects.from_data(formula, frame)
    terms = [RandomEffectsTerm(t, frame) for t in formula.random]
    return ModelDesign(formula, response.to_numpy(dtype=float), fixed, terms, frame)
