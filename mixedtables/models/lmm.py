"""
Linear mixed models fitted by minimizing the profiled deviance.
"""

from __future__ import annotations
import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.stats import chi2, norm

from ..control import FitControl
from .design import build_design
from .formula import Formula, parse_formula
from .likelihood import PLSSolution, ProfiledDeviance

# θ components closer than this to their lower bound mark a singular fit
SINGULAR_TOL = 1e-4


@dataclass
class OptSummary:
    """
    Summary of the covariance-parameter optimization.

    Attributes
    ----------
    initial : np.ndarray
        Starting θ
    final : np.ndarray
        θ at the optimum
    finitial : float
        Objective at the starting value
    fmin : float
        Objective at the optimum
    feval : int
        Number of objective evaluations
    optimizer : str
        scipy.optimize.minimize method
    converged : bool
        Whether the optimizer reported success
    reml : bool
        Whether the REML criterion was optimized
    message : str
        Optimizer status message
    """
    initial: np.ndarray
    final: np.ndarray
    finitial: float
    fmin: float
    feval: int
    optimizer: str
    converged: bool
    reml: bool
    message: str = ""


class LinearMixedModel:
    """
    Linear mixed-effects model.

    Parameters
    ----------
    formula : str or Formula
        Model formula, e.g. ``"reaction ~ 1 + days + (1 + days | subj)"``
    data : pd.DataFrame
        Data containing every column named in the formula
    reml : bool, default=False
        Estimate by REML instead of maximum likelihood
    control : FitControl, optional
        Optimizer settings

    Attributes
    ----------
    design : ModelDesign
        Response, model matrices and random-effects terms
    optsum : OptSummary or None
        Optimization summary, set by :meth:`fit`

    Examples
    --------
    >>> data = simulate_sleepstudy(seed=1)
    >>> m = LinearMixedModel("reaction ~ 1 + days + (1 + days | subj)", data).fit()
    >>> m.coeftable()
    """

    def __init__(
        self,
        formula: Union[str, Formula],
        data: pd.DataFrame,
        reml: bool = False,
        control: Optional[FitControl] = None
    ):
        self.formula = parse_formula(formula) if isinstance(formula, str) else formula
        self.reml = reml
        self.control = control or FitControl()
        self.design = build_design(self.formula, data)
        if not self.design.terms:
            raise ValueError("Formula has no random-effects terms")
        self.deviance_fn = ProfiledDeviance(self.design, reml=reml, backend=self.control.cholesky)
        self.optsum: Optional[OptSummary] = None
        self._solution: Optional[PLSSolution] = None

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def fit(self) -> "LinearMixedModel":
        """Optimize θ and store the estimates. Returns self."""
        ctrl = self.control
        dev = self.deviance_fn
        dev.feval = 0
        x0 = self.design.theta_init
        lower = self.design.lower
        bounds = [(None if np.isinf(lo) else lo, None) for lo in lower]

        def objective(theta):
            val = dev(theta)
            if ctrl.monitoring:
                print(f"[LMM feval {dev.feval:3d}] objective={val:.6f} "
                      f"theta={np.array2string(np.asarray(theta), precision=5)}")
            return val

        finitial = objective(x0)

        if ctrl.optimizer == "L-BFGS-B":
            options = {"maxiter": ctrl.max_iter, "ftol": ctrl.tolerance}
        elif ctrl.optimizer == "Powell":
            options = {"maxiter": ctrl.max_iter, "xtol": ctrl.tolerance, "ftol": ctrl.tolerance}
        else:
            options = {"maxiter": ctrl.max_iter, "xatol": ctrl.tolerance, "fatol": ctrl.tolerance}

        res = minimize(objective, x0, method=ctrl.optimizer, bounds=bounds, options=options)

        theta = np.maximum(np.asarray(res.x, dtype=float), lower)
        self._solution = dev.solve(theta)
        converged = bool(res.success)

        self.optsum = OptSummary(
            initial=x0,
            final=theta,
            finitial=float(finitial),
            fmin=self._solution.objective,
            feval=dev.feval,
            optimizer=ctrl.optimizer,
            converged=converged,
            reml=self.reml,
            message=str(res.message),
        )

        if ctrl.monitoring:
            print(f"[LMM] {'Converged' if converged else 'Stopped'} after {dev.feval} "
                  f"evaluations, objective={self._solution.objective:.6f}")
        if not converged:
            warnings.warn(f"Optimizer did not converge: {res.message}")
        if self.is_singular:
            warnings.warn("Fit is singular: some variance components are estimated as zero")
        return self

    def _require_fit(self) -> PLSSolution:
        if self._solution is None:
            raise RuntimeError("Model has not been fitted; call fit() first")
        return self._solution

    @property
    def is_fitted(self) -> bool:
        return self._solution is not None

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    @property
    def theta(self) -> np.ndarray:
        return self._require_fit().theta

    @property
    def beta(self) -> pd.Series:
        return pd.Series(self._require_fit().beta, index=self.design.fixed.names, name="estimate")

    @property
    def sigma(self) -> float:
        """Residual standard deviation."""
        return float(np.sqrt(self._require_fit().sigma2))

    @property
    def objective(self) -> float:
        """-2 log-likelihood (ML) or -2 REML criterion at the optimum."""
        return self._require_fit().objective

    @property
    def loglikelihood(self) -> float:
        return -0.5 * self.objective

    @property
    def nobs(self) -> int:
        return self.design.n

    @property
    def dof(self) -> int:
        """Number of estimated parameters: β, θ and σ."""
        return self.design.p + self.design.n_theta + 1

    @property
    def aic(self) -> float:
        return self.objective + 2 * self.dof

    @property
    def bic(self) -> float:
        return self.objective + self.dof * np.log(self.nobs)

    @property
    def is_singular(self) -> bool:
        theta = self.theta
        lower = self.design.lower
        finite = np.isfinite(lower)
        return bool(np.any(np.abs(theta[finite] - lower[finite]) < SINGULAR_TOL))

    @property
    def fitted(self) -> np.ndarray:
        sol = self._require_fit()
        return self.design.X @ sol.beta + self.design.Z @ sol.b

    @property
    def residuals(self) -> np.ndarray:
        return self.design.y - self.fitted

    def vcov(self) -> pd.DataFrame:
        """Covariance of the fixed-effects estimates, σ²(R_X'R_X)⁻¹."""
        sol = self._require_fit()
        names = self.design.fixed.names
        V = sol.sigma2 * np.linalg.inv(sol.RXtRX)
        return pd.DataFrame(V, index=names, columns=names)

    @property
    def stderror(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.vcov().to_numpy())),
                         index=self.design.fixed.names, name="std_error")

    def coeftable(self) -> pd.DataFrame:
        """Estimates, standard errors, Wald z statistics and two-sided p-values."""
        est = self.beta
        se = self.stderror
        z = est / se
        return pd.DataFrame({
            "estimate": est,
            "std_error": se,
            "z": z,
            "p_value": 2 * norm.sf(np.abs(z)),
        })

    def _term_keys(self) -> List[str]:
        keys, seen = [], {}
        for term in self.design.terms:
            count = seen.get(term.group, 0)
            keys.append(term.group if count == 0 else f"{term.group}.{count + 1}")
            seen[term.group] = count + 1
        return keys

    def ranef(self) -> Dict[str, pd.DataFrame]:
        """
        Conditional modes of the random effects.

        Returns
        -------
        dict
            Grouping factor -> DataFrame with one row per level and one column
            per coefficient. A grouping factor used in more than one term gets
            keys ``"g"``, ``"g.2"``, ...
        """
        sol = self._require_fit()
        out = {}
        for key, term, sl in zip(self._term_keys(), self.design.terms, self.design.u_slices):
            values = sol.b[sl].reshape(term.n_levels, term.k)
            out[key] = pd.DataFrame(values, index=pd.Index(term.levels, name=term.group),
                                    columns=term.names)
        return out

    def varcorr(self) -> pd.DataFrame:
        """Variance components: one row per random coefficient plus the residual."""
        sol = self._require_fit()
        records = []
        parts = self.design.split_theta(sol.theta)
        for key, term, th in zip(self._term_keys(), self.design.terms, parts):
            cov = term.covariance(th, sol.sigma2)
            for i, name in enumerate(term.names):
                records.append({"group": key, "name": name,
                                "variance": cov[i, i], "std": np.sqrt(cov[i, i])})
        records.append({"group": "Residual", "name": "",
                        "variance": sol.sigma2, "std": np.sqrt(sol.sigma2)})
        return pd.DataFrame.from_records(records, columns=["group", "name", "variance", "std"])

    def correlations(self) -> Dict[str, pd.DataFrame]:
        """Correlation matrix of the random coefficients of each term."""
        sol = self._require_fit()
        out = {}
        parts = self.design.split_theta(sol.theta)
        for key, term, th in zip(self._term_keys(), self.design.terms, parts):
            cov = term.covariance(th, sol.sigma2)
            sd = np.sqrt(np.diag(cov))
            with np.errstate(divide="ignore", invalid="ignore"):
                corr = cov / np.outer(sd, sd)
            np.fill_diagonal(corr, 1.0)
            out[key] = pd.DataFrame(corr, index=term.names, columns=term.names)
        return out

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        """
        Conditional predictions.

        Parameters
        ----------
        newdata : pd.DataFrame, optional
            New rows; defaults to the fitted data. Levels of a grouping factor
            not seen during fitting contribute no random effect.

        Returns
        -------
        np.ndarray
        """
        sol = self._require_fit()
        if newdata is None:
            return self.fitted
        needed = [v for v in self.formula.variables if v != self.formula.response]
        missing_cols = [c for c in needed if c not in newdata.columns]
        if missing_cols:
            raise ValueError(f"Missing columns in data: {missing_cols}")
        if newdata[needed].isna().any().any():
            raise ValueError("newdata contains missing values in model columns")

        pred = self.design.fixed.model_matrix(newdata) @ sol.beta
        for term, sl in zip(self.design.terms, self.design.u_slices):
            b = sol.b[sl].reshape(term.n_levels, term.k)
            lookup = {lev: i for i, lev in enumerate(term.levels)}
            raw = term.raw_matrix(newdata)
            for row, level in enumerate(newdata[term.group].tolist()):
                idx = lookup.get(level)
                if idx is not None:
                    pred[row] += raw[row] @ b[idx]
        return pred

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self):
        """Print a model summary."""
        self._require_fit()
        method = "REML" if self.reml else "maximum likelihood"
        print(f"Linear mixed model fit by {method}")
        print(f"  {self.formula}")
        print("=" * 60)
        if self.reml:
            print(f"REML criterion at convergence: {self.objective:.4f}")
        else:
            print("  logLik     -2 logLik        AIC        BIC")
            print(f"{self.loglikelihood:9.4f}  {self.objective:11.4f}  "
                  f"{self.aic:9.4f}  {self.bic:9.4f}")

        print("\nVariance components:")
        vc = self.varcorr()
        for _, r in vc.iterrows():
            print(f"  {r['group']:12s} {r['name']:14s} {r['variance']:12.4f} {r['std']:10.4f}")

        groups = ", ".join(f"{t.group} {t.n_levels}" for t in self.design.terms)
        print(f"  Number of obs: {self.nobs}; levels of grouping factors: {groups}")

        print("\nFixed-effects parameters:")
        print(self.coeftable().to_string(float_format=lambda v: f"{v:.4f}"))
        if self.is_singular:
            print("\nNote: singular fit")

    def __repr__(self):
        state = "fitted" if self.is_fitted else "unfitted"
        return f"LinearMixedModel('{self.formula}', reml={self.reml}, {state})"


def fit_lmm(formula: Union[str, Formula], data: pd.DataFrame, reml: bool = False,
            control: Optional[FitControl] = None) -> LinearMixedModel:
    """Construct and fit a :class:`LinearMixedModel`."""
    return LinearMixedModel(formula, data, reml=reml, control=control).fit()


def lrt(*models: LinearMixedModel) -> pd.DataFrame:
    """
    Likelihood-ratio tests for a sequence of nested models.

    Models are sorted by degrees of freedom; each is compared with the
    previous one.

    Parameters
    ----------
    *models : LinearMixedModel
        At least two fitted ML models on the same observations

    Returns
    -------
    pd.DataFrame
        Columns: formula, dof, deviance, chisq, chidf, p_value
    """
    if len(models) < 2:
        raise ValueError("lrt needs at least two models")
    for m in models:
        m._require_fit()
        if m.reml:
            raise ValueError("Likelihood-ratio tests require ML fits, not REML")
    if len({m.nobs for m in models}) != 1:
        raise ValueError("All models must be fitted to the same number of observations")

    ordered = sorted(models, key=lambda m: m.dof)
    records = []
    prev = None
    for m in ordered:
        rec = {"formula": str(m.formula), "dof": m.dof, "deviance": m.objective,
               "chisq": np.nan, "chidf": np.nan, "p_value": np.nan}
        if prev is not None:
            stat = max(prev.objective - m.objective, 0.0)
            df = m.dof - prev.dof
            rec.update(chisq=stat, chidf=df,
                       p_value=float(chi2.sf(stat, df)) if df > 0 else np.nan)
        records.append(rec)
        prev = m
    return pd.DataFrame.from_records(
        records, columns=["formula", "dof", "deviance", "chisq", "chidf", "p_value"]
    )
