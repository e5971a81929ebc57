"""
Test cases for the profiled deviance.

The blocked-Cholesky evaluation is checked against the marginal likelihood
computed directly from V = σ²(I + ZΛΛ'Z') with dense linear algebra.
"""

import pytest
import numpy as np
import scipy.sparse as sp

import sys
import os
# Add parent directory to path to find mixedtables package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mixedtables.datasets import simulate_sleepstudy
from mixedtables.models.design import build_design
from mixedtables.models.likelihood import (
    CholeskyFactor, ProfiledDeviance, is_cholmod_available, resolve_backend
)


def direct_objective(design, theta, reml):
    """-2 log-likelihood with σ² profiled out, from the n x n marginal covariance."""
    X, y = design.X, design.y
    n, p = X.shape
    ZL = (design.Z @ design.Lambda(theta)).toarray()
    V0 = np.eye(n) + ZL @ ZL.T
    V0inv = np.linalg.inv(V0)
    XtVX = X.T @ V0inv @ X
    beta = np.linalg.solve(XtVX, X.T @ V0inv @ y)
    resid = y - X @ beta
    r2 = resid @ V0inv @ resid
    logdet_V0 = np.linalg.slogdet(V0)[1]
    if reml:
        return (logdet_V0 + np.linalg.slogdet(XtVX)[1]
                + (n - p) * (1 + np.log(2 * np.pi * r2 / (n - p)))), beta
    return logdet_V0 + n * (1 + np.log(2 * np.pi * r2 / n)), beta


class TestProfiledDeviance:
    """Compare the PLS evaluation with the direct formula."""

    def setup_method(self):
        self.data = simulate_sleepstudy(n_subjects=8, n_days=6, seed=42)

    @pytest.mark.parametrize("reml", [False, True])
    def test_random_intercept_matches_direct(self, reml):
        design = build_design("reaction ~ 1 + days + (1 | subj)", self.data)
        dev = ProfiledDeviance(design, reml=reml, backend="dense")

        for theta in ([0.0], [0.3], [1.0], [2.5]):
            theta = np.array(theta)
            expected, beta = direct_objective(design, theta, reml)
            sol = dev.solve(theta)
            assert sol.objective == pytest.approx(expected, rel=1e-9)
            np.testing.assert_allclose(sol.beta, beta, rtol=1e-8)

    @pytest.mark.parametrize("reml", [False, True])
    def test_correlated_slope_matches_direct(self, reml):
        design = build_design("reaction ~ 1 + days + (1 + days | subj)", self.data)
        dev = ProfiledDeviance(design, reml=reml, backend="dense")

        theta = np.array([0.9, 0.05, 0.25])
        expected, _ = direct_objective(design, theta, reml)
        assert dev(theta) == pytest.approx(expected, rel=1e-9)
        assert dev.feval == 1

    def test_penalized_residual_sum_of_squares(self):
        """r² equals |y - Xβ - ZΛu|² + |u|² at the PLS solution."""
        design = build_design("reaction ~ 1 + days + (1 + days | subj)", self.data)
        dev = ProfiledDeviance(design, backend="dense")
        theta = np.array([0.8, -0.1, 0.3])
        sol = dev.solve(theta)

        resid = design.y - design.X @ sol.beta - design.Z @ sol.b
        assert sol.r2 == pytest.approx(resid @ resid + sol.u @ sol.u, rel=1e-9)
        np.testing.assert_allclose(sol.b, design.Lambda(theta) @ sol.u)

    def test_sigma2(self):
        design = build_design("reaction ~ 1 + days + (1 | subj)", self.data)
        ml = ProfiledDeviance(design, reml=False, backend="dense").solve(np.array([1.0]))
        reml = ProfiledDeviance(design, reml=True, backend="dense").solve(np.array([1.0]))

        assert ml.sigma2 == pytest.approx(ml.r2 / design.n)
        assert reml.sigma2 == pytest.approx(reml.r2 / (design.n - design.p))

    def test_zero_theta_is_ordinary_least_squares(self):
        design = build_design("reaction ~ 1 + days + (1 | subj)", self.data)
        sol = ProfiledDeviance(design, backend="dense").solve(np.array([0.0]))

        beta_ols, *_ = np.linalg.lstsq(design.X, design.y, rcond=None)
        np.testing.assert_allclose(sol.beta, beta_ols, rtol=1e-10)
        assert sol.logdet_A == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(sol.u, 0.0, atol=1e-12)

    def test_wrong_theta_length(self):
        design = build_design("reaction ~ 1 + days + (1 | subj)", self.data)
        dev = ProfiledDeviance(design, backend="dense")
        with pytest.raises(ValueError):
            dev(np.array([1.0, 0.0]))

    def test_reml_needs_residual_degrees_of_freedom(self):
        data = self.data.iloc[:2].copy()
        data["subj"] = ["a", "b"]
        design = build_design("reaction ~ 1 + days + (1 | subj)", data)
        with pytest.raises(ValueError, match="REML requires"):
            ProfiledDeviance(design, reml=True, backend="dense")

    @pytest.mark.skipif(not is_cholmod_available(),
                        reason="CHOLMOD not available (requires scikit-sparse with SuiteSparse)")
    def test_cholmod_matches_dense(self):
        design = build_design("reaction ~ 1 + days + (1 + days | subj)", self.data)
        theta = np.array([0.9, 0.05, 0.25])
        dense = ProfiledDeviance(design, backend="dense").solve(theta)
        sparse = ProfiledDeviance(design, backend="cholmod").solve(theta)

        assert sparse.objective == pytest.approx(dense.objective, rel=1e-10)
        np.testing.assert_allclose(sparse.beta, dense.beta, rtol=1e-8)
        np.testing.assert_allclose(sparse.b, dense.b, rtol=1e-7, atol=1e-9)


class TestCholeskyFactor:

    def setup_method(self):
        rng = np.random.default_rng(0)
        B = rng.normal(size=(6, 6))
        self.A = sp.csc_matrix(B @ B.T + 6 * np.eye(6))

    def test_dense_solve_and_logdet(self):
        f = CholeskyFactor(self.A, backend="dense")
        b = np.arange(6.0)

        np.testing.assert_allclose(self.A @ f.solve(b), b, atol=1e-10)
        assert f.logdet() == pytest.approx(np.linalg.slogdet(self.A.toarray())[1])

    def test_matrix_right_hand_side(self):
        f = CholeskyFactor(self.A, backend="dense")
        B = np.eye(6)[:, :2]
        np.testing.assert_allclose(self.A @ f.solve(B), B, atol=1e-10)

    def test_not_positive_definite(self):
        bad = sp.csc_matrix(-np.eye(3))
        with pytest.raises(RuntimeError, match="factorization failed") as excinfo:
            CholeskyFactor(bad, backend="dense")
        assert isinstance(excinfo.value.__cause__, np.linalg.LinAlgError)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            resolve_backend("qr")

    def test_auto_backend(self):
        expected = "cholmod" if is_cholmod_available() else "dense"
        assert resolve_backend("auto") == expected

    @pytest.mark.skipif(is_cholmod_available(), reason="scikit-sparse is installed")
    def test_cholmod_missing(self):
        with pytest.raises(ImportError, match="scikit-sparse"):
            resolve_backend("cholmod")
