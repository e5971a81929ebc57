"""
Control parameters for mixed-model fitting.
"""

import os

# Default Cholesky backend, overridable per fit through FitControl
DEFAULT_CHOLESKY = os.getenv("MIXEDTABLES_CHOLESKY", "auto")

OPTIMIZERS = ("L-BFGS-B", "Powell", "Nelder-Mead")
CHOLESKY_BACKENDS = ("auto", "cholmod", "dense")


class FitControl:
    """
    Control parameters for the profiled-deviance optimizer.

    Parameters
    ----------
    tolerance : float, default=1e-8
        Convergence tolerance passed to the optimizer
    max_iter : int, default=1000
        Maximum number of optimizer iterations
    monitoring : bool, default=False
        Whether to print the objective at each evaluation
    optimizer : str, default="L-BFGS-B"
        scipy.optimize.minimize method: "L-BFGS-B", "Powell" or "Nelder-Mead"
    cholesky : str, optional
        Factorization backend: "auto", "cholmod" or "dense". Defaults to the
        MIXEDTABLES_CHOLESKY environment variable, else "auto".
    """

    def __init__(
        self,
        tolerance: float = 1e-8,
        max_iter: int = 1000,
        monitoring: bool = False,
        optimizer: str = "L-BFGS-B",
        cholesky: str = None
    ):
        if optimizer not in OPTIMIZERS:
            raise ValueError(f"optimizer must be one of {OPTIMIZERS}, got '{optimizer}'")
        cholesky = cholesky or DEFAULT_CHOLESKY
        if cholesky not in CHOLESKY_BACKENDS:
            raise ValueError(f"cholesky must be one of {CHOLESKY_BACKENDS}, got '{cholesky}'")
        if max_iter < 1:
            raise ValueError("max_iter must be >= 1")

        self.tolerance = tolerance
        self.max_iter = max_iter
        self.monitoring = monitoring
        self.optimizer = optimizer
        self.cholesky = cholesky

    def __repr__(self):
        return (f"FitControl(tolerance={self.tolerance}, max_iter={self.max_iter}, "
                f"optimizer='{self.optimizer}', cholesky='{self.cholesky}')")
