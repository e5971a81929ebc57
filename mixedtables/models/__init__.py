"""
Linear mixed models estimated by minimizing the profiled deviance.

This module provides:
- parse_formula(): model formulas with random-effects terms ``(expr | group)``
- build_design(): fixed-effects matrix, sparse random-effects matrix and Λ(θ)
- ProfiledDeviance: ML / REML objective via a blocked Cholesky factorization
- LinearMixedModel / fit_lmm(): optimization over θ and fitted-model queries
- lrt(): likelihood-ratio tests for nested fits
"""

from .formula import Formula, RandomTerm, parse_formula
from .design import FixedEffects, ModelDesign, RandomEffectsTerm, build_design
from .likelihood import CholeskyFactor, PLSSolution, ProfiledDeviance, is_cholmod_available
from .lmm import LinearMixedModel, OptSummary, fit_lmm, lrt

__all__ = [
    'Formula',
    'RandomTerm',
    'parse_formula',
    'FixedEffects',
    'ModelDesign',
    'RandomEffectsTerm',
    'build_design',
    'CholeskyFactor',
    'PLSSolution',
    'ProfiledDeviance',
    'is_cholmod_available',
    'LinearMixedModel',
    'OptSummary',
    'fit_lmm',
    'lrt',
]
