"""
Plotting functions for mixed models and consistency checks.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from typing import Any, Dict, Optional, Set, Tuple


def plot_ranef(model: 'LinearMixedModel', group: Optional[str] = None,
               figsize: Optional[Tuple[int, int]] = None,
               ax: Optional[plt.Axes] = None) -> plt.Figure:
    """
    Caterpillar plot of the conditional modes of one grouping factor.

    Levels are sorted by the first coefficient; one panel per coefficient.

    Parameters
    ----------
    model : LinearMixedModel
        Fitted model
    group : str, optional
        Key of ``model.ranef()``; defaults to the first term
    figsize : tuple, optional
        Figure size
    ax : plt.Axes, optional
        Axes to draw into (only for terms with a single coefficient)

    Returns
    -------
    plt.Figure
    """
    re = model.ranef()
    if group is None:
        group = next(iter(re))
    if group not in re:
        raise ValueError(f"Unknown grouping factor '{group}'; choose from {list(re)}")
    modes = re[group]
    modes = modes.sort_values(modes.columns[0])
    k = modes.shape[1]

    if ax is not None:
        if k != 1:
            raise ValueError("ax can only be given for single-coefficient terms")
        fig = ax.get_figure()
        axes = [ax]
    else:
        height = max(3, 0.2 * len(modes) + 1)
        fig, axes = plt.subplots(1, k, figsize=figsize or (4 * k, height), sharey=True,
                                 squeeze=False)
        axes = axes[0]

    labels = [str(lev) for lev in modes.index]
    ypos = np.arange(len(modes))
    for a, col in zip(axes, modes.columns):
        a.scatter(modes[col].to_numpy(), ypos, s=15)
        a.axvline(x=0, color='r', linestyle='--', alpha=0.8)
        a.set_title(col)
        a.grid(True, alpha=0.3)
    axes[0].set_yticks(ypos)
    axes[0].set_yticklabels(labels)
    axes[0].set_ylabel(group)
    fig.suptitle(f"Conditional modes: {group}")
    plt.tight_layout()
    return fig


def plot_residuals(model: 'LinearMixedModel',
                   figsize: Tuple[int, int] = (12, 5)) -> plt.Figure:
    """Residuals vs fitted values and a normal QQ plot of the residuals."""
    fitted = model.fitted
    residuals = model.residuals

    fig, axes = plt.subplots(1, 2, figsize=figsize)
    axes[0].scatter(fitted, residuals, alpha=0.6, s=20)
    axes[0].axhline(y=0, color='r', linestyle='--', alpha=0.8)
    axes[0].set_xlabel('Fitted Values')
    axes[0].set_ylabel('Residuals')
    axes[0].set_title('Residuals vs Fitted Values')
    axes[0].grid(True, alpha=0.3)

    stats.probplot(residuals, dist="norm", plot=axes[1])
    axes[1].set_title('Normal Q-Q Plot')
    axes[1].grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def plot_value_counts(value_sets: Dict[Any, Set], figsize: Tuple[int, int] = (8, 5),
                      ax: Optional[plt.Axes] = None) -> plt.Figure:
    """
    Histogram of the number of distinct values per key.

    Parameters
    ----------
    value_sets : dict
        Output of :func:`mixedtables.consistency.all_values`

    Returns
    -------
    plt.Figure
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()

    counts = pd.Series([len(s) for s in value_sets.values()], name="n_values", dtype=int)
    if len(counts):
        sns.histplot(x=counts, discrete=True, ax=ax)
    ax.set_xlabel('Distinct values per key')
    ax.set_ylabel('Number of keys')
    ax.set_title(f'{int((counts > 1).sum())} of {len(counts)} keys inconsistent')
    ax.grid(True, alpha=0.3)
    return fig
