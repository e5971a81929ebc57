"""
Example datasets for mixedtables.
"""

import numpy as np
import pandas as pd
from typing import Optional

from .tables import read_table

MANYBABIES_URL = (
    "https://github.com/manybabies/mb1-analysis-public/raw/master/"
    "processed_data/02_validated_output.csv"
)


def load_manybabies(url: str = MANYBABIES_URL, timeout: float = 60.0) -> pd.DataFrame:
    """
    Download the validated ManyBabies 1 trial table.

    The CSV marks missing cells with ``NA`` and logicals with ``TRUE`` /
    ``FALSE``. Requires network access.

    Returns
    -------
    pd.DataFrame
        One row per trial, with ``lab``, ``subid``, ``subid_unique``,
        ``preterm`` and many more columns
    """
    return read_table(
        url,
        missing_strings=["NA"],
        true_strings=["TRUE"],
        false_strings=["FALSE"],
        timeout=timeout,
        low_memory=False,
    )


def simulate_validated_output(
    n_labs: int = 6,
    n_subjects: int = 12,
    n_trials: int = 4,
    shared_subids: bool = True,
    missing_rate: float = 0.1,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Generate a small table shaped like the ManyBabies validated output.

    Parameters
    ----------
    n_labs : int, default=6
        Number of labs
    n_subjects : int, default=12
        Babies per lab
    n_trials : int, default=4
        Trials per baby (alternating IDS / ADS)
    shared_subids : bool, default=True
        If True every lab numbers its babies "1", "2", ..., so ``subid`` is
        not unique across labs. ``subid_unique`` always is.
    missing_rate : float, default=0.1
        Fraction of babies whose ``preterm`` status is missing
    seed : int, optional
        Random seed for reproducibility

    Returns
    -------
    pd.DataFrame
        Columns: lab, subid, subid_unique, trial_num, trial_type, preterm,
        looking_time
    """
    if n_labs < 1 or n_subjects < 1 or n_trials < 1:
        raise ValueError("n_labs, n_subjects and n_trials must all be >= 1")
    if not 0.0 <= missing_rate <= 1.0:
        raise ValueError("missing_rate must be in [0, 1]")

    rng = np.random.default_rng(seed)

    labs = [f"lab{i + 1}" for i in range(n_labs)]
    lab_effects = rng.normal(0, 1.5, n_labs)

    records = []
    for li, lab in enumerate(labs):
        for s in range(n_subjects):
            subid = str(s + 1) if shared_subids else f"{lab}-{s + 1}"
            subid_unique = f"{lab}:{s + 1}"
            if rng.random() < missing_rate:
                preterm = None
            else:
                preterm = "preterm" if rng.random() < 0.1 else "full term"
            baby_effect = rng.normal(0, 1.0)
            for t in range(n_trials):
                trial_type = "IDS" if t % 2 == 0 else "ADS"
                ids_bonus = 0.8 if trial_type == "IDS" else 0.0
                looking = 7.5 + lab_effects[li] + baby_effect + ids_bonus + rng.normal(0, 1.2)
                records.append({
                    "lab": lab,
                    "subid": subid,
                    "subid_unique": subid_unique,
                    "trial_num": t + 1,
                    "trial_type": trial_type,
                    "preterm": preterm,
                    "looking_time": round(max(looking, 2.0), 3),
                })

    return pd.DataFrame.from_records(records)


def simulate_sleepstudy(
    n_subjects: int = 18,
    n_days: int = 10,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Simulate reaction times under sleep deprivation.

    Each subject has its own intercept and slope on ``days``:

        reaction = (251 + b0) + (10.5 + b1) * days + e

    with sd(b0) = 25, sd(b1) = 6, sd(e) = 25.

    Returns
    -------
    pd.DataFrame
        Columns: subj, days, reaction
    """
    if n_subjects < 2:
        raise ValueError("n_subjects must be >= 2")
    if n_days < 2:
        raise ValueError("n_days must be >= 2")

    rng = np.random.default_rng(seed)

    cov = np.array([[25.0 ** 2, 0.1 * 25.0 * 6.0],
                    [0.1 * 25.0 * 6.0, 6.0 ** 2]])
    b = rng.multivariate_normal(np.zeros(2), cov, size=n_subjects)

    subj = np.repeat([f"S{300 + i + 8}" for i in range(n_subjects)], n_days)
    days = np.tile(np.arange(n_days), n_subjects)
    b0 = np.repeat(b[:, 0], n_days)
    b1 = np.repeat(b[:, 1], n_days)
    reaction = 251.0 + b0 + (10.5 + b1) * days + rng.normal(0, 25.0, n_subjects * n_days)

    return pd.DataFrame({
        "subj": pd.Categorical(subj),
        "days": days.astype(float),
        "reaction": reaction,
    })
