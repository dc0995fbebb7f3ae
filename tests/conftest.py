import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest


def make_lung(n=160, seed=0):
    """
    Synthetic cohort with the lung columns, R status coding and some missing values.
    """
    rng = np.random.default_rng(seed)
    age = rng.normal(62, 9, n).round()
    sex = rng.choice([1, 2], n, p=[0.6, 0.4])
    ecog = rng.choice([0, 1, 2, 3], n, p=[0.3, 0.45, 0.22, 0.03]).astype(float)
    karno = (100 - 10 * ecog - rng.choice([0, 10], n)).astype(float)

    linpred = 0.02 * (age - 62) - 0.5 * (sex - 1) + 0.45 * ecog
    event_time = rng.exponential(scale=350 * np.exp(-linpred))
    censor_time = rng.uniform(100, 900, n)
    time = np.ceil(np.minimum(event_time, censor_time))
    status = np.where(event_time <= censor_time, 2, 1)

    df = pd.DataFrame({
        'inst': rng.integers(1, 30, n).astype(float),
        'time': time,
        'status': status,
        'age': age,
        'sex': sex,
        'ph.ecog': ecog,
        'ph.karno': karno,
        'pat.karno': karno - rng.choice([0, 10, 20], n),
        'meal.cal': rng.normal(930, 350, n).round(),
        'wt.loss': rng.normal(10, 13, n).round(),
    })

    df.loc[rng.choice(n, 3, replace=False), 'ph.ecog'] = np.nan
    df.loc[rng.choice(n, 4, replace=False), 'pat.karno'] = np.nan
    df.loc[rng.choice(n, 30, replace=False), 'meal.cal'] = np.nan
    df.loc[rng.choice(n, 10, replace=False), 'wt.loss'] = np.nan
    return df


@pytest.fixture
def raw_lung():
    return make_lung()


@pytest.fixture
def lung_csv(tmp_path, raw_lung):
    path = tmp_path / 'lung.csv'
    raw_lung.to_csv(path, index=False)
    return path


@pytest.fixture
def cohort():
    """
    Clean cohort with 0/1 events and no missing values.
    """
    df = make_lung(n=200, seed=1).dropna(subset=['ph.ecog', 'pat.karno']).reset_index(drop=True)
    df['status'] = (df['status'] == 2).astype(int)
    return df
