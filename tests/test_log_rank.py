"""Test the log rank test against lifelines."""

import numpy as np
import pandas as pd
import pytest

from lifelines.statistics import logrank_test

from log_rank import log_rank_test, group_event_table


def test_matches_lifelines(cohort):
    Z, p = log_rank_test(cohort, 'sex')

    men, women = cohort[cohort['sex'] == 1], cohort[cohort['sex'] == 2]
    expected = logrank_test(men['time'], women['time'], men['status'], women['status'])

    assert Z ** 2 == pytest.approx(expected.test_statistic, rel=1e-8)
    assert p == pytest.approx(expected.p_value, rel=1e-6)


def test_sign_follows_second_group():
    # Second group dies first so it has more deaths than expected
    df = pd.DataFrame({'time': [1, 2, 3, 4, 5, 6, 7, 8],
                       'status': [1, 1, 1, 1, 1, 1, 1, 1],
                       'group': [2, 2, 2, 1, 2, 1, 1, 1]})
    Z, p = log_rank_test(df, 'group')
    assert Z > 0
    assert 0 < p < 1


def test_identical_groups():
    df = pd.DataFrame({'time': [1, 1, 2, 2, 3, 3], 'status': [1, 1, 0, 0, 1, 1],
                       'group': [0, 1, 0, 1, 0, 1]})
    Z, p = log_rank_test(df, 'group')
    assert Z == pytest.approx(0.0)
    assert p == pytest.approx(1.0)


def test_no_events():
    df = pd.DataFrame({'time': [1, 2, 3], 'status': [0, 0, 0], 'group': [0, 1, 1]})
    Z, p = log_rank_test(df, 'group')
    assert np.isnan(Z) and np.isnan(p)


def test_needs_two_groups(cohort):
    with pytest.raises(ValueError, match='two groups'):
        log_rank_test(cohort, 'ph.ecog')


def test_group_event_table(cohort):
    table = group_event_table(cohort, 'sex')
    assert table['patients'].sum() == len(cohort)
    assert table['deaths'].sum() == cohort['status'].sum()
