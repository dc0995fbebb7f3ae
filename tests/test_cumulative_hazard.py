"""Test cumulative hazard and hazard rates derived from Kaplan-Meier curves."""

import numpy as np
import pandas as pd
import pytest
import matplotlib.pyplot as plt

from kaplan_meier import fit_km
from cumulative_hazard import (cumulative_hazard, hazard_rates, time_at_cumulative_hazard,
                               plot_cumulative_hazard, plot_hazard_rates)


def test_minus_log_survival(cohort):
    km = fit_km(cohort['time'], cohort['status'])
    H = cumulative_hazard(km)
    np.testing.assert_allclose(H.to_numpy(), -np.log(km['S'].to_numpy()))
    assert (H >= 0).all()
    assert np.all(np.diff(H.to_numpy()) >= 0)


def test_event_then_censored():
    km = fit_km([10, 20], [1, 0])
    H = cumulative_hazard(km)
    assert H.loc[0.0] == 0.0
    assert H.loc[10.0] == pytest.approx(np.log(2))
    assert H.loc[20.0] == pytest.approx(np.log(2))


def test_infinite_when_survival_hits_zero():
    km = fit_km([10, 20], [1, 1])
    H = cumulative_hazard(km)
    assert H.loc[0.0] == 0.0
    assert H.loc[10.0] == pytest.approx(np.log(2))
    assert H.loc[20.0] == np.inf
    assert cumulative_hazard(fit_km([10], [1])).loc[10.0] == np.inf


def test_hazard_rates_between_event_times():
    km = fit_km([2, 4, 4, 8, 9], [1, 1, 0, 1, 0])
    rates = hazard_rates(km)
    assert list(rates.index) == [2.0, 4.0, 8.0]
    assert np.isnan(rates['hazard'].iloc[0])

    H = rates['cumulative_hazard']
    assert rates.loc[4.0, 'hazard'] == pytest.approx((H.loc[4.0] - H.loc[2.0]) / 2)
    assert rates.loc[8.0, 'hazard'] == pytest.approx((H.loc[8.0] - H.loc[4.0]) / 4)


def test_hazard_rates_no_events():
    rates = hazard_rates(fit_km([3, 5], [0, 0]))
    assert rates.empty
    assert np.isnan(time_at_cumulative_hazard(rates, 1.0))


def test_nearest_cumulative_hazard():
    rates = pd.DataFrame({'cumulative_hazard': [0.2, 0.9, 1.1, 1.5], 'hazard': np.nan},
                         index=[10.0, 20.0, 30.0, 40.0])
    assert time_at_cumulative_hazard(rates, 1.0) == 20.0
    assert time_at_cumulative_hazard(rates, 1.4) == 40.0
    assert time_at_cumulative_hazard(rates, 5.0) == 40.0


def test_nearest_cumulative_hazard_with_infinity():
    km = fit_km([10, 20, 30], [1, 1, 1])
    rates = hazard_rates(km)
    assert rates['cumulative_hazard'].iloc[-1] == np.inf
    # -ln(2/3) = 0.405, -ln(1/3) = 1.099
    assert time_at_cumulative_hazard(rates, 1.0) == 20.0


def test_plots_do_not_raise():
    km = fit_km([10, 20, 30, 35], [1, 1, 1, 0])
    plot_cumulative_hazard(km)
    ax = plot_hazard_rates(hazard_rates(km))
    assert ax.get_ylabel() == 'Hazard Rate (per day)'
    plt.close('all')
