#######################################################################################
# Author: Franny Dean
# Script: log_rank.py
# Function: scratch implementation of log rank test for comparing survival curves
#######################################################################################

import numpy as np

from scipy.stats import norm


#######################################################################################

## LOG RANK TEST: ##

# notation:
# groups - k
# n = total patients in risk group
# d = patients with the event
# time - t

## Test statistic is the Fisher test statistic under null
# d_{t,1} \sim  Hypergeo(n_t, n_{t,k=1}, d_t) ...  where
# Hypergeo(full finite population, number draws without replacement, "successes")
# for EACH time t
# mean: n_{t,1}/n_t * d_t
# variance: n_{t,0}*n_{t,1} * d_t (n_t - d_t)/ n_t^2 (n_t - 1)
# to calculate over all times, use Mantel-Haenszel statistic:
# Z = \sum_{times t} (d_{t,1} - E_t) / \sqrt(\sum_{times} V_t) which is normal with 0,1 under null


#######################################################################################


def log_rank_test(df,
                  group_variable,
                  duration_col='time',
                  event_col='status'):
    """
    Implementation of log rank test to compare two groups survival curve.

    Parameters:
        df = dataframe pandas
        group_variable = column with exactly two values, e.g. sex coded 1, 2.
                         The larger value is the group whose observed deaths are
                         compared with their expectation.
        duration_col = time column
        event_col = 1 for death observed, 0 for censored

    Returns Z and the two sided p-value.
    """
    groups = np.sort(df[group_variable].dropna().unique())
    if len(groups) != 2:
        raise ValueError(f'Log rank test needs exactly two groups in {group_variable}, '
                         f'found {list(groups)}')

    df = df[[duration_col, event_col, group_variable]].sort_values(by=duration_col)
    in_group1 = df[group_variable] == groups[1]

    # Define helpers
    def hypergeo_mean(N, n, k):
        return n/N * k

    def hypergeo_var(N, n, k):
        return ((N - n) * n * k * (N - k)) / (N**2 * (N - 1))

    top, bottom = 0, 0
    event_times = df.loc[df[event_col] == 1, duration_col].unique()
    for t in event_times:
        at_risk = df[duration_col] >= t # Subset to those remaining in risk set
        died = at_risk & (df[duration_col] == t) & (df[event_col] == 1)

        # group d_{t,1} whose event happened at time t in second group
        d = int((died & in_group1).sum())
        # d_t whose event happened at time t in population
        k = int(died.sum())
        # total population at risk
        N = int(at_risk.sum())
        # at risk population in second group
        n = int((at_risk & in_group1).sum())
        if N<2:
            continue
        top += d - hypergeo_mean(N, n, k)
        bottom += hypergeo_var(N, n, k)

    if bottom == 0:
        return np.nan, np.nan

    # Mantel-Haenszel is normally distributed
    Z = top/np.sqrt(bottom)
    # Two sided test
    p_value = 2 * norm.sf(abs(Z))

    return Z, p_value


def group_event_table(df, group_variable, duration_col='time', event_col='status'):
    """
    Patients, observed deaths and total follow up per group, shown next to the test.
    """
    return df.groupby(group_variable).agg(patients=(duration_col, 'size'),
                                          deaths=(event_col, 'sum'),
                                          follow_up=(duration_col, 'sum'))
