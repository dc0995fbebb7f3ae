#######################################################################################
# Author: Franny Dean
# Script: kaplan_meier.py
# Function: scratch implementation of kaplan-meier survival estimation
#######################################################################################

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt

#######################################################################################

def fit_km(T, E):
  """
  Fit Kaplan-Meier suvival curve estimator.

  Returns a DataFrame indexed by distinct time with columns at_risk, events,
  censored and S. A time 0 row with S = 1 is added when nobody is observed at 0.

  Parameters:
    T: array-like, time to event
    E: array-like, event indicator, assumes 0 means censored, 1 means event
  """
  df = pd.DataFrame({'T': np.asarray(T, dtype=float), 'E': np.asarray(E, dtype=int)})
  times = np.sort(df['T'].unique())

  rows = []
  if len(times) == 0 or times[0] > 0:
    rows.append((0.0, len(df), 0, 0, 1.0))

  S = 1.0
  for t in times:
    # Everyone still under observation at t, deaths and exits at t apply together
    at_risk = int((df['T'] >= t).sum())
    at_t = df[df['T'] == t]
    events = int(at_t['E'].sum())
    censored = len(at_t) - events

    if at_risk > 0:
      S *= (1.0 - events / at_risk)

    rows.append((t, at_risk, events, censored, S))

  km_df = pd.DataFrame(rows, columns=['T', 'at_risk', 'events', 'censored', 'S'])
  return km_df.set_index('T')


def fit_km_groups(df, group_col, time_col='time', event_col='status'):
  """
  Fit one Kaplan-Meier curve per value of a discrete covariate.

  Parameters:
    df: DataFrame with time, event and group columns
    group_col: column to stratify on, e.g. sex or ph.ecog
  """
  curves = {}
  for group, group_df in df.groupby(group_col, sort=True):
    curves[group] = fit_km(group_df[time_col], group_df[event_col])
  return curves

#######################################################################################

def survival_at(km_df, t):
  """
  Survival probability at time t read off the step function.
  """
  index = km_df.index.searchsorted(t, side='right') - 1
  if index < 0:
    return 1.0
  return float(km_df['S'].iloc[index])


def median_survival(km_df):
  """
  First time the curve drops to 0.5 or below, inf if it never does.
  """
  below = km_df.index[km_df['S'] <= 0.5]
  if len(below) == 0:
    return np.inf
  return float(below[0])

#######################################################################################

def plot_km(km_df, ax=None, label=None, show_censors=True):
  """
  Plot Kaplan-Meier survival curve.

  Parameters:
    km_df: DataFrame returned by fit_km
    ax: matplotlib axes to draw on, a new figure is made if None
    label: legend label
    show_censors: mark censored times with a +
  """
  if ax is None:
    _, ax = plt.subplots(figsize=(8, 5))

  line, = ax.step(km_df.index, km_df['S'], where='post', label=label)
  if show_censors:
    censored = km_df[km_df['censored'] > 0]
    ax.plot(censored.index, censored['S'], '+', color=line.get_color(), markersize=7)

  ax.set_xlabel('Time (days)')
  ax.set_ylabel('Survival Probability')
  ax.set_ylim(0, 1.05)
  ax.set_title('Kaplan-Meier Survival Curve')
  return ax


def plot_km_groups(curves, ax=None, labels=None, title=None):
  """
  Plot several Kaplan-Meier curves on one set of axes.

  Parameters:
    curves: dict of group -> DataFrame as returned by fit_km_groups
    labels: optional dict of group -> legend label
  """
  if ax is None:
    _, ax = plt.subplots(figsize=(8, 5))

  for group, km_df in curves.items():
    label = labels.get(group, group) if labels else group
    plot_km(km_df, ax=ax, label=str(label))

  ax.legend()
  if title:
    ax.set_title(title)
  return ax
