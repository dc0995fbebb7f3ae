#######################################################################################
# Author: Franny Dean
# Script: cumulative_hazard.py
# Function: cumulative hazard and hazard rates derived from a kaplan-meier curve
#######################################################################################

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

#######################################################################################

def cumulative_hazard(km_df):
  """
  Cumulative hazard H(t) = -ln S(t) at every step of a Kaplan-Meier curve.

  H is inf once S reaches 0.

  Parameters:
    km_df: DataFrame returned by fit_km
  """
  with np.errstate(divide='ignore'):
    H = -np.log(km_df['S'].to_numpy(dtype=float))
  # -log(1) gives -0.0
  H = H + 0.0
  return pd.Series(H, index=km_df.index, name='H')


def hazard_rates(km_df):
  """
  Cumulative hazard and hazard rate at each distinct event time.

  The hazard is dH / dt between consecutive event times, NaN at the first one.
  """
  H = cumulative_hazard(km_df)[km_df['events'] > 0]
  times = H.index.to_numpy(dtype=float)

  with np.errstate(invalid='ignore'):
    rate = np.full(len(H), np.nan)
    rate[1:] = np.diff(H.to_numpy()) / np.diff(times)

  return pd.DataFrame({'cumulative_hazard': H.to_numpy(), 'hazard': rate},
                      index=pd.Index(times, name='T'))


def time_at_cumulative_hazard(hazard_df, threshold=1.0):
  """
  Time whose cumulative hazard is closest to threshold, first one on ties.

  With threshold 1 this is the time by which one event per person is expected.

  Parameters:
    hazard_df: DataFrame returned by hazard_rates
    threshold: cumulative hazard to look up
  """
  if hazard_df.empty:
    return np.nan
  distance = (hazard_df['cumulative_hazard'] - threshold).abs()
  return float(distance.idxmin())

#######################################################################################

def plot_cumulative_hazard(km_df, ax=None, label=None):
  """
  Step plot of the cumulative hazard, non-finite steps are left out.
  """
  if ax is None:
    _, ax = plt.subplots(figsize=(8, 5))

  H = cumulative_hazard(km_df)
  H = H[np.isfinite(H)]
  ax.step(H.index, H, where='post', label=label)
  ax.set_xlabel('Time (days)')
  ax.set_ylabel('Cumulative Hazard')
  ax.set_title('Cumulative Hazard')
  return ax


def plot_hazard_rates(hazard_df, ax=None, label=None):
  """
  Plot the hazard rate between event times.
  """
  if ax is None:
    _, ax = plt.subplots(figsize=(8, 5))

  finite = hazard_df[np.isfinite(hazard_df['hazard'])]
  ax.plot(finite.index, finite['hazard'], marker='.', label=label)
  ax.set_xlabel('Time (days)')
  ax.set_ylabel('Hazard Rate (per day)')
  ax.set_title('Hazard Rate')
  return ax
