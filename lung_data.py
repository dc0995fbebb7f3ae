#######################################################################################
# Author: Franny Dean
# Script: lung_data.py
# Function: load the NCCTG lung cancer cohort and clean its missing values
#######################################################################################

import pandas as pd

from lifelines import datasets

#######################################################################################

TIME_COL = 'time'
EVENT_COL = 'status'
COLUMNS = ['inst', 'time', 'status', 'age', 'sex',
           'ph.ecog', 'ph.karno', 'pat.karno', 'meal.cal', 'wt.loss']

# Rows missing any of these are dropped
REQUIRED_COLS = ['ph.ecog', 'ph.karno', 'pat.karno']
# Missing values here are replaced by the column mean
IMPUTED_COLS = ['meal.cal', 'wt.loss']

SEX_LABELS = {1: 'Male', 2: 'Female'}

#######################################################################################

def load_lung(path=None, status_coding=None):
  """
  Load the lung cancer dataset.

  Parameters:
    path: optional csv file with the 10 lung columns, defaults to the copy
          shipped with lifelines
    status_coding: 'r' (1 censored, 2 dead), 'indicator' (0 censored, 1 dead)
                   or None to infer it from the codes present

  Status is returned as an event indicator: 1 means death observed, 0 censored.
  A column holding only 1s fits both codings, so it cannot be inferred and
  status_coding must be given.
  """
  raw = pd.read_csv(path) if path is not None else datasets.load_lung()

  missing = [c for c in COLUMNS if c not in raw.columns]
  if missing:
    raise ValueError(f'Lung data is missing columns: {missing}')

  df = raw[COLUMNS].copy()
  df[EVENT_COL] = _event_indicator(df[EVENT_COL], status_coding)

  if (df[TIME_COL] < 0).any():
    raise ValueError('Observed times must be non-negative')

  return df


def _event_indicator(status, status_coding=None):
  codes = set(status.dropna().unique())

  if status_coding is None:
    if codes <= {1}:
      raise ValueError('Status holds only 1s, pass status_coding to say whether '
                       'they mean censored (r) or dead (indicator)')
    status_coding = 'indicator' if codes <= {0, 1} else 'r'

  allowed = {'indicator': {0, 1}, 'r': {1, 2}}
  if status_coding not in allowed:
    raise ValueError(f"status_coding must be 'r' or 'indicator', got {status_coding!r}")
  if not codes <= allowed[status_coding]:
    raise ValueError(f'Unrecognised status codes for {status_coding} coding: {sorted(codes)}')

  if status_coding == 'r':
    return (status == 2).astype(int)
  return status.astype(int)

#######################################################################################

def imputation_means(df, mean_source='raw'):
  """
  Means used to fill the continuous columns.

  Parameters:
    df: raw lung DataFrame
    mean_source: 'raw' averages over every row, 'filtered' only over rows that
                 keep all of the required performance scores
  """
  if mean_source == 'raw':
    source = df
  elif mean_source == 'filtered':
    source = df.dropna(subset=REQUIRED_COLS)
  else:
    raise ValueError(f"mean_source must be 'raw' or 'filtered', got {mean_source!r}")

  return {col: source[col].mean() for col in IMPUTED_COLS}


def clean_lung(df, mean_source='raw', verbose=True, means=None):
  """
  Drop rows with missing performance scores, mean impute calories and weight loss.

  Returns a new DataFrame, the input is left as is.

  Parameters:
    df: raw lung DataFrame
    mean_source: see imputation_means
    verbose: print how many rows were dropped and values imputed
    means: dict of column -> fill value, from imputation_means when None
  """
  if means is None:
    means = imputation_means(df, mean_source)

  cleaned = df.dropna(subset=REQUIRED_COLS).copy()
  dropped = len(df) - len(cleaned)

  n_imputed = {}
  for col in IMPUTED_COLS:
    n_imputed[col] = int(cleaned[col].isna().sum())
    cleaned[col] = cleaned[col].fillna(means[col])

  if verbose:
    print(f'Dropped {dropped} of {len(df)} rows missing {", ".join(REQUIRED_COLS)}')
    for col in IMPUTED_COLS:
      print(f'Imputed {n_imputed[col]} missing {col} with {mean_source} mean {means[col]:.2f}')

  return cleaned.reset_index(drop=True)


def describe_cohort(df):
  """
  Summary table of the cohort: non-missing count, missing count, mean, min, max.
  """
  numeric = df[COLUMNS].apply(pd.to_numeric, errors='coerce')
  return pd.DataFrame({
    'count': numeric.count(),
    'missing': numeric.isna().sum(),
    'mean': numeric.mean(),
    'min': numeric.min(),
    'max': numeric.max(),
  })
