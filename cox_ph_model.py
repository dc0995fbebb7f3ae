#######################################################################################
# Author: Franny Dean
# Script: cox_ph_model.py
# Function: cox ph model from scratch, newton-raphson on the partial likelihood
#######################################################################################

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import torch

from scipy.stats import norm, chi2
from lifelines.exceptions import ConvergenceError
from lifelines.utils import concordance_index

#######################################################################################

class CoxPHModel:
    """
    Cox Proportional Hazards model from scratch.

    Ignores the baseline hazard, only estimates the log hazard ratios by maximizing
    the partial likelihood with Newton-Raphson. Gradient and Hessian come from torch
    autograd. Tied event times use Efron's approximation unless ties='breslow'.

    Parameters:
        df: DataFrame with time to event, event indicator, covariates
        covariates: list of column names for covariates
        event_col: column name for event indicator, 1 means event
        time_col: column name for time to event
        ties: 'efron' or 'breslow'
        max_steps: Newton-Raphson iterations before giving up
        tol: convergence threshold on the size of the Newton step
    """
    def __init__(self, df, covariates, event_col='status', time_col='time',
                 ties='efron', max_steps=50, tol=1e-7, verbose=False):

        if ties not in ('efron', 'breslow'):
            raise ValueError(f"ties must be 'efron' or 'breslow', got {ties!r}")

        # Data parameters
        self.df = df
        self.covariates = list(covariates)
        self.event_col = event_col
        self.time_col = time_col
        self.ties = ties

        # Optimizer parameters
        self.max_steps = max_steps
        self.tol = tol
        self.verbose = verbose
        if self.verbose:
            print(f'Initialized with {len(self.covariates)} covariates')

        # After fitting to define/save
        self.betas = None
        self.cov_matrix = None
        self.log_likelihood = None
        self.null_log_likelihood = None
        self.n_steps = None

    def _prepare(self):
        """
        Centre covariates and build the risk set and death set masks, one row per
        distinct event time.
        """
        X = self.df[self.covariates].to_numpy(dtype=float)
        T = self.df[self.time_col].to_numpy(dtype=float)
        E = self.df[self.event_col].to_numpy(dtype=int)

        # Centring leaves the coefficients unchanged
        self.means = X.mean(axis=0)
        self._X = torch.tensor(X - self.means, dtype=torch.float64)

        event_times = np.unique(T[E == 1])
        at_risk = T[None, :] >= event_times[:, None]
        dies = (T[None, :] == event_times[:, None]) & (E[None, :] == 1)
        d = dies.sum(axis=1)

        # Efron: the l-th death at a tied time sees l/d of the tied deaths removed
        l = np.arange(d.max())
        frac = l[None, :] / d[:, None]
        if self.ties == 'breslow':
            frac = np.zeros_like(frac)

        self._at_risk = torch.tensor(at_risk, dtype=torch.float64)
        self._dies = torch.tensor(dies, dtype=torch.float64)
        self._frac = torch.tensor(frac, dtype=torch.float64)
        self._valid = torch.tensor(l[None, :] < d[:, None])

    def partial_log_likelihood(self, beta):
        """
        Log partial likelihood at beta (1d float64 tensor).
        """
        eta = self._X @ beta
        # Shifting eta by a constant leaves the likelihood unchanged
        eta = eta - eta.max().detach()
        w = torch.exp(eta)

        risk_sum = self._at_risk @ w
        death_sum = self._dies @ w
        death_eta = self._dies @ eta

        denom = risk_sum[:, None] - self._frac * death_sum[:, None]
        denom = torch.where(self._valid, denom, torch.ones_like(denom))
        return death_eta.sum() - torch.log(denom).sum()

    def _derivatives(self, beta):
        beta_t = torch.as_tensor(beta, dtype=torch.float64)
        gradient = torch.autograd.functional.jacobian(self.partial_log_likelihood, beta_t)
        hessian = torch.autograd.functional.hessian(self.partial_log_likelihood, beta_t)
        return gradient.numpy(), hessian.numpy()

    def _log_likelihood_at(self, beta):
        with torch.no_grad():
            return self.partial_log_likelihood(torch.as_tensor(beta, dtype=torch.float64)).item()

    def fit(self):
        """
        Fit Cox PH model.

        Raises lifelines' ConvergenceError when the Hessian is singular, the
        likelihood stops being finite, the steps do not shrink below tol, or the
        coefficients run off to infinity.
        """
        if self.df[self.event_col].sum() == 0:
            raise ConvergenceError('No events observed, the partial likelihood is flat')

        self._prepare()
        beta = np.zeros(len(self.covariates))
        ll = self._log_likelihood_at(beta)
        self.null_log_likelihood = ll

        for step in range(1, self.max_steps + 1):
            gradient, hessian = self._derivatives(beta)
            if step == 1:
                self._null_gradient, self._null_hessian = gradient, hessian

            try:
                delta = np.linalg.solve(hessian, gradient)
            except np.linalg.LinAlgError as e:
                raise ConvergenceError(
                    'Hessian is singular, check for constant or collinear covariates') from e

            # Halve the step until the likelihood does not decrease
            step_size = 1.0
            new_ll = self._log_likelihood_at(beta - delta)
            while not (np.isfinite(new_ll) and new_ll >= ll - 1e-10):
                step_size /= 2
                if step_size < 1e-10:
                    raise ConvergenceError(
                        f'Could not increase the partial likelihood at step {step}')
                new_ll = self._log_likelihood_at(beta - step_size * delta)

            beta = beta - step_size * delta
            ll = new_ll
            if self.verbose:
                print(f'Step [{step}/{self.max_steps}], Log-Likelihood: {ll:.6f}')

            if not np.all(np.isfinite(beta)):
                raise ConvergenceError(f'Coefficients diverged at step {step}')
            if np.linalg.norm(step_size * delta) < self.tol:
                break
        else:
            raise ConvergenceError(
                f'Newton-Raphson did not converge after {self.max_steps} steps, '
                'the covariates may separate the events')

        _, hessian = self._derivatives(beta)
        # Under separation the gradient underflows before the coefficient stops growing,
        # which shows up as the information collapsing relative to beta = 0
        collapsed = np.diag(-hessian) <= 1e-8 * np.diag(-self._null_hessian)
        if np.any(collapsed):
            names = [c for c, flag in zip(self.covariates, collapsed) if flag]
            raise ConvergenceError(
                f'Information for {names} vanished at step {step}, '
                'the covariates separate the events so the coefficients are infinite')

        self.betas = beta
        self.log_likelihood = ll
        self.n_steps = step
        self.cov_matrix = np.linalg.inv(-hessian)

        if self.verbose:
            print(f'Fitting done in {step} steps. Final log-likelihood: {ll:.6f}')
        return self

    def _check_fitted(self):
        if self.betas is None:
            raise RuntimeError('Model has not been fitted, call fit() first')

    #######################################################################################

    def get_hazard_ratios(self, alpha=0.05):
        """
        Get hazard ratios for each covariate with Wald confidence intervals and p-values.
        """
        self._check_fitted()
        se = np.sqrt(np.diag(self.cov_matrix))
        z = self.betas / se
        z_crit = norm.ppf(1 - alpha / 2)

        return pd.DataFrame({'covariate': self.covariates,
                             'beta': self.betas,
                             'se': se,
                             'hazard_ratio': np.exp(self.betas),
                             'z': z,
                             'p_value': 2 * norm.sf(np.abs(z)),
                             'CI_low': np.exp(self.betas - z_crit * se),
                             'CI_high': np.exp(self.betas + z_crit * se)})

    def log_likelihood_ratio_test(self):
        """
        Likelihood ratio test against the model with all betas at zero.
        Returns (statistic, degrees of freedom, p-value).
        """
        self._check_fitted()
        stat = 2 * (self.log_likelihood - self.null_log_likelihood)
        dof = len(self.covariates)
        return stat, dof, chi2.sf(stat, dof)

    def wald_test(self):
        self._check_fitted()
        stat = self.betas @ np.linalg.solve(self.cov_matrix, self.betas)
        dof = len(self.covariates)
        return stat, dof, chi2.sf(stat, dof)

    def score_test(self):
        """
        Score (log-rank type) test using the gradient and information at beta = 0.
        """
        self._check_fitted()
        stat = self._null_gradient @ np.linalg.solve(-self._null_hessian, self._null_gradient)
        dof = len(self.covariates)
        return stat, dof, chi2.sf(stat, dof)

    def predict_partial_hazard(self, df=None):
        """
        exp(beta^T (x - mean)) for each row, defaults to the training data.
        """
        self._check_fitted()
        df = self.df if df is None else df
        X = df[self.covariates].to_numpy(dtype=float) - self.means
        return pd.Series(np.exp(X @ self.betas), index=df.index, name='partial_hazard')

    def concordance_index(self):
        """
        Compute concordance index. Higher risk should mean shorter survival so the
        partial hazard is negated before handing it to lifelines.
        """
        self._check_fitted()
        return concordance_index(self.df[self.time_col],
                                 -self.predict_partial_hazard(),
                                 self.df[self.event_col])

    def plot_hazard_ratios(self, ax=None):
        """
        Forest plot of hazard ratios with confidence intervals, reference line at 1.
        """
        hr = self.get_hazard_ratios()
        if ax is None:
            _, ax = plt.subplots(figsize=(7, 1 + 0.6 * len(hr)))

        y = np.arange(len(hr))[::-1]
        xerr = [hr['hazard_ratio'] - hr['CI_low'], hr['CI_high'] - hr['hazard_ratio']]
        ax.errorbar(hr['hazard_ratio'], y, xerr=xerr, fmt='s', color='black', capsize=4)
        ax.axvline(1.0, linestyle='--', color='grey')

        ax.set_yticks(y)
        ax.set_yticklabels(hr['covariate'])
        ax.set_xscale('log')
        ax.set_xlabel('Hazard Ratio (95% CI)')
        ax.set_title('Cox Proportional Hazards')
        return ax
