#######################################################################################
# Author: Franny Dean
# Script: lung_report.py
# Function: run the lung cancer survival analysis end to end and write the report
#######################################################################################

import os
from collections import namedtuple

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from lung_data import (load_lung, clean_lung, imputation_means, describe_cohort,
                       SEX_LABELS, TIME_COL, EVENT_COL)
from kaplan_meier import fit_km, fit_km_groups, median_survival, plot_km, plot_km_groups
from cumulative_hazard import (hazard_rates, time_at_cumulative_hazard,
                               plot_cumulative_hazard, plot_hazard_rates)
from cox_ph_model import CoxPHModel
from log_rank import log_rank_test, group_event_table

#######################################################################################

COX_COVARIATES = ['age', 'sex', 'ph.ecog']
EXPECTED_EVENT_HAZARD = 1.0
ALPHA = 0.05

COVARIATE_UNITS = {'age': 'each additional year of age',
                   'sex': 'female compared with male patients',
                   'ph.ecog': 'each one point increase in ECOG score'}

LungAnalysis = namedtuple('LungAnalysis', [
    'raw', 'cleaned', 'imputation_means',
    'km', 'hazard', 'expected_event_time',
    'km_by_sex', 'km_by_ecog',
    'log_rank', 'cox',
])

#######################################################################################

def run_analysis(raw_df, mean_source='raw', verbose=True):
    """
    Clean the cohort, estimate survival and hazard, fit the Cox model.

    Parameters:
        raw_df: DataFrame from load_lung, left untouched
        mean_source: which rows the imputation means come from, see lung_data
        verbose: print progress
    """
    means = imputation_means(raw_df, mean_source)
    cleaned = clean_lung(raw_df, mean_source=mean_source, verbose=verbose, means=means)

    km = fit_km(cleaned[TIME_COL], cleaned[EVENT_COL])
    hazard = hazard_rates(km)
    expected_event_time = time_at_cumulative_hazard(hazard, EXPECTED_EVENT_HAZARD)

    km_by_sex = fit_km_groups(cleaned, 'sex', TIME_COL, EVENT_COL)
    km_by_ecog = fit_km_groups(cleaned, 'ph.ecog', TIME_COL, EVENT_COL)
    log_rank = log_rank_test(cleaned, 'sex', TIME_COL, EVENT_COL)

    cox = CoxPHModel(cleaned, COX_COVARIATES, event_col=EVENT_COL, time_col=TIME_COL,
                     verbose=verbose).fit()

    return LungAnalysis(raw=raw_df, cleaned=cleaned,
                        imputation_means=means,
                        km=km, hazard=hazard, expected_event_time=expected_event_time,
                        km_by_sex=km_by_sex, km_by_ecog=km_by_ecog,
                        log_rank=log_rank, cox=cox)

#######################################################################################

def _sex_labels(curves):
    return {g: SEX_LABELS.get(g, g) for g in curves}


def _ecog_labels(curves):
    return {g: f'ECOG {int(g)}' for g in curves}


def render_figures(analysis, output_dir, verbose=True):
    """
    Save the survival, hazard, grouped survival and forest plots as png files.
    Returns a dict of figure name -> file name inside output_dir.
    """
    os.makedirs(output_dir, exist_ok=True)
    figures = {}

    def save(fig, name):
        file_name = f'{name}.png'
        fig.tight_layout()
        fig.savefig(os.path.join(output_dir, file_name), dpi=120)
        plt.close(fig)
        figures[name] = file_name
        if verbose:
            print(f'Saved {file_name}')

    fig, ax = plt.subplots(figsize=(8, 5))
    plot_km(analysis.km, ax=ax)
    save(fig, 'km_overall')

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(12, 4.5))
    plot_cumulative_hazard(analysis.km, ax=ax1)
    ax1.axhline(EXPECTED_EVENT_HAZARD, linestyle=':', color='grey')
    plot_hazard_rates(analysis.hazard, ax=ax2)
    save(fig, 'hazard')

    fig, ax = plt.subplots(figsize=(8, 5))
    plot_km_groups(analysis.km_by_sex, ax=ax, labels=_sex_labels(analysis.km_by_sex),
                   title='Kaplan-Meier Survival by Sex')
    save(fig, 'km_sex')

    fig, ax = plt.subplots(figsize=(8, 5))
    plot_km_groups(analysis.km_by_ecog, ax=ax, labels=_ecog_labels(analysis.km_by_ecog),
                   title='Kaplan-Meier Survival by ECOG Score')
    save(fig, 'km_ecog')

    fig, ax = plt.subplots(figsize=(7, 3))
    analysis.cox.plot_hazard_ratios(ax=ax)
    save(fig, 'forest')

    return figures

#######################################################################################

def _days(t):
    return 'not reached' if not np.isfinite(t) else f'{t:.0f} days'


def _covariate_sentence(row):
    change = (row['hazard_ratio'] - 1) * 100
    direction = 'higher' if change > 0 else 'lower'
    unit = COVARIATE_UNITS.get(row['covariate'], f'a unit increase in {row["covariate"]}')
    significant = 'significant' if row['p_value'] < ALPHA else 'not significant'
    return (f'- **{row["covariate"]}**: hazard ratio {row["hazard_ratio"]:.3f} '
            f'(95% CI {row["CI_low"]:.3f} to {row["CI_high"]:.3f}), a {abs(change):.1f}% '
            f'{direction} hazard for {unit}; p = {row["p_value"]:.4f}, {significant} '
            f'at the {ALPHA:g} level.')


def interpret(analysis):
    """
    Written interpretation of the numbers, returned as a list of markdown paragraphs.
    """
    paragraphs = []
    cleaned = analysis.cleaned
    dropped = len(analysis.raw) - len(cleaned)

    paragraphs.append(
        f'Of {len(analysis.raw)} patients, {dropped} were dropped for missing performance '
        f'scores, leaving {len(cleaned)} with {int(cleaned[EVENT_COL].sum())} observed deaths. '
        f'The overall median survival is {_days(median_survival(analysis.km))}.')

    H = analysis.hazard['cumulative_hazard']
    if len(H) and H.max() >= EXPECTED_EVENT_HAZARD:
        paragraphs.append(
            f'The cumulative hazard reaches {EXPECTED_EVENT_HAZARD:g} at about '
            f'{_days(analysis.expected_event_time)}: by then one death per patient would be '
            f'expected if the observed hazard applied to everyone.')
    else:
        paragraphs.append(
            f'The cumulative hazard never reaches {EXPECTED_EVENT_HAZARD:g}; the closest step is '
            f'at {_days(analysis.expected_event_time)}.')

    medians = ', '.join(f'{SEX_LABELS.get(g, g)} {_days(median_survival(km))}'
                        for g, km in analysis.km_by_sex.items())
    Z, p = analysis.log_rank
    verdict = 'differ significantly' if p < ALPHA else 'do not differ significantly'
    paragraphs.append(
        f'Median survival by sex: {medians}. The log-rank test gives Z = {Z:.3f} '
        f'(p = {p:.4f}), so the survival curves of men and women {verdict}.')

    medians = ', '.join(f'ECOG {int(g)} {_days(median_survival(km))}'
                        for g, km in analysis.km_by_ecog.items())
    paragraphs.append(f'Median survival by ECOG score: {medians}. Higher scores mean '
                      'worse physician rated performance.')

    hr = analysis.cox.get_hazard_ratios(alpha=ALPHA)
    lines = ['In the Cox model on ' + ', '.join(COX_COVARIATES) + ':']
    lines += [_covariate_sentence(row) for _, row in hr.iterrows()]
    paragraphs.append('\n'.join(lines))

    lr, dof, lr_p = analysis.cox.log_likelihood_ratio_test()
    paragraphs.append(
        f'The model as a whole is {"significant" if lr_p < ALPHA else "not significant"} '
        f'(likelihood ratio test {lr:.2f} on {dof} df, p = {lr_p:.2g}). Its concordance of '
        f'{analysis.cox.concordance_index():.3f} means that in that fraction of comparable pairs '
        'the patient with the higher predicted risk died first.')

    return paragraphs


def _table(df, float_format='{:.4g}'.format):
    return '```\n' + df.to_string(float_format=float_format) + '\n```'


def write_report(analysis, output_dir, verbose=True):
    """
    Write report.md with prose, tables and figures into output_dir. Returns its path.
    """
    figures = render_figures(analysis, output_dir, verbose=verbose)
    cox = analysis.cox

    tests = {'Likelihood ratio': cox.log_likelihood_ratio_test(),
             'Wald': cox.wald_test(),
             'Score': cox.score_test()}
    test_lines = [f'- {name}: {stat:.3f} on {dof} df, p = {p:.3g}'
                  for name, (stat, dof, p) in tests.items()]

    means = ', '.join(f'{col} = {m:.2f}' for col, m in analysis.imputation_means.items())
    sex_table = group_event_table(analysis.cleaned, 'sex', TIME_COL, EVENT_COL)
    sex_table.index = [SEX_LABELS.get(g, g) for g in sex_table.index]

    sections = [
        '# Survival in Advanced Lung Cancer',
        '## Data',
        _table(describe_cohort(analysis.raw)),
        f'Missing calories and weight loss were replaced by the means {means}.',
        '## Kaplan-Meier Survival',
        f'![Kaplan-Meier survival]({figures["km_overall"]})',
        '## Cumulative Hazard and Hazard Rate',
        f'![Hazard]({figures["hazard"]})',
        '## Survival by Sex',
        _table(sex_table),
        f'![Survival by sex]({figures["km_sex"]})',
        '## Survival by ECOG Score',
        f'![Survival by ECOG score]({figures["km_ecog"]})',
        '## Cox Proportional Hazards',
        _table(cox.get_hazard_ratios(alpha=ALPHA).set_index('covariate')),
        '\n'.join(test_lines + [f'- Concordance: {cox.concordance_index():.3f}']),
        f'![Hazard ratios]({figures["forest"]})',
        '## Interpretation',
    ] + interpret(analysis)

    report_path = os.path.join(output_dir, 'report.md')
    with open(report_path, 'w') as f:
        f.write('\n\n'.join(sections) + '\n')

    if verbose:
        print(f'Report written to {report_path}')
    return report_path

#######################################################################################

def main(output_dir='report', path=None):
    raw = load_lung(path)
    analysis = run_analysis(raw)
    return write_report(analysis, output_dir)


if __name__ == '__main__':
    main()
