"""
Stopping-Rule Sweep
Measures how the expected-loss threshold trades accuracy against duration
across a grid of effect sizes
"""

import os
import sys
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
from statsmodels.distributions.empirical_distribution import ECDF
from statsmodels.stats.proportion import proportion_confint

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import PRIOR_CONFIG, REFERENCE_SCENARIO, STOPPING_CONFIG, SWEEP_CONFIG
from src.data_generation import SimulationConfig, simulate
from src.data_validation import (
    validate_effect_size_grid,
    validate_percentile,
    validate_positive_int,
    validate_simulation_config,
    validate_prior_config,
    validate_threshold_grid,
)
from src.expected_loss import PriorConfig, augment
from src.stopping_rule import evaluate


SWEEP_STREAM = 2


def summarize_outcomes(outcomes, n_simulations, percentile=None):
    """
    Aggregate one sweep cell

    Args:
        outcomes: Outcome DataFrame for a single (effect size, threshold)
        n_simulations: Denominator for selection frequencies
        percentile: Percentile of total duration to report

    Returns:
        Dictionary with selection frequencies, accuracy and duration statistics
    """
    percentile = STOPPING_CONFIG['duration_percentile'] if percentile is None else percentile
    selected = outcomes['selected_variant']
    durations = outcomes['total_duration'].astype(float)

    # Equal true rates and ties leave nothing to score
    scored = outcomes['is_correct'].dropna()
    if len(scored) > 0:
        successes = int(scored.sum())
        accuracy = successes / len(scored)
        ci_lower, ci_upper = proportion_confint(successes, len(scored), alpha=0.05, method='wilson')
    else:
        accuracy, ci_lower, ci_upper = np.nan, np.nan, np.nan

    has_rows = len(outcomes) > 0

    return {
        'n_simulations': n_simulations,
        'freq_a': (selected == 'A').sum() / n_simulations,
        'freq_b': (selected == 'B').sum() / n_simulations,
        'freq_none': selected.isna().sum() / n_simulations,
        'accuracy': accuracy,
        'accuracy_ci_lower': ci_lower,
        'accuracy_ci_upper': ci_upper,
        'duration_percentile': float(np.percentile(durations, percentile)) if has_rows else np.nan,
        'median_duration': float(durations.median()) if has_rows else np.nan,
        'mean_duration': float(durations.mean()) if has_rows else np.nan,
        'forced_stop_rate': float(outcomes['forced_stop'].mean()) if has_rows else np.nan,
    }


def duration_ecdf(outcomes):
    """
    Empirical CDF of total duration per (effect size, threshold)

    Returns:
        DataFrame with effect_size, threshold_used, total_duration and ecdf columns
    """
    frames = []
    groups = outcomes.groupby(['effect_size', 'threshold_used'], dropna=False, sort=True)
    for (effect_size, threshold_used), group in groups:
        durations = group['total_duration'].to_numpy(dtype=float)
        ecdf = ECDF(durations)
        support = np.unique(durations)
        frames.append(pd.DataFrame({
            'effect_size': effect_size,
            'threshold_used': threshold_used,
            'total_duration': support,
            'ecdf': ecdf(support),
        }))

    if not frames:
        return pd.DataFrame(columns=['effect_size', 'threshold_used', 'total_duration', 'ecdf'])
    return pd.concat(frames, ignore_index=True)


def _unit_seeds(seed, index):
    """Simulation and posterior seeds for the effect size at ``index``"""
    state = np.random.SeedSequence(seed, spawn_key=(SWEEP_STREAM, index)).generate_state(2)
    return int(state[0]), int(state[1])


def _run_effect_size(index, effect_size, base_rate, thresholds, n_simulations,
                     max_observations, checkpoint_increment, prior, seed, percentile,
                     keep_outcomes, verbose):
    """Simulate and estimate losses once, then evaluate every threshold"""
    simulation_seed, posterior_seed = _unit_seeds(seed, index)
    config = SimulationConfig(
        rate_a=base_rate,
        rate_b=base_rate * (1 + effect_size),
        max_observations=max_observations,
        checkpoint_increment=checkpoint_increment,
        num_simulations=n_simulations,
        seed=simulation_seed,
    )

    if verbose:
        print(f"Effect size {effect_size:+.2%}: rate A {config.rate_a:.4%}, rate B {config.rate_b:.4%}")

    checkpoints = simulate(config)
    loss_records = augment(checkpoints, prior, seed=posterior_seed, strict=False)
    failures = [dict(failure, effect_size=effect_size) for failure in loss_records.attrs['failures']]

    rows = []
    outcome_frames = []
    for threshold in thresholds:
        outcomes = evaluate(loss_records, threshold, config.rate_a, config.rate_b, effect_size=effect_size)
        row = {
            'effect_size': effect_size,
            'threshold_used': threshold,
            'rate_a': config.rate_a,
            'rate_b': config.rate_b,
        }
        row.update(summarize_outcomes(outcomes, n_simulations, percentile))
        rows.append(row)
        if keep_outcomes:
            outcome_frames.append(outcomes)

    return rows, outcome_frames, failures


def sweep(base_rate=None, effect_sizes=None, thresholds=None, simulations_per_effect_size=None,
          max_observations=None, checkpoint_increment=None, prior=None, seed=None,
          percentile=None, n_jobs=None, return_outcomes=False, verbose=False):
    """
    Evaluate the stopping rule over a grid of effect sizes and thresholds

    Simulation and loss estimation run once per effect size; every threshold
    is then evaluated against the same loss records. Each effect size draws
    from seeds derived from (seed, position in the grid), so results do not
    depend on ``n_jobs``.

    Args:
        base_rate: Conversion rate of A
        effect_sizes: Relative lifts of B over A, each > -1
        thresholds: Expected-loss thresholds, each > 0
        simulations_per_effect_size: Experiments simulated per effect size
        max_observations: Per-variant budget
        checkpoint_increment: Observations per variant between looks
        prior: PriorConfig
        seed: Integer seed for the whole sweep
        percentile: Percentile of total duration to report (default 75)
        n_jobs: Effect sizes processed concurrently
        return_outcomes: Also return the per-simulation Outcome table
        verbose: Print progress and a results table

    Returns:
        SweepResult DataFrame keyed by (effect_size, threshold_used), or a tuple
        (results, outcomes) when ``return_outcomes`` is set
    """
    base_rate = SWEEP_CONFIG['base_rate'] if base_rate is None else base_rate
    effect_sizes = SWEEP_CONFIG['effect_sizes'] if effect_sizes is None else effect_sizes
    thresholds = SWEEP_CONFIG['thresholds'] if thresholds is None else thresholds
    if simulations_per_effect_size is None:
        simulations_per_effect_size = SWEEP_CONFIG['simulations_per_effect_size']
    if max_observations is None:
        max_observations = SWEEP_CONFIG['max_observations']
    if checkpoint_increment is None:
        checkpoint_increment = SWEEP_CONFIG['checkpoint_increment']
    prior = prior or PriorConfig.from_config()
    percentile = STOPPING_CONFIG['duration_percentile'] if percentile is None else percentile
    n_jobs = SWEEP_CONFIG['n_jobs'] if n_jobs is None else n_jobs

    # Fail before any work is done
    effect_sizes = validate_effect_size_grid(effect_sizes, base_rate)
    thresholds = validate_threshold_grid(thresholds)
    validate_positive_int('simulations_per_effect_size', simulations_per_effect_size)
    validate_positive_int('n_jobs', n_jobs)
    validate_percentile(percentile)
    validate_prior_config(prior)
    for effect_size in effect_sizes:
        validate_simulation_config(SimulationConfig(
            rate_a=base_rate,
            rate_b=base_rate * (1 + effect_size),
            max_observations=max_observations,
            checkpoint_increment=checkpoint_increment,
            num_simulations=simulations_per_effect_size,
            seed=seed,
        ))

    if verbose:
        print("\n" + "="*70)
        print("STOPPING RULE SWEEP")
        print("="*70)
        print(f"Base rate: {base_rate:.4%}")
        print(f"Effect sizes: {len(effect_sizes)}, thresholds: {len(thresholds)}")
        print(f"Simulations per effect size: {simulations_per_effect_size:,}\n")

    tasks = [
        (index, effect_size, base_rate, thresholds, simulations_per_effect_size,
         max_observations, checkpoint_increment, prior, seed, percentile,
         return_outcomes, verbose)
        for index, effect_size in enumerate(effect_sizes)
    ]

    if n_jobs == 1:
        unit_results = [_run_effect_size(*task) for task in tasks]
    else:
        with ThreadPoolExecutor(max_workers=n_jobs, thread_name_prefix="sweep") as executor:
            futures = [executor.submit(_run_effect_size, *task) for task in tasks]
            unit_results = [future.result() for future in futures]

    # Merge once, after every unit has finished
    rows = [row for unit_rows, _, _ in unit_results for row in unit_rows]
    failures = [failure for _, _, unit_failures in unit_results for failure in unit_failures]

    results = pd.DataFrame(rows).sort_values(['effect_size', 'threshold_used'], ignore_index=True)
    results.attrs['percentile'] = percentile
    results.attrs['failures'] = failures

    if verbose:
        print("\n" + "="*70)
        print("SWEEP RESULTS")
        print("="*70)
        print(results[['effect_size', 'threshold_used', 'freq_a', 'freq_b', 'accuracy',
                       'duration_percentile']].to_string(index=False))
        if failures:
            print(f"\n⚠️  {len(failures)} simulations failed and were excluded")

    if return_outcomes:
        frames = [frame for _, unit_frames, _ in unit_results for frame in unit_frames]
        outcomes = pd.concat(frames, ignore_index=True)
        return results, outcomes
    return results


def run_reference_scenario(scenario=None, prior=None, seed=None):
    """Run the reference scenario and print its stopping behaviour"""
    scenario = dict(REFERENCE_SCENARIO, **(scenario or {}))
    prior = prior or PriorConfig.from_config()

    print("\n" + "="*70)
    print("REFERENCE SCENARIO")
    print("="*70)

    config = SimulationConfig(
        rate_a=scenario['rate_a'],
        rate_b=scenario['rate_b'],
        max_observations=scenario['max_observations'],
        checkpoint_increment=scenario['checkpoint_increment'],
        num_simulations=scenario['num_simulations'],
        seed=seed,
    )
    checkpoints = simulate(config, verbose=True)
    loss_records = augment(checkpoints, prior, seed=seed, verbose=True)
    outcomes = evaluate(loss_records, scenario['threshold'], config.rate_a, config.rate_b)

    summary = summarize_outcomes(outcomes, config.num_simulations)
    print(f"\nThreshold: {scenario['threshold']}")
    print(f"Selected A: {summary['freq_a']:.2%}")
    print(f"Selected B: {summary['freq_b']:.2%}")
    print(f"Accuracy: {summary['accuracy']:.2%} "
          f"[{summary['accuracy_ci_lower']:.2%}, {summary['accuracy_ci_upper']:.2%}]")
    print(f"Median duration: {summary['median_duration']:,.0f}")
    print(f"{STOPPING_CONFIG['duration_percentile']}th percentile duration: "
          f"{summary['duration_percentile']:,.0f}")
    print(f"Forced stops: {summary['forced_stop_rate']:.2%}")

    ecdf = duration_ecdf(outcomes)
    print("\nDuration eCDF:")
    print(ecdf[['total_duration', 'ecdf']].to_string(index=False))

    return outcomes


def run_complete_sweep(seed=42):
    """Run the configured sweep and print the results"""
    return sweep(
        base_rate=SWEEP_CONFIG['base_rate'],
        effect_sizes=SWEEP_CONFIG['effect_sizes'],
        thresholds=SWEEP_CONFIG['thresholds'],
        simulations_per_effect_size=SWEEP_CONFIG['simulations_per_effect_size'],
        max_observations=SWEEP_CONFIG['max_observations'],
        checkpoint_increment=SWEEP_CONFIG['checkpoint_increment'],
        prior=PriorConfig(**PRIOR_CONFIG),
        seed=seed,
        n_jobs=SWEEP_CONFIG['n_jobs'],
        verbose=True,
    )


if __name__ == "__main__":
    run_reference_scenario(seed=42)
    run_complete_sweep()
