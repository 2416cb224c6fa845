"""
Bayesian Expected Loss Estimation
Monte Carlo estimates of the expected loss of choosing each variant,
computed from Beta posteriors at every checkpoint
"""

import os
import sys
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import stats

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import PRIOR_CONFIG
from src.data_generation import CHECKPOINT_COLUMNS, POSTERIOR_STREAM, unit_generator
from src.data_validation import (
    InvariantViolation,
    require_valid_checkpoints,
    validate_prior_config,
)


LOSS_COLUMNS = CHECKPOINT_COLUMNS + ['loss_a', 'loss_b', 'prob_b_better']


@dataclass(frozen=True)
class PriorConfig:
    """Beta prior hyperparameters and Monte Carlo sample size."""

    alpha: float = 1.0
    beta: float = 1.0
    posterior_samples: int = 1000

    @classmethod
    def from_config(cls, **overrides) -> "PriorConfig":
        params = dict(PRIOR_CONFIG)
        params.update(overrides)
        return cls(**params)


def posterior_parameters(conversions, trials, prior):
    """
    Beta posterior shape parameters under the Beta-Bernoulli conjugate model

    Args:
        conversions: Successes observed (scalar or array)
        trials: Observations made (scalar or array)
        prior: PriorConfig

    Returns:
        Tuple (posterior_alpha, posterior_beta) as float arrays

    Raises:
        InvariantViolation: if counts would give a non-positive shape
    """
    conversions = np.asarray(conversions, dtype=float)
    trials = np.asarray(trials, dtype=float)
    failures = trials - conversions

    if not np.all(np.isfinite(conversions)) or not np.all(np.isfinite(trials)):
        raise InvariantViolation("conversions and trials must be finite")
    if np.any(conversions < 0) or np.any(failures < 0):
        raise InvariantViolation(
            "conversions must lie within [0, trials] to form a Beta posterior"
        )

    posterior_alpha = prior.alpha + conversions
    posterior_beta = prior.beta + failures

    if np.any(posterior_alpha <= 0) or np.any(posterior_beta <= 0):
        raise InvariantViolation("Beta posterior shape parameters must be positive")

    return posterior_alpha, posterior_beta


def expected_loss(conversions_a, conversions_b, trials, prior, rng):
    """
    Monte Carlo expected loss for one or more checkpoints

    Draws ``prior.posterior_samples`` values from each variant's posterior and
    pairs them by sample index:

        loss_a = mean(max(0, b - a))   # cost of shipping A if B is better
        loss_b = mean(max(0, a - b))   # cost of shipping B if A is better

    Args:
        conversions_a: Cumulative conversions of A per checkpoint
        conversions_b: Cumulative conversions of B per checkpoint
        trials: Observations per variant per checkpoint
        prior: PriorConfig
        rng: numpy Generator for the posterior draws

    Returns:
        Tuple of arrays (loss_a, loss_b, prob_b_better), one value per checkpoint
    """
    conversions_a = np.atleast_1d(conversions_a)
    conversions_b = np.atleast_1d(conversions_b)
    trials = np.broadcast_to(np.atleast_1d(trials), conversions_a.shape)

    alpha_a, beta_a = posterior_parameters(conversions_a, trials, prior)
    alpha_b, beta_b = posterior_parameters(conversions_b, trials, prior)

    size = (len(conversions_a), prior.posterior_samples)
    samples_a = stats.beta(alpha_a[:, None], beta_a[:, None]).rvs(size=size, random_state=rng)
    samples_b = stats.beta(alpha_b[:, None], beta_b[:, None]).rvs(size=size, random_state=rng)

    difference = samples_b - samples_a
    loss_a = np.maximum(difference, 0).mean(axis=1)
    loss_b = np.maximum(-difference, 0).mean(axis=1)
    prob_b_better = (difference > 0).mean(axis=1)

    return loss_a, loss_b, prob_b_better


def augment(checkpoints, prior=None, seed=None, strict=True, verbose=False):
    """
    Attach expected-loss estimates to every checkpoint

    Each simulation is an independent unit with its own posterior stream,
    derived from (seed, simulation_id). Fixing ``seed`` fixes every estimate;
    leaving it None gives fresh Monte Carlo noise on each call.

    Args:
        checkpoints: Checkpoint DataFrame (left untouched)
        prior: PriorConfig, defaults to PRIOR_CONFIG
        seed: Integer seed for the posterior draws
        strict: Raise on the first corrupted simulation. When False, the
            failing simulation is dropped and listed in ``attrs['failures']``
        verbose: Print a short summary

    Returns:
        New DataFrame with loss_a, loss_b and prob_b_better columns
    """
    prior = prior or PriorConfig.from_config()
    validate_prior_config(prior)
    require_valid_checkpoints(checkpoints)

    units = []
    failures = []

    for simulation_id, group in checkpoints.groupby('simulation_id', sort=True):
        group = group.sort_values('checkpoint_time')
        rng = unit_generator(seed, POSTERIOR_STREAM, simulation_id)

        try:
            loss_a, loss_b, prob_b_better = expected_loss(
                group['cumulative_conversions_a'].to_numpy(),
                group['cumulative_conversions_b'].to_numpy(),
                group['checkpoint_time'].to_numpy(),
                prior,
                rng,
            )
        except InvariantViolation as exc:
            if strict:
                raise InvariantViolation(str(exc), simulation_id=simulation_id) from exc
            failures.append({'simulation_id': simulation_id, 'error': str(exc)})
            continue

        unit = group[CHECKPOINT_COLUMNS].copy()
        unit['loss_a'] = loss_a
        unit['loss_b'] = loss_b
        unit['prob_b_better'] = prob_b_better
        units.append(unit)

    if units:
        loss_records = pd.concat(units, ignore_index=True)
    else:
        loss_records = pd.DataFrame(columns=LOSS_COLUMNS)
    loss_records.attrs['failures'] = failures

    if verbose:
        print("\n" + "="*70)
        print("EXPECTED LOSS ESTIMATION")
        print("="*70)
        print(f"Prior: Beta({prior.alpha}, {prior.beta})")
        print(f"Posterior samples per checkpoint: {prior.posterior_samples:,}")
        print(f"Loss records: {len(loss_records):,}")
        if failures:
            print(f"⚠️  {len(failures)} simulations failed and were dropped")

    return loss_records


if __name__ == "__main__":
    from src.data_generation import SimulationConfig, simulate

    config = SimulationConfig.from_config(num_simulations=20)
    loss_records = augment(simulate(config, verbose=True), seed=config.seed, verbose=True)

    final = loss_records[loss_records['checkpoint_time'] == config.max_observations]
    print(f"\nMean final loss A: {final['loss_a'].mean():.6f}")
    print(f"Mean final loss B: {final['loss_b'].mean():.6f}")
    print(f"Mean P(B > A): {final['prob_b_better'].mean():.2%}")
