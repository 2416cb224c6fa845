"""
Expected-Loss Stopping Rule
Determines when each simulated experiment stops and which variant it ships
"""

import os
import sys

import numpy as np
import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import STOPPING_CONFIG
from src.data_validation import validate_rate, validate_threshold


OUTCOME_COLUMNS = [
    'simulation_id',
    'effect_size',
    'threshold_used',
    'stopping_checkpoint',
    'total_duration',
    'forced_stop',
    'selected_variant',
    'is_correct',
]


def true_better_variant(rate_a, rate_b):
    """Ground truth: the variant with the higher configured rate, None if equal"""
    if rate_b > rate_a:
        return 'B'
    if rate_a > rate_b:
        return 'A'
    return None


def select_variant(loss_a, loss_b):
    """Ship the variant with the smaller expected loss, None on an exact tie"""
    if loss_a < loss_b:
        return 'A'
    if loss_b < loss_a:
        return 'B'
    return None


def _select_variants(loss_a, loss_b):
    return np.vectorize(select_variant, otypes=[object])(loss_a, loss_b)


def evaluate(loss_records, threshold, rate_a, rate_b, effect_size=None):
    """
    Apply the stopping rule to every simulation

    Scanning checkpoints in time order, an experiment stops at the first
    checkpoint where either expected loss drops below ``threshold``. If that
    never happens it is forced to stop at the last checkpoint (the budget).

    Args:
        loss_records: LossRecord DataFrame (not modified)
        threshold: Expected-loss threshold
        rate_a: True conversion rate of A, used to score the decision
        rate_b: True conversion rate of B, used to score the decision
        effect_size: Label copied onto every outcome row

    Returns:
        Outcome DataFrame, one row per simulation. ``is_correct`` is a nullable
        boolean and is <NA> when there is nothing to score: the true rates are
        equal, or a tie left no variant selected.
    """
    validate_threshold(threshold)
    validate_rate('rate_a', rate_a)
    validate_rate('rate_b', rate_b)

    if len(loss_records) == 0:
        return pd.DataFrame(columns=OUTCOME_COLUMNS)

    ordered = loss_records.sort_values(['simulation_id', 'checkpoint_time'])
    met = (ordered['loss_a'] < threshold) | (ordered['loss_b'] < threshold)

    first_met = ordered[met].drop_duplicates('simulation_id', keep='first').set_index('simulation_id')
    last = ordered.drop_duplicates('simulation_id', keep='last').set_index('simulation_id')
    forced = last[~last.index.isin(first_met.index)]

    stopped = pd.concat([first_met, forced]).sort_index()

    selected = _select_variants(stopped['loss_a'].to_numpy(), stopped['loss_b'].to_numpy())
    better = true_better_variant(rate_a, rate_b)
    is_correct = pd.array([pd.NA] * len(stopped), dtype='boolean')
    if better is not None:
        scored = ~pd.isna(selected)
        is_correct[scored] = selected[scored] == better

    stopping_checkpoint = stopped['checkpoint_time'].to_numpy(dtype=np.int64)

    return pd.DataFrame({
        'simulation_id': stopped.index.to_numpy(),
        'effect_size': effect_size,
        'threshold_used': threshold,
        'stopping_checkpoint': stopping_checkpoint,
        # Both variants accrue observations in lockstep
        'total_duration': stopping_checkpoint * 2,
        'forced_stop': stopped.index.isin(forced.index),
        'selected_variant': selected,
        'is_correct': is_correct,
    })


if __name__ == "__main__":
    from src.data_generation import SimulationConfig, simulate
    from src.expected_loss import augment

    config = SimulationConfig.from_config(num_simulations=100)
    loss_records = augment(simulate(config), seed=config.seed)
    outcomes = evaluate(loss_records, STOPPING_CONFIG['threshold'], config.rate_a, config.rate_b)

    print("\n" + "="*70)
    print("STOPPING RULE OUTCOMES")
    print("="*70)
    print(f"Threshold: {STOPPING_CONFIG['threshold']}")
    print(outcomes['selected_variant'].value_counts(dropna=False))
    print(f"\nAccuracy: {outcomes['is_correct'].mean():.2%}")
    print(f"Median duration: {outcomes['total_duration'].median():,.0f}")
    print(f"Forced stops: {outcomes['forced_stop'].mean():.2%}")
