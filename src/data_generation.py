"""
Synthetic A/B Experiment Simulation
Generates cumulative conversion counts for both variants at fixed checkpoints
"""

import os
import sys
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
import pandas as pd

# Import configuration
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import SIMULATION_CONFIG
from src.data_validation import validate_simulation_config


CHECKPOINT_COLUMNS = [
    'simulation_id',
    'checkpoint_time',
    'cumulative_conversions_a',
    'cumulative_conversions_b',
]

# Random stream namespaces
SIMULATION_STREAM = 0
POSTERIOR_STREAM = 1


@dataclass(frozen=True)
class SimulationConfig:
    """Parameters for a batch of simulated experiments."""

    rate_a: float
    rate_b: float
    max_observations: int
    checkpoint_increment: int
    num_simulations: int
    seed: Optional[int] = None

    @property
    def num_checkpoints(self) -> int:
        return self.max_observations // self.checkpoint_increment

    @property
    def checkpoint_times(self) -> np.ndarray:
        return np.arange(1, self.num_checkpoints + 1, dtype=np.int64) * self.checkpoint_increment

    def with_overrides(self, **overrides) -> "SimulationConfig":
        """Return a copy with the supplied fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_config(cls, **overrides) -> "SimulationConfig":
        """Build a configuration from SIMULATION_CONFIG defaults plus overrides."""
        params = dict(SIMULATION_CONFIG)
        params.update(overrides)
        return cls(**params)


def unit_generator(seed, stream, unit_id):
    """
    Independent random stream for one unit of work

    The stream depends only on (seed, stream, unit_id), so a unit draws the
    same numbers no matter how many other units run or in what order.
    """
    sequence = np.random.SeedSequence(seed, spawn_key=(int(stream), int(unit_id)))
    return np.random.default_rng(sequence)


def simulate_unit(config, simulation_id, rng):
    """
    Simulate a single experiment

    Args:
        config: SimulationConfig
        simulation_id: Identifier stamped on every checkpoint row
        rng: numpy Generator owned by this unit

    Returns:
        Dictionary of column arrays, one entry per checkpoint
    """
    n_buckets = config.num_checkpoints

    # Two independent outcome streams of equal length
    outcomes_a = rng.random(config.max_observations) < config.rate_a
    outcomes_b = rng.random(config.max_observations) < config.rate_b

    # Conversions per bucket, then running totals across buckets
    bucket_a = outcomes_a.reshape(n_buckets, config.checkpoint_increment).sum(axis=1)
    bucket_b = outcomes_b.reshape(n_buckets, config.checkpoint_increment).sum(axis=1)

    return {
        'simulation_id': np.full(n_buckets, simulation_id, dtype=np.int64),
        'checkpoint_time': config.checkpoint_times,
        'cumulative_conversions_a': np.cumsum(bucket_a, dtype=np.int64),
        'cumulative_conversions_b': np.cumsum(bucket_b, dtype=np.int64),
    }


def simulate(config, verbose=False):
    """
    Simulate ``num_simulations`` independent A/B experiments

    Args:
        config: SimulationConfig (validated before any draw)
        verbose: Print progress and a generation summary

    Returns:
        DataFrame of checkpoints grouped by simulation_id, ordered by time
    """
    validate_simulation_config(config)

    if verbose:
        print("="*70)
        print("SIMULATING A/B EXPERIMENTS")
        print("="*70)
        print(f"\nSimulations: {config.num_simulations:,}")
        print(f"Observations per variant: {config.max_observations:,}")
        print(f"Checkpoint every: {config.checkpoint_increment:,}")
        print(f"Variant A conversion: {config.rate_a:.4%}")
        print(f"Variant B conversion: {config.rate_b:.4%}")
        print(f"Expected lift: {(config.rate_b/config.rate_a - 1):.2%}")
        print()

    units = []
    for simulation_id in range(1, config.num_simulations + 1):
        rng = unit_generator(config.seed, SIMULATION_STREAM, simulation_id)
        units.append(simulate_unit(config, simulation_id, rng))

        if verbose and simulation_id % 100 == 0:
            print(f"Simulated {simulation_id:,} experiments...")

    # Merge once at the end
    checkpoints = pd.DataFrame({
        column: np.concatenate([unit[column] for unit in units])
        for column in CHECKPOINT_COLUMNS
    })

    if verbose:
        final = checkpoints[checkpoints['checkpoint_time'] == config.max_observations]
        print("\n" + "="*70)
        print("SIMULATION SUMMARY")
        print("="*70)
        print(f"\nCheckpoint records: {len(checkpoints):,}")
        print(f"Observed A conversion: {final['cumulative_conversions_a'].mean() / config.max_observations:.4%}")
        print(f"Observed B conversion: {final['cumulative_conversions_b'].mean() / config.max_observations:.4%}")
        print("="*70 + "\n")

    return checkpoints


if __name__ == "__main__":
    checkpoints = simulate(SimulationConfig.from_config(), verbose=True)
    print("First 10 rows:")
    print(checkpoints.head(10))
    print("\nData types:")
    print(checkpoints.dtypes)
