"""
Validation for Simulated A/B Experiments
Eager configuration checks and data-quality checks on checkpoint and loss tables
"""

import numbers

import numpy as np
import pandas as pd


class ConfigurationError(ValueError):
    """Invalid or inconsistent simulation parameters."""


class InvariantViolation(RuntimeError):
    """Internal consistency failure, e.g. corrupted checkpoint counts."""

    def __init__(self, message, simulation_id=None):
        super().__init__(message)
        self.simulation_id = simulation_id


# ============================================================================
# CONFIGURATION CHECKS
# ============================================================================

def _is_integer(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def validate_rate(name, value):
    """Rates must be probabilities strictly inside (0, 1)"""
    if not isinstance(value, numbers.Real) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a real number, got {value!r}")
    if not 0 < value < 1:
        raise ConfigurationError(f"{name} must be in (0, 1), got {value}")


def validate_positive_int(name, value):
    if not _is_integer(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def validate_positive_real(name, value):
    if not isinstance(value, numbers.Real) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a real number, got {value!r}")
    if not np.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")


def validate_simulation_config(config):
    """
    Validate a SimulationConfig before any draws are made

    Raises:
        ConfigurationError: on the first invalid parameter
    """
    validate_rate('rate_a', config.rate_a)
    validate_rate('rate_b', config.rate_b)
    validate_positive_int('max_observations', config.max_observations)
    validate_positive_int('checkpoint_increment', config.checkpoint_increment)
    validate_positive_int('num_simulations', config.num_simulations)

    if config.checkpoint_increment > config.max_observations:
        raise ConfigurationError(
            f"checkpoint_increment ({config.checkpoint_increment}) exceeds "
            f"max_observations ({config.max_observations})"
        )
    if config.max_observations % config.checkpoint_increment != 0:
        raise ConfigurationError(
            f"checkpoint_increment ({config.checkpoint_increment}) must evenly "
            f"divide max_observations ({config.max_observations})"
        )
    if config.seed is not None and not _is_integer(config.seed):
        raise ConfigurationError(f"seed must be an integer or None, got {config.seed!r}")


def validate_prior_config(prior):
    validate_positive_real('prior alpha', prior.alpha)
    validate_positive_real('prior beta', prior.beta)
    validate_positive_int('posterior_samples', prior.posterior_samples)


def validate_threshold(threshold):
    validate_positive_real('threshold', threshold)


def validate_threshold_grid(thresholds):
    """Threshold grid must be a non-empty sequence of positive reals"""
    thresholds = list(thresholds)
    if not thresholds:
        raise ConfigurationError("threshold grid must not be empty")
    for threshold in thresholds:
        validate_threshold(threshold)
    if len(set(thresholds)) != len(thresholds):
        raise ConfigurationError("threshold grid contains duplicates")
    return thresholds


def validate_effect_size_grid(effect_sizes, base_rate):
    """
    Effect sizes must be reals > -1 so that rate_b stays positive,
    and must keep rate_b = base_rate * (1 + effect_size) below 1
    """
    effect_sizes = list(effect_sizes)
    if not effect_sizes:
        raise ConfigurationError("effect size grid must not be empty")
    validate_rate('base_rate', base_rate)
    for effect_size in effect_sizes:
        if not isinstance(effect_size, numbers.Real) or isinstance(effect_size, bool):
            raise ConfigurationError(f"effect size must be a real number, got {effect_size!r}")
        if not effect_size > -1:
            raise ConfigurationError(f"effect size must be greater than -1, got {effect_size}")
        validate_rate(f'rate_b for effect size {effect_size}', base_rate * (1 + effect_size))
    if len(set(effect_sizes)) != len(effect_sizes):
        raise ConfigurationError("effect size grid contains duplicates")
    return effect_sizes


def validate_percentile(percentile):
    if not isinstance(percentile, numbers.Real) or not 0 < percentile <= 100:
        raise ConfigurationError(f"percentile must be in (0, 100], got {percentile!r}")


# ============================================================================
# DATA-QUALITY CHECKS
# ============================================================================

def check_count_bounds(checkpoints):
    """Cumulative conversions must lie within [0, checkpoint_time]"""
    print("\n" + "="*70)
    print("CONVERSION COUNT BOUNDS CHECK")
    print("="*70)

    issues = []
    for column in ['cumulative_conversions_a', 'cumulative_conversions_b']:
        negative = (checkpoints[column] < 0).sum()
        excess = (checkpoints[column] > checkpoints['checkpoint_time']).sum()
        if negative > 0:
            issues.append(f"{negative} rows with negative {column}")
        if excess > 0:
            issues.append(f"{excess} rows where {column} exceeds checkpoint_time")

    if issues:
        for issue in issues:
            print(f"⚠️  WARNING: {issue}")
        return False
    else:
        print("✓ All conversion counts within bounds")
        return True


def check_monotonic_counts(checkpoints):
    """Cumulative conversions must never decrease within a simulation"""
    print("\n" + "="*70)
    print("MONOTONIC COUNTS CHECK")
    print("="*70)

    ordered = checkpoints.sort_values(['simulation_id', 'checkpoint_time'])
    grouped = ordered.groupby('simulation_id')

    decreasing = 0
    for column in ['cumulative_conversions_a', 'cumulative_conversions_b']:
        steps = grouped[column].diff().dropna()
        decreasing += int((steps < 0).sum())

    if decreasing > 0:
        print(f"⚠️  WARNING: {decreasing} decreasing steps in cumulative counts!")
        return False
    else:
        print("✓ Cumulative counts are non-decreasing")
        return True


def check_checkpoint_grid(checkpoints, checkpoint_increment, max_observations):
    """Every simulation must look at increment, 2*increment, ..., max_observations"""
    print("\n" + "="*70)
    print("CHECKPOINT GRID CHECK")
    print("="*70)

    expected = np.arange(checkpoint_increment, max_observations + 1, checkpoint_increment)

    malformed = []
    for simulation_id, group in checkpoints.groupby('simulation_id', sort=True):
        if not np.array_equal(group['checkpoint_time'].to_numpy(), expected):
            malformed.append(simulation_id)

    print(f"Expected checkpoints per simulation: {len(expected)}")
    print(f"Simulations checked: {checkpoints['simulation_id'].nunique():,}")

    if malformed:
        print(f"\n⚠️  WARNING: {len(malformed)} simulations have a malformed checkpoint grid")
        return False
    else:
        print("\n✓ Checkpoint grid is consistent")
        return True


def check_loss_non_negative(loss_records):
    """Expected losses are averages of non-negative values"""
    print("\n" + "="*70)
    print("EXPECTED LOSS CHECK")
    print("="*70)

    negative = int(((loss_records['loss_a'] < 0) | (loss_records['loss_b'] < 0)).sum())
    missing = int(loss_records[['loss_a', 'loss_b']].isna().any(axis=1).sum())

    print(f"Loss A range: {loss_records['loss_a'].min():.6f} - {loss_records['loss_a'].max():.6f}")
    print(f"Loss B range: {loss_records['loss_b'].min():.6f} - {loss_records['loss_b'].max():.6f}")

    if negative > 0 or missing > 0:
        print(f"\n⚠️  WARNING: {negative} negative and {missing} missing loss estimates!")
        return False
    else:
        print("\n✓ Loss estimates are non-negative")
        return True


def run_all_validations(checkpoints, loss_records=None, checkpoint_increment=None,
                        max_observations=None):
    """Run complete validation suite on simulated tables"""
    print("\n" + "="*70)
    print("STARTING DATA QUALITY VALIDATION")
    print("="*70)
    print(f"Checking {len(checkpoints):,} checkpoint records")

    issues = []

    if not check_count_bounds(checkpoints):
        issues.append("Conversion counts out of bounds")

    if not check_monotonic_counts(checkpoints):
        issues.append("Cumulative counts decrease")

    if checkpoint_increment is not None and max_observations is not None:
        if not check_checkpoint_grid(checkpoints, checkpoint_increment, max_observations):
            issues.append("Malformed checkpoint grid")

    if loss_records is not None and not check_loss_non_negative(loss_records):
        issues.append("Invalid loss estimates")

    # Summary
    print("\n" + "="*70)
    print("VALIDATION SUMMARY")
    print("="*70)

    if len(issues) == 0:
        print("\n✓ ALL CHECKS PASSED!")
        return True
    else:
        print(f"\n⚠️  Found {len(issues)} issues:")
        for i, issue in enumerate(issues, 1):
            print(f"{i}. {issue}")
        return False


def require_valid_checkpoints(checkpoints):
    """Raise InvariantViolation when required checkpoint columns are missing"""
    required = {'simulation_id', 'checkpoint_time',
                'cumulative_conversions_a', 'cumulative_conversions_b'}
    if not isinstance(checkpoints, pd.DataFrame):
        raise InvariantViolation("checkpoints must be a DataFrame")
    missing = required - set(checkpoints.columns)
    if missing:
        raise InvariantViolation(f"checkpoints missing columns: {', '.join(sorted(missing))}")
