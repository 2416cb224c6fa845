"""
Configuration file for the Expected-Loss Stopping Rule Simulator
Modify these parameters to customize the simulated experiments
"""


SIMULATION_CONFIG = {
    'rate_a': 0.0020,              # True conversion rate of variant A
    'rate_b': 0.0025,              # True conversion rate of variant B
    'max_observations': 100000,    # Per-variant sample budget
    'checkpoint_increment': 2000,  # Observations per variant between looks
    'num_simulations': 500,
    'seed': 42,
}

PRIOR_CONFIG = {
    'alpha': 1.0,                  # Beta prior alpha parameter
    'beta': 1.0,                   # Beta prior beta parameter
    'posterior_samples': 1000,     # Monte Carlo draws per posterior
}

STOPPING_CONFIG = {
    'threshold': 0.00004,          # Stop once expected loss falls below this
    'duration_percentile': 75,     # Percentile of total duration to report
}

SWEEP_CONFIG = {
    'base_rate': 0.0020,
    'effect_sizes': [0.0, 0.1, 0.25, 0.5],                       # Relative lift of B over A
    'thresholds': [0.00001, 0.00002, 0.00004, 0.00008, 0.00016],
    'simulations_per_effect_size': 300,
    'max_observations': 100000,
    'checkpoint_increment': 2000,
    'n_jobs': 1,
}

# Reference scenario: B converts 25% better than A
REFERENCE_SCENARIO = {
    'rate_a': 0.0020,
    'rate_b': 0.0025,
    'max_observations': 100000,
    'checkpoint_increment': 2000,
    'num_simulations': 500,
    'threshold': 0.00004,
}
