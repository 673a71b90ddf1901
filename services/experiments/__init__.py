from services.experiments.experiment_framework import (
    ExperimentFramework,
    audience_matches,
    metric_definition,
    validate_test_config,
)
from services.experiments.statistics import mean_and_interval, percent_improvement, pooled_t_test

__all__ = [
    "ExperimentFramework",
    "audience_matches",
    "metric_definition",
    "validate_test_config",
    "mean_and_interval",
    "percent_improvement",
    "pooled_t_test",
]
