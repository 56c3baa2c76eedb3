"""
learning_config.py
Configuration for the adaptive learning engine

Author: Adaptive Learning System
Date: 2024
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)


# Constants
DEFAULT_CONFIG_PATH = 'config/learning_config.yaml'
PATTERN_ANALYSIS_INTERVAL = 6 * 60 * 60  # seconds
MODEL_UPDATE_INTERVAL = 24 * 60 * 60
METRICS_UPDATE_INTERVAL = 60 * 60
INITIAL_RUN_DELAY = 10


@dataclass
class LearningConfig:
    """Thresholds and capacities of the learning engine"""
    # Capacities
    outcome_capacity: int = 10000
    feedback_capacity: int = 1000
    insight_capacity: int = 100
    signal_registry_capacity: int = 5000
    learning_event_capacity: int = 10000
    recent_window: int = 50

    # Bot / signal weight stepping
    min_samples_for_adjustment: int = 5
    improve_threshold: float = 0.6
    degrade_threshold: float = 0.4
    bot_weight_step: float = 0.05
    bot_weight_min: float = 0.3
    bot_weight_max: float = 1.5
    signal_weight_step: float = 0.1
    signal_weight_min: float = 0.2
    signal_weight_max: float = 1.8

    # Pattern analysis
    analysis_window: int = 1000
    min_outcomes_for_analysis: int = 50
    min_symbol_samples: int = 10
    min_time_samples: int = 5
    min_signal_type_samples: int = 10
    min_severity_samples: int = 5
    min_losses_for_risk_pattern: int = 20
    critical_cluster_size: int = 3
    critical_cluster_window_seconds: int = 3600
    neutral_band_low: float = 0.4
    neutral_band_high: float = 0.6
    confidence_size_weight: float = 0.3
    confidence_rate_weight: float = 0.7
    confidence_saturation_samples: int = 100
    pattern_timeframe: str = '30d'

    # Predictions
    min_return_samples: int = 10
    return_history_limit: int = 100
    max_sensitivity: float = 1.5
    sensitivity_step: float = 0.05

    # Model retraining
    min_validation_samples: int = 20

    # Adaptive settings
    risk_multiplier_min: float = 0.5
    risk_multiplier_max: float = 1.5
    confidence_threshold_min: float = 0.4
    confidence_threshold_max: float = 0.8
    default_risk_multiplier: float = 1.0
    default_confidence_threshold: float = 0.6
    min_outcomes_for_reconcile: int = 20

    # Metrics
    metrics_window: int = 1000
    data_quality_window: int = 100

    # Scheduling (seconds)
    pattern_analysis_interval: float = PATTERN_ANALYSIS_INTERVAL
    model_update_interval: float = MODEL_UPDATE_INTERVAL
    metrics_update_interval: float = METRICS_UPDATE_INTERVAL
    initial_run_delay: float = INITIAL_RUN_DELAY

    def __post_init__(self):
        positive_ints = [
            'outcome_capacity', 'feedback_capacity', 'insight_capacity',
            'signal_registry_capacity', 'learning_event_capacity', 'recent_window',
            'analysis_window', 'metrics_window', 'data_quality_window'
        ]
        for name in positive_ints:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if not 0 <= self.degrade_threshold < self.improve_threshold <= 1:
            raise ValueError(
                f"degrade_threshold/improve_threshold must satisfy 0 <= degrade < improve <= 1, "
                f"got {self.degrade_threshold}/{self.improve_threshold}"
            )
        if not 0 <= self.neutral_band_low <= 0.5 <= self.neutral_band_high <= 1:
            raise ValueError("neutral_band_low/neutral_band_high must bracket 0.5")
        if self.bot_weight_min > self.bot_weight_max:
            raise ValueError("bot_weight_min must not exceed bot_weight_max")
        if self.signal_weight_min > self.signal_weight_max:
            raise ValueError("signal_weight_min must not exceed signal_weight_max")
        if self.risk_multiplier_min > self.risk_multiplier_max:
            raise ValueError("risk_multiplier_min must not exceed risk_multiplier_max")
        if not 0 <= self.confidence_threshold_min <= self.confidence_threshold_max <= 1:
            raise ValueError("confidence_threshold bounds must lie within [0, 1]")
        if self.confidence_saturation_samples <= 0:
            raise ValueError("confidence_saturation_samples must be positive")
        if abs(self.confidence_size_weight + self.confidence_rate_weight - 1.0) > 1e-9:
            raise ValueError("confidence_size_weight and confidence_rate_weight must sum to 1")
        for name in ('pattern_analysis_interval', 'model_update_interval', 'metrics_update_interval'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'LearningConfig':
        """Build config from a mapping, ignoring unknown keys"""
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown learning config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from YAML file"""
    config_path = Path(path)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {path}")
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f)

    return raw if isinstance(raw, dict) else {}


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> LearningConfig:
    """Load the `learning` section of a YAML file into a LearningConfig"""
    raw = load_yaml(path)
    return LearningConfig.from_dict(raw.get('learning', raw))
