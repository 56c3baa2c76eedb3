"""
adaptive_settings.py
Owner of the AdaptiveSettings value consumed by the trading system

Every update computes a complete new value and publishes it with a single
assignment, so readers only ever see a fully applied state.
"""

import logging
import threading
import time
from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import AdaptiveSettings
from adaptive_learning.utils.validators import clamp

logger = logging.getLogger(__name__)


class AdaptiveSettingsStore:
    """Clamped, atomically replaced adaptive settings"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._settings = self._normalize(AdaptiveSettings(
            risk_multiplier=self.config.default_risk_multiplier,
            confidence_threshold=self.config.default_confidence_threshold
        ))
        self._lock = threading.Lock()
        self.update_count = 0

    def get(self) -> AdaptiveSettings:
        return self._settings

    def update(self, **changes) -> AdaptiveSettings:
        """Replace the named fields, clamping every one of them"""
        return self.apply(lambda current: replace(current, **changes))

    def apply(self, fn: Callable[[AdaptiveSettings], AdaptiveSettings]) -> AdaptiveSettings:
        """Compute a new value from the current one and publish it"""
        with self._lock:
            candidate = self._normalize(fn(self._settings))
            self._settings = replace(candidate, last_updated=time.time())
            self.update_count += 1
            published = self._settings

        logger.debug(
            f"Adaptive settings updated: risk_multiplier={published.risk_multiplier:.3f} "
            f"confidence_threshold={published.confidence_threshold:.3f}"
        )
        return published

    def nudge(self, risk_factor: float = 1.0, threshold_delta: float = 0.0) -> AdaptiveSettings:
        """Scale the risk multiplier and shift the confidence threshold"""
        return self.apply(lambda s: replace(
            s,
            risk_multiplier=s.risk_multiplier * risk_factor,
            confidence_threshold=s.confidence_threshold + threshold_delta
        ))

    def _normalize(self, settings: AdaptiveSettings) -> AdaptiveSettings:
        cfg = self.config
        return replace(
            settings,
            risk_multiplier=round(clamp(
                settings.risk_multiplier, cfg.risk_multiplier_min, cfg.risk_multiplier_max
            ), 6),
            confidence_threshold=round(clamp(
                settings.confidence_threshold, cfg.confidence_threshold_min, cfg.confidence_threshold_max
            ), 6),
            signal_weights=self._clamp_weights(
                settings.signal_weights, cfg.signal_weight_min, cfg.signal_weight_max
            ),
            bot_weights=self._clamp_weights(
                settings.bot_weights, cfg.bot_weight_min, cfg.bot_weight_max
            )
        )

    @staticmethod
    def _clamp_weights(weights: Mapping[str, float], lower: float, upper: float) -> Mapping[str, float]:
        return MappingProxyType({k: clamp(float(v), lower, upper) for k, v in weights.items()})
