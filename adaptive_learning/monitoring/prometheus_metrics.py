"""
prometheus_metrics.py
Prometheus exporter for the learning engine

Author: Adaptive Learning System
Date: 2024
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from adaptive_learning.core.models import (
    AdaptiveSettings,
    FeedbackLoopRecord,
    LearningMetrics,
    TradeOutcome,
)

logger = logging.getLogger(__name__)


DATA_QUALITY_LEVELS = {'poor': 0, 'fair': 1, 'good': 2, 'excellent': 3}


class LearningMetricsExporter:
    """Prometheus metrics exporters"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        # Per-engine registry so several engines never collide
        self.registry = registry or CollectorRegistry()

        # Outcome metrics
        self.trades_processed = Counter(
            'learning_trades_processed', 'Finalized trade outcomes processed',
            ['outcome'], registry=self.registry
        )
        self.realized_pnl = Gauge('learning_realized_pnl', 'Sum of processed realized P&L',
                                  registry=self.registry)

        # Feedback metrics
        self.feedback_loops = Counter(
            'learning_feedback_loops', 'Feedback loops processed',
            ['feedback_type', 'impact'], registry=self.registry
        )

        # Rollup metrics
        self.success_rate = Gauge('learning_success_rate', 'Success rate over the metrics window',
                                  registry=self.registry)
        self.sharpe_ratio = Gauge('learning_sharpe_ratio', 'Sharpe-like ratio of per-trade returns',
                                  registry=self.registry)
        self.max_drawdown = Gauge('learning_max_drawdown', 'Max drawdown of the cumulative return path',
                                  registry=self.registry)
        self.model_accuracy = Gauge('learning_model_accuracy', 'Average accuracy of active models',
                                    registry=self.registry)
        self.data_quality = Gauge('learning_data_quality', 'Data quality (0=poor, 3=excellent)',
                                  registry=self.registry)
        self.patterns = Gauge('learning_patterns_identified', 'Stored pattern count',
                              registry=self.registry)

        # Adaptive settings
        self.risk_multiplier = Gauge('learning_risk_multiplier', 'Current risk multiplier',
                                     registry=self.registry)
        self.confidence_threshold = Gauge('learning_confidence_threshold', 'Current confidence threshold',
                                          registry=self.registry)
        self.settings_updates = Counter('learning_settings_updates', 'Adaptive settings publications',
                                        registry=self.registry)

    def record_outcome(self, outcome: TradeOutcome):
        self.trades_processed.labels(outcome=outcome.outcome.value).inc()
        if outcome.pnl is not None:
            self.realized_pnl.inc(outcome.pnl)

    def record_feedback(self, record: FeedbackLoopRecord):
        self.feedback_loops.labels(
            feedback_type=record.feedback_type.value, impact=record.impact.value
        ).inc()

    def update_learning_metrics(self, metrics: LearningMetrics):
        """Update Prometheus rollup metrics"""
        self.success_rate.set(metrics.success_rate)
        self.sharpe_ratio.set(metrics.sharpe_ratio)
        self.max_drawdown.set(metrics.max_drawdown)
        self.model_accuracy.set(metrics.model_accuracy)
        self.data_quality.set(DATA_QUALITY_LEVELS.get(metrics.data_quality.value, 0))
        self.patterns.set(metrics.patterns_identified)

    def update_settings(self, settings: AdaptiveSettings):
        self.risk_multiplier.set(settings.risk_multiplier)
        self.confidence_threshold.set(settings.confidence_threshold)
        self.settings_updates.inc()

    def set_pattern_count(self, count: int):
        self.patterns.set(count)

    def render(self) -> bytes:
        """Text exposition of this exporter's registry"""
        return generate_latest(self.registry)
