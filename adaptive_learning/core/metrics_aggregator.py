"""
metrics_aggregator.py
Periodic rollup of the outcome window into a dashboard-ready snapshot

Author: Adaptive Learning System
Date: 2024
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import DataQuality, LearningMetrics, TradeOutcome, TradeOutcomeStatus

logger = logging.getLogger(__name__)


def calculate_sharpe_ratio(returns: Sequence[float]) -> float:
    """Mean return over population standard deviation, 0 when flat"""
    if len(returns) == 0:
        return 0.0
    values = np.asarray(returns, dtype=float)
    volatility = np.std(values)
    if volatility == 0:
        return 0.0
    return float(np.mean(values) / volatility)


def calculate_max_drawdown(returns: Sequence[float]) -> float:
    """Largest peak-to-trough fall of the equity path 1 + cumsum(returns)"""
    if len(returns) == 0:
        return 0.0
    equity = 1.0 + np.cumsum(np.asarray(returns, dtype=float))
    peaks = np.maximum.accumulate(np.concatenate(([1.0], equity)))[1:]
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(max(0.0, np.max(drawdowns)))


def assess_data_quality(outcomes: Sequence[TradeOutcome]) -> DataQuality:
    """Grade from the fraction of trades that are fully resolved"""
    if not outcomes:
        return DataQuality.POOR
    completion_rate = sum(1 for o in outcomes if o.is_resolved) / len(outcomes)
    if completion_rate > 0.9:
        return DataQuality.EXCELLENT
    if completion_rate > 0.7:
        return DataQuality.GOOD
    if completion_rate > 0.5:
        return DataQuality.FAIR
    return DataQuality.POOR


class MetricsAggregator:
    """Computes and holds the current LearningMetrics snapshot"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._metrics = LearningMetrics()
        self._guard = threading.Lock()

    def get(self) -> LearningMetrics:
        return self._metrics

    def update(self, outcomes: Sequence[TradeOutcome], patterns_identified: int,
               model_accuracy: float) -> Optional[LearningMetrics]:
        """Recompute and publish; None if a pass is already running"""
        if not self._guard.acquire(blocking=False):
            logger.info("Metrics pass already running, dropping trigger")
            return None
        try:
            self._metrics = self.compute(outcomes, patterns_identified, model_accuracy)
            return self._metrics
        finally:
            self._guard.release()

    def compute(self, outcomes: Sequence[TradeOutcome], patterns_identified: int = 0,
                model_accuracy: float = 0.0) -> LearningMetrics:
        """outcomes are expected newest first"""
        recent = list(outcomes)[:self.config.metrics_window]

        successful = sum(1 for o in recent if o.outcome == TradeOutcomeStatus.WIN)
        with_pnl = [o for o in recent if o.pnl is not None]
        # Chronological order for the drawdown path
        returns = [o.return_pct for o in reversed(with_pnl) if o.return_pct is not None]

        return LearningMetrics(
            total_trades=len(recent),
            successful_trades=successful,
            success_rate=successful / len(recent) if recent else 0.0,
            average_return=float(np.mean(returns)) if returns else 0.0,
            average_pnl=float(np.mean([o.pnl for o in with_pnl])) if with_pnl else 0.0,
            sharpe_ratio=calculate_sharpe_ratio(returns),
            max_drawdown=calculate_max_drawdown(returns),
            patterns_identified=patterns_identified,
            model_accuracy=model_accuracy,
            data_quality=assess_data_quality(recent[:self.config.data_quality_window]),
            last_updated=datetime.now()
        )

    def performance_trends(self, outcomes: Sequence[TradeOutcome], days: int = 30) -> Dict[str, List[float]]:
        """Daily pnl, win rate and mean/std return series for the dashboard"""
        rows = [
            {
                'date': (o.closed_at or o.executed_at),
                'pnl': o.pnl,
                'is_win': o.outcome == TradeOutcomeStatus.WIN,
                'ret': o.return_pct if o.return_pct is not None else np.nan
            }
            for o in outcomes if o.is_resolved
        ]
        empty = {'daily_pnl': [], 'win_rate_trend': [], 'risk_adjusted_returns': []}
        if not rows:
            return empty

        frame = pd.DataFrame(rows)
        frame['date'] = pd.to_datetime(frame['date']).dt.normalize()
        daily = frame.groupby('date').agg(
            pnl=('pnl', 'sum'),
            win_rate=('is_win', 'mean'),
            ret_mean=('ret', 'mean'),
            ret_std=('ret', lambda s: float(np.std(s.dropna())) if s.notna().any() else 0.0)
        ).sort_index().tail(days)

        risk_adjusted = [
            float(m / s) if s and not np.isnan(m) else 0.0
            for m, s in zip(daily['ret_mean'], daily['ret_std'])
        ]
        return {
            'daily_pnl': [float(v) for v in daily['pnl']],
            'win_rate_trend': [float(v) for v in daily['win_rate']],
            'risk_adjusted_returns': risk_adjusted
        }

    def get_state(self) -> Dict[str, Any]:
        return self._metrics.to_dict()
