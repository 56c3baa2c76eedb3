"""
insights.py
Portfolio-level learning state and post-trade insights
"""

import logging
import threading
import time
from dataclasses import replace
from types import MappingProxyType
from typing import List, Optional, Sequence

import numpy as np

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import (
    BotPerformance,
    HoldingPeriodRecord,
    InsightType,
    LearningInsight,
    PatternMatch,
    PatternStrength,
    PortfolioLearning,
    TradeOutcome,
    TradeOutcomeStatus,
)
from adaptive_learning.infrastructure.bounded_buffer import BoundedBuffer
from adaptive_learning.utils.validators import clamp

logger = logging.getLogger(__name__)


HOLDING_PERIOD_HISTORY = 100
RISK_TOLERANCE_GAIN = 0.01
RISK_TOLERANCE_LOSS = 0.02
DRAWDOWN_ALERT_PCT = 0.05
MIN_TRADES_FOR_TREND = 10


class PortfolioLearningTracker:
    """Holding periods, exit reasons and learned risk tolerance"""

    def __init__(self):
        self._state = PortfolioLearning()
        self._lock = threading.Lock()

    def get(self) -> PortfolioLearning:
        return self._state

    def update(self, outcome: TradeOutcome) -> PortfolioLearning:
        if not outcome.is_resolved:
            return self._state

        profitable = outcome.outcome == TradeOutcomeStatus.WIN
        with self._lock:
            current = self._state
            holding = current.preferred_holding_periods
            if outcome.duration_hours is not None:
                holding = (holding + (HoldingPeriodRecord(
                    hours=outcome.duration_hours, was_profitable=profitable, pnl=outcome.pnl
                ),))[-HOLDING_PERIOD_HISTORY:]

            exit_stats = {k: dict(v) for k, v in current.exit_reason_stats.items()}
            if outcome.exit_reason:
                stats = exit_stats.setdefault(outcome.exit_reason, {'trades': 0, 'wins': 0})
                stats['trades'] += 1
                stats['wins'] += int(profitable)

            tolerance = current.risk_tolerance_learned
            drawdown = abs(outcome.max_drawdown_pct or 0.0)
            if profitable and drawdown > tolerance * 0.1:
                # Sat through a drawdown and still won
                tolerance += RISK_TOLERANCE_GAIN
            elif outcome.outcome == TradeOutcomeStatus.LOSS:
                tolerance -= RISK_TOLERANCE_LOSS

            self._state = replace(
                current,
                risk_tolerance_learned=round(clamp(tolerance, 0.0, 1.0), 6),
                preferred_holding_periods=holding,
                exit_reason_stats=MappingProxyType(
                    {k: MappingProxyType(v) for k, v in exit_stats.items()}
                ),
                last_updated=time.time()
            )
            return self._state


class InsightGenerator:
    """Builds LearningInsight records after each finalized trade"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self.recent = BoundedBuffer(self.config.insight_capacity, name='insights')

    def generate(self, outcome: TradeOutcome, bot: Optional[BotPerformance],
                 patterns: Sequence[PatternMatch]) -> List[LearningInsight]:
        insights = []
        if bot is not None:
            insights.extend(self._bot_trend(bot))
            insights.extend(self._holding_period(bot))
        insights.extend(self._risk_adjustment(outcome))
        insights.extend(self._pattern_identified(outcome, patterns))

        self.recent.extend(insights)
        if insights:
            logger.debug(f"Generated {len(insights)} insights for {outcome.trade_id}")
        return insights

    def get_recent(self, limit: int = 10) -> List[LearningInsight]:
        return self.recent.get_recent(limit)

    @staticmethod
    def _bot_trend(bot: BotPerformance) -> List[LearningInsight]:
        if bot.total_trades < MIN_TRADES_FOR_TREND:
            return []
        if bot.accuracy_score > 0.7:
            return [LearningInsight(
                insight_type=InsightType.POSITIVE_TREND,
                confidence=min(0.95, bot.accuracy_score),
                message=f"Bot {bot.bot_id} is performing well with {bot.accuracy_score:.0%} recent accuracy",
                actionable=f"Consider increasing allocation to {bot.bot_id}",
                data={'bot_id': bot.bot_id, 'accuracy': bot.accuracy_score,
                      'confidence_weight': bot.confidence_weight}
            )]
        if bot.accuracy_score < 0.4:
            return [LearningInsight(
                insight_type=InsightType.NEGATIVE_TREND,
                confidence=min(0.95, 1 - bot.accuracy_score),
                message=f"Bot {bot.bot_id} accuracy dropped to {bot.accuracy_score:.0%}",
                actionable=f"Review {bot.bot_id} parameters or reduce its allocation",
                data={'bot_id': bot.bot_id, 'accuracy': bot.accuracy_score,
                      'confidence_weight': bot.confidence_weight}
            )]
        return []

    @staticmethod
    def _holding_period(bot: BotPerformance) -> List[LearningInsight]:
        resolved = [o for o in bot.recent_outcomes if o.duration_hours is not None]
        if len(resolved) < MIN_TRADES_FOR_TREND:
            return []
        winners = [o.duration_hours for o in resolved if o.outcome == TradeOutcomeStatus.WIN]
        losers = [o.duration_hours for o in resolved if o.outcome == TradeOutcomeStatus.LOSS]
        if not winners or not losers:
            return []

        avg_win, avg_loss = float(np.mean(winners)), float(np.mean(losers))
        if avg_loss <= avg_win:
            return []
        return [LearningInsight(
            insight_type=InsightType.HOLDING_PERIOD_INSIGHT,
            confidence=0.6,
            message=(f"Losing trades for {bot.bot_id} are held {avg_loss:.1f}h on average "
                     f"versus {avg_win:.1f}h for winners"),
            actionable="Consider a time-based exit near the winners' average holding period",
            data={'bot_id': bot.bot_id, 'avg_win_hours': avg_win, 'avg_loss_hours': avg_loss}
        )]

    @staticmethod
    def _risk_adjustment(outcome: TradeOutcome) -> List[LearningInsight]:
        drawdown = abs(outcome.max_drawdown_pct or 0.0)
        if drawdown <= DRAWDOWN_ALERT_PCT:
            return []
        return [LearningInsight(
            insight_type=InsightType.RISK_ADJUSTMENT,
            confidence=0.7,
            message=f"Trade {outcome.trade_id} on {outcome.symbol} saw a {drawdown:.1%} drawdown",
            actionable="Consider tighter stop losses for similar setups",
            data={'trade_id': outcome.trade_id, 'symbol': outcome.symbol,
                  'max_drawdown_pct': drawdown, 'outcome': outcome.outcome.value}
        )]

    @staticmethod
    def _pattern_identified(outcome: TradeOutcome, patterns: Sequence[PatternMatch]) -> List[LearningInsight]:
        for pattern in patterns:
            if (pattern.pattern_id == f"symbol_performance_{outcome.symbol}"
                    and pattern.strength == PatternStrength.STRONG):
                return [LearningInsight(
                    insight_type=InsightType.PATTERN_IDENTIFIED,
                    confidence=pattern.confidence,
                    message=f"{outcome.symbol} has a strong pattern at {pattern.success_rate:.0%} success",
                    actionable=("Favor setups on this symbol" if pattern.success_rate > 0.5
                                else "Avoid or reduce size on this symbol"),
                    data={'pattern_id': pattern.pattern_id, 'occurrences': pattern.occurrences}
                )]
        return []
