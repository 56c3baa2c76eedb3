"""
performance_trackers.py
Rolling per-bot and per-signal statistics with bounded derived weights

Author: Adaptive Learning System
Date: 2024
"""

import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import (
    BotPerformance,
    SignalEffectiveness,
    SignalOutcome,
    TradeOutcome,
    TradeOutcomeStatus,
    signal_key,
)
from adaptive_learning.utils.validators import clamp

logger = logging.getLogger(__name__)


def step_weight(current: float, score: float, samples: int, config: LearningConfig,
                step: float, lower: float, upper: float) -> float:
    """Move a weight one fixed step toward improvement or degradation"""
    if samples < config.min_samples_for_adjustment:
        return current
    if score > config.improve_threshold:
        current += step
    elif score < config.degrade_threshold:
        current -= step
    # Rounding keeps repeated steps on the step grid
    return round(clamp(current, lower, upper), 6)


class BotPerformanceTracker:
    """Per-bot accuracy and confidence weight"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._bots: Dict[str, BotPerformance] = {}
        self._lock = threading.RLock()

    def update(self, bot_id: str, outcome: TradeOutcome) -> Optional[BotPerformance]:
        """Fold one finalized outcome into the bot's profile"""
        if not bot_id or outcome.outcome == TradeOutcomeStatus.OPEN:
            return None

        with self._lock:
            current = self._bots.get(bot_id) or BotPerformance(bot_id=bot_id)
            window = (current.recent_outcomes + (outcome,))[-self.config.recent_window:]

            wins_in_window = sum(1 for o in window if o.outcome == TradeOutcomeStatus.WIN)
            accuracy = wins_in_window / len(window)
            durations = [o.duration_hours for o in window if o.duration_hours is not None]

            updated = BotPerformance(
                bot_id=bot_id,
                total_trades=current.total_trades + 1,
                winning_trades=current.winning_trades + (1 if outcome.outcome == TradeOutcomeStatus.WIN else 0),
                total_pnl=current.total_pnl + (outcome.pnl or 0.0),
                accuracy_score=accuracy,
                confidence_weight=step_weight(
                    current.confidence_weight, accuracy, len(window), self.config,
                    self.config.bot_weight_step, self.config.bot_weight_min, self.config.bot_weight_max
                ),
                avg_holding_period=float(np.mean(durations)) if durations else 0.0,
                recent_outcomes=window,
                last_updated=time.time()
            )
            self._bots[bot_id] = updated

        if updated.confidence_weight != current.confidence_weight:
            logger.debug(
                f"Bot {bot_id} weight {current.confidence_weight:.2f} -> {updated.confidence_weight:.2f} "
                f"(accuracy {accuracy:.2f})"
            )
        return updated

    def get(self, bot_id: str) -> BotPerformance:
        """Current snapshot, or a neutral record for unseen bots"""
        with self._lock:
            return self._bots.get(bot_id) or BotPerformance(bot_id=bot_id)

    def get_top(self, n: int = 5) -> List[BotPerformance]:
        with self._lock:
            bots = list(self._bots.values())
        bots.sort(key=lambda b: (b.accuracy_score, b.total_pnl), reverse=True)
        return bots[:max(0, n)]

    def get_all(self) -> List[BotPerformance]:
        with self._lock:
            return list(self._bots.values())

    def weights(self) -> Dict[str, float]:
        with self._lock:
            return {bot_id: perf.confidence_weight for bot_id, perf in self._bots.items()}

    def __len__(self) -> int:
        return len(self._bots)


class SignalEffectivenessTracker:
    """Per (signal type, source) correctness and weight multiplier"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._signals: Dict[Tuple[str, str], SignalEffectiveness] = {}
        self._lock = threading.RLock()

    def update(self, signal_type: str, source: str, was_correct: bool,
               strength: float = 1.0, timestamp: Optional[float] = None) -> SignalEffectiveness:
        key = (signal_type, source)
        entry = SignalOutcome(
            was_correct=bool(was_correct),
            strength=strength,
            timestamp=timestamp if timestamp is not None else time.time()
        )

        with self._lock:
            current = self._signals.get(key) or SignalEffectiveness(signal_type=signal_type, source=source)
            window = (current.recent_outcomes + (entry,))[-self.config.recent_window:]
            effectiveness = sum(1 for o in window if o.was_correct) / len(window)

            updated = SignalEffectiveness(
                signal_type=signal_type,
                source=source,
                total_signals=current.total_signals + 1,
                successful_predictions=current.successful_predictions + (1 if entry.was_correct else 0),
                effectiveness_score=effectiveness,
                weight_multiplier=step_weight(
                    current.weight_multiplier, effectiveness, len(window), self.config,
                    self.config.signal_weight_step, self.config.signal_weight_min,
                    self.config.signal_weight_max
                ),
                recent_outcomes=window,
                last_updated=time.time()
            )
            self._signals[key] = updated

        return updated

    def get(self, signal_type: str, source: str) -> SignalEffectiveness:
        with self._lock:
            return self._signals.get((signal_type, source)) or SignalEffectiveness(
                signal_type=signal_type, source=source
            )

    def find(self, signal_type: Optional[str] = None, source: Optional[str] = None) -> List[SignalEffectiveness]:
        """All tracked pairs matching the given type and/or source"""
        with self._lock:
            records = list(self._signals.values())
        return [
            r for r in records
            if (signal_type is None or r.signal_type == signal_type)
            and (source is None or r.source == source)
        ]

    def weights(self) -> Dict[str, float]:
        with self._lock:
            return {signal_key(t, s): r.weight_multiplier for (t, s), r in self._signals.items()}

    def __len__(self) -> int:
        return len(self._signals)
