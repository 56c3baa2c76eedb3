"""
model_registry.py
Descriptors of the engine's predictive models and their validation-based
accuracy recomputation

Accuracy is measured by walk-forward validation over resolved outcomes:
each trade is scored with a forecast built only from the trades that
preceded it.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import ModelType, PredictiveModel, TradeOutcome, TradeOutcomeStatus

logger = logging.getLogger(__name__)


SIGNAL_ACCURACY_MODEL = 'signal_accuracy_v1'
RISK_PREDICTION_MODEL = 'risk_prediction_v1'
RETURN_PREDICTION_MODEL = 'return_prediction_v1'


def default_models(now: Optional[datetime] = None) -> List[PredictiveModel]:
    now = now or datetime.now()
    return [
        PredictiveModel(
            model_id=SIGNAL_ACCURACY_MODEL,
            model_type=ModelType.SIGNAL_SCORING,
            description='Predicts accuracy of signals based on historical performance',
            accuracy=0.72,
            features=('signal_type', 'confidence', 'market_volatility', 'sector', 'time_of_day'),
            last_trained=now
        ),
        PredictiveModel(
            model_id=RISK_PREDICTION_MODEL,
            model_type=ModelType.RISK_PREDICTION,
            description='Predicts portfolio risk based on current positions and market conditions',
            accuracy=0.68,
            features=('position_concentration', 'market_volatility', 'sector_correlation', 'leverage'),
            last_trained=now
        ),
        PredictiveModel(
            model_id=RETURN_PREDICTION_MODEL,
            model_type=ModelType.RETURN_PREDICTION,
            description='Predicts expected returns for individual positions',
            accuracy=0.65,
            features=('symbol_history', 'mean_return', 'return_volatility'),
            last_trained=now
        ),
    ]


class ModelRegistry:
    """Holds model descriptors and recomputes their accuracy"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._models: Dict[str, PredictiveModel] = {m.model_id: m for m in default_models()}
        self._lock = threading.RLock()
        self._retrain_guard = threading.Lock()

    def get(self, model_id: str) -> Optional[PredictiveModel]:
        with self._lock:
            return self._models.get(model_id)

    def get_all(self) -> List[PredictiveModel]:
        with self._lock:
            return list(self._models.values())

    def is_active(self, model_id: str) -> bool:
        model = self.get(model_id)
        return bool(model and model.is_active)

    def set_active(self, model_id: str, active: bool) -> Optional[PredictiveModel]:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                return None
            self._models[model_id] = replace(model, is_active=active)
            return self._models[model_id]

    def average_accuracy(self) -> float:
        active = [m.accuracy for m in self.get_all() if m.is_active]
        return float(np.mean(active)) if active else 0.0

    def retrain(self, outcomes: Sequence[TradeOutcome], confidence_threshold: float,
                now: Optional[datetime] = None) -> Optional[List[PredictiveModel]]:
        """Recompute every active model's accuracy; None if a pass is already running"""
        if not self._retrain_guard.acquire(blocking=False):
            logger.info("Model retraining already running, dropping trigger")
            return None
        try:
            now = now or datetime.now()
            resolved = sorted(
                (o for o in outcomes if o.is_resolved),
                key=lambda o: o.closed_at or o.executed_at
            )
            validators = {
                SIGNAL_ACCURACY_MODEL: lambda: self._validate_signal_scoring(resolved, confidence_threshold),
                RISK_PREDICTION_MODEL: lambda: self._validate_risk(resolved),
                RETURN_PREDICTION_MODEL: lambda: self._validate_returns(resolved),
            }

            updated = []
            with self._lock:
                for model_id, model in list(self._models.items()):
                    if not model.is_active:
                        continue
                    hits, samples = validators.get(model_id, lambda: (0, 0))()
                    accuracy = model.accuracy
                    if samples >= self.config.min_validation_samples:
                        accuracy = hits / samples
                    else:
                        logger.info(
                            f"Model {model_id}: {samples} validation samples, keeping accuracy {accuracy:.3f}"
                        )
                    self._models[model_id] = replace(
                        model,
                        accuracy=accuracy,
                        last_trained=now,
                        training_data_size=len(outcomes),
                        validation_samples=samples
                    )
                    updated.append(self._models[model_id])
                    logger.info(
                        f"Model updated: {model_id} accuracy={accuracy:.3f} "
                        f"training_data_size={len(outcomes)}"
                    )
            return updated
        finally:
            self._retrain_guard.release()

    # Validation
    def _validate_returns(self, resolved: Sequence[TradeOutcome]) -> Tuple[int, int]:
        """Directional hit rate of the prior-mean return forecast"""
        history: Dict[str, List[float]] = defaultdict(list)
        hits = samples = 0
        for outcome in resolved:
            ret = outcome.return_pct
            if ret is None:
                continue
            prior = history[outcome.symbol]
            if len(prior) >= self.config.min_return_samples:
                forecast_up = float(np.mean(prior)) > 0
                hits += int(forecast_up == (ret > 0))
                samples += 1
            prior.append(ret)
        return hits, samples

    def _validate_risk(self, resolved: Sequence[TradeOutcome]) -> Tuple[int, int]:
        """Hit rate of 'prior loss rate above one half predicts a loss'"""
        history: Dict[str, List[bool]] = defaultdict(list)
        hits = samples = 0
        for outcome in resolved:
            is_loss = outcome.outcome == TradeOutcomeStatus.LOSS
            prior = history[outcome.symbol]
            if len(prior) >= self.config.min_return_samples:
                predicted_loss = (sum(prior) / len(prior)) > 0.5
                hits += int(predicted_loss == is_loss)
                samples += 1
            prior.append(is_loss)
        return hits, samples

    @staticmethod
    def _validate_signal_scoring(resolved: Sequence[TradeOutcome],
                                 confidence_threshold: float) -> Tuple[int, int]:
        """Hit rate of 'entry confidence at or above threshold predicts a win'"""
        hits = samples = 0
        for outcome in resolved:
            if outcome.confidence is None:
                continue
            predicted_win = outcome.confidence >= confidence_threshold
            hits += int(predicted_win == (outcome.outcome == TradeOutcomeStatus.WIN))
            samples += 1
        return hits, samples
