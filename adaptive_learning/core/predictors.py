"""
predictors.py
Read-time risk and return estimates combining live portfolio state with
the outcome history

Author: Adaptive Learning System
Date: 2024
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import (
    ReturnPrediction,
    RiskLevel,
    RiskPrediction,
    TradeOutcome,
    expiry_from,
)
from adaptive_learning.utils.validators import first_present, to_float, to_str

logger = logging.getLogger(__name__)


# Portfolio thresholds: (limit, contribution, factor name)
CONCENTRATION_RISK = (0.3, 0.3, 'High position concentration')
VOLATILITY_RISK = (0.25, 0.2, 'High portfolio volatility')
LEVERAGE_RISK = (2.0, 0.25, 'High leverage exposure')

# Position thresholds
POSITION_WEIGHT_LIMIT = 0.1
POSITION_WEIGHT_FACTOR = 0.5
UNREALIZED_LOSS_LIMIT = -0.1
UNREALIZED_LOSS_FACTOR = 0.3

PORTFOLIO_CONFIDENCE = 0.75
POSITION_CONFIDENCE = 0.65


@dataclass
class PositionSnapshot:
    symbol: str
    market_value: float = 0.0
    unrealized_pnl_pct: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PositionSnapshot':
        return cls(
            symbol=to_str(data.get('symbol')) or 'UNKNOWN',
            market_value=to_float(first_present(data, 'market_value', 'marketValue')) or 0.0,
            unrealized_pnl_pct=to_float(first_present(
                data, 'unrealized_pnl_pct', 'unrealizedPnLPercent'
            )) or 0.0
        )


@dataclass
class PortfolioSnapshot:
    """Caller-supplied live portfolio state"""
    concentration_risk: float = 0.0
    volatility: float = 0.0
    leverage: float = 0.0
    total_equity: float = 0.0
    positions: List[PositionSnapshot] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'PortfolioSnapshot':
        if isinstance(data, PortfolioSnapshot):
            return data
        data = data if isinstance(data, Mapping) else {}
        positions = []
        for raw in data.get('positions') or []:
            if isinstance(raw, PositionSnapshot):
                positions.append(raw)
            elif isinstance(raw, Mapping):
                positions.append(PositionSnapshot.from_dict(raw))
        return cls(
            concentration_risk=to_float(first_present(data, 'concentration_risk', 'concentrationRisk')) or 0.0,
            volatility=to_float(data.get('volatility')) or 0.0,
            leverage=to_float(data.get('leverage')) or 0.0,
            total_equity=to_float(first_present(data, 'total_equity', 'totalEquity')) or 0.0,
            positions=positions
        )


def population_std(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


class RiskReturnPredictor:
    """Stateless risk/return estimates; sensitivity is its only mutable knob"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self.sensitivity = 1.0

    def increase_sensitivity(self) -> float:
        """Widen risk sensitivity one step (high-impact risk feedback only)"""
        self.sensitivity = round(min(
            self.config.max_sensitivity, self.sensitivity + self.config.sensitivity_step
        ), 6)
        logger.info(f"Risk model sensitivity increased to {self.sensitivity:.2f}")
        return self.sensitivity

    def predict_portfolio_risk(self, portfolio: Any, time_horizon: str = '1d',
                               now: Optional[datetime] = None) -> RiskPrediction:
        snapshot = PortfolioSnapshot.from_dict(portfolio)
        score, factors = self._score_portfolio(snapshot)

        if score > 0.7:
            level = RiskLevel.CRITICAL
        elif score > 0.5:
            level = RiskLevel.HIGH
        elif score > 0.3:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        generated_at = now or datetime.now()
        return RiskPrediction(
            risk_level=level,
            probability=min(0.95, score),
            time_horizon=time_horizon,
            risk_factors=tuple(factors),
            confidence=PORTFOLIO_CONFIDENCE,
            generated_at=generated_at,
            expires_at=expiry_from(generated_at)
        )

    def predict_position_risk(self, position: Any, portfolio: Any, time_horizon: str = '1d',
                              now: Optional[datetime] = None) -> RiskPrediction:
        if isinstance(position, PositionSnapshot):
            pos = position
        else:
            pos = PositionSnapshot.from_dict(position if isinstance(position, Mapping) else {})
        snapshot = PortfolioSnapshot.from_dict(portfolio)

        factors = []
        score = 0.0
        weight = pos.market_value / snapshot.total_equity if snapshot.total_equity > 0 else 0.0
        if weight > POSITION_WEIGHT_LIMIT:
            factors.append('Large position size')
            score += weight * POSITION_WEIGHT_FACTOR
        if pos.unrealized_pnl_pct < UNREALIZED_LOSS_LIMIT:
            factors.append('Significant unrealized loss')
            score += abs(pos.unrealized_pnl_pct) * UNREALIZED_LOSS_FACTOR
        score *= self.sensitivity

        if score > 0.6:
            level = RiskLevel.HIGH
        elif score > 0.3:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        generated_at = now or datetime.now()
        return RiskPrediction(
            symbol=pos.symbol,
            risk_level=level,
            probability=min(0.9, score),
            time_horizon=time_horizon,
            risk_factors=tuple(factors),
            confidence=POSITION_CONFIDENCE,
            generated_at=generated_at,
            expires_at=expiry_from(generated_at)
        )

    def predict_risk(self, portfolio: Any, now: Optional[datetime] = None) -> List[RiskPrediction]:
        """Portfolio prediction followed by every non-low position prediction"""
        snapshot = PortfolioSnapshot.from_dict(portfolio)
        predictions = [self.predict_portfolio_risk(snapshot, now=now)]
        for position in snapshot.positions:
            prediction = self.predict_position_risk(position, snapshot, now=now)
            if prediction.risk_level != RiskLevel.LOW:
                predictions.append(prediction)
        return predictions

    def predict_return(self, symbol: str, outcomes: Sequence[TradeOutcome],
                       time_horizon: str = '1d', model_id: str = 'return_prediction_v1',
                       now: Optional[datetime] = None) -> Optional[ReturnPrediction]:
        """Mean/std of the symbol's per-trade returns; None with too little history"""
        returns = [
            o.return_pct for o in outcomes
            if o.symbol == symbol and o.return_pct is not None
        ][:self.config.return_history_limit]

        if len(returns) < self.config.min_return_samples:
            logger.debug(f"No return prediction for {symbol}: {len(returns)} samples")
            return None

        mean_return = float(np.mean(returns))
        volatility = population_std(returns)
        return ReturnPrediction(
            symbol=symbol,
            expected_return=mean_return,
            confidence=min(0.9, len(returns) / 100),
            time_horizon=time_horizon,
            upside=mean_return + volatility,
            downside=mean_return - volatility,
            volatility=volatility,
            sample_size=len(returns),
            generated_at=now or datetime.now(),
            model_used=model_id
        )

    def _score_portfolio(self, snapshot: PortfolioSnapshot) -> Tuple[float, List[str]]:
        factors = []
        score = 0.0
        for value, (limit, contribution, name) in (
            (snapshot.concentration_risk, CONCENTRATION_RISK),
            (snapshot.volatility, VOLATILITY_RISK),
            (snapshot.leverage, LEVERAGE_RISK),
        ):
            if value > limit:
                factors.append(name)
                score += contribution
        return score * self.sensitivity, factors

    def get_state(self) -> Dict[str, Any]:
        return {'sensitivity': self.sensitivity}
