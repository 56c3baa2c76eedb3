"""
models.py
Records and enumerations shared by the adaptive learning engine

Author: Adaptive Learning System
Date: 2024
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


# Enums
class TradeOutcomeStatus(Enum):
    """Realized classification of a trade"""
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"
    OPEN = "open"


class PatternType(Enum):
    """Types of mined patterns"""
    SIGNAL_ACCURACY = "signal_accuracy"
    TRADE_SUCCESS = "trade_success"
    RISK_PATTERN = "risk_pattern"


class PatternStrength(Enum):
    """Qualitative pattern strength"""
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class ConditionOperator(Enum):
    """Operators used by pattern conditions"""
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    BETWEEN = "between"
    CONTAINS = "contains"


class FeedbackType(Enum):
    """Types of cross-component feedback"""
    SIGNAL_ACCURACY = "signal_accuracy"
    RISK_ADJUSTMENT = "risk_adjustment"
    PERFORMANCE_UPDATE = "performance_update"


class FeedbackImpact(Enum):
    """Assessed impact of a feedback record"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(Enum):
    """Risk buckets"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DataQuality(Enum):
    """Data quality grade for the metrics snapshot"""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ModelType(Enum):
    """Predictive model kinds"""
    RISK_PREDICTION = "risk_prediction"
    RETURN_PREDICTION = "return_prediction"
    SIGNAL_SCORING = "signal_scoring"


class InsightType(Enum):
    """Types of learning insights"""
    POSITIVE_TREND = "positive_trend"
    NEGATIVE_TREND = "negative_trend"
    PATTERN_IDENTIFIED = "pattern_identified"
    RISK_ADJUSTMENT = "risk_adjustment"
    HOLDING_PERIOD_INSIGHT = "holding_period_insight"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class TradeOutcome:
    """One completed or still-open trade"""
    trade_id: str
    symbol: str
    side: str = "buy"
    entry_price: Optional[float] = None
    exit_price: Optional[float] = None
    quantity: Optional[float] = None
    pnl: Optional[float] = None
    duration_hours: Optional[float] = None
    outcome: TradeOutcomeStatus = TradeOutcomeStatus.OPEN
    executed_at: datetime = field(default_factory=datetime.now)
    closed_at: Optional[datetime] = None
    related_signals: Tuple[Any, ...] = ()
    bot_id: Optional[str] = None
    confidence: Optional[float] = None
    exit_reason: Optional[str] = None
    max_drawdown_pct: Optional[float] = None
    max_gain_pct: Optional[float] = None

    @property
    def is_resolved(self) -> bool:
        """Resolved trades have both a pnl and a non-open outcome"""
        return self.pnl is not None and self.outcome != TradeOutcomeStatus.OPEN

    @property
    def notional(self) -> float:
        if not self.entry_price or not self.quantity:
            return 0.0
        return abs(self.entry_price * self.quantity)

    @property
    def return_pct(self) -> Optional[float]:
        """Per-trade return as a fraction of entry notional"""
        if self.pnl is None or self.notional <= 0:
            return None
        return self.pnl / self.notional

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'symbol': self.symbol,
            'side': self.side,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'quantity': self.quantity,
            'pnl': self.pnl,
            'duration_hours': self.duration_hours,
            'outcome': self.outcome.value,
            'executed_at': _iso(self.executed_at),
            'closed_at': _iso(self.closed_at),
            'related_signals': list(self.related_signals),
            'bot_id': self.bot_id,
            'confidence': self.confidence,
            'exit_reason': self.exit_reason,
            'max_drawdown_pct': self.max_drawdown_pct,
            'max_gain_pct': self.max_gain_pct
        }


@dataclass(frozen=True)
class PatternCondition:
    """Single matching condition of a pattern"""
    field: str
    operator: ConditionOperator
    value: Any
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'operator': self.operator.value,
            'value': self.value,
            'weight': self.weight
        }


@dataclass(frozen=True)
class PatternMatch:
    """A mined statistical regularity"""
    pattern_id: str
    pattern_type: PatternType
    description: str
    occurrences: int
    success_rate: float
    confidence: float
    timeframe: str
    conditions: Tuple[PatternCondition, ...]
    last_seen: datetime
    strength: PatternStrength
    average_return: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern_id': self.pattern_id,
            'type': self.pattern_type.value,
            'description': self.description,
            'occurrences': self.occurrences,
            'success_rate': self.success_rate,
            'average_return': self.average_return,
            'confidence': self.confidence,
            'timeframe': self.timeframe,
            'conditions': [c.to_dict() for c in self.conditions],
            'last_seen': _iso(self.last_seen),
            'strength': self.strength.value
        }


@dataclass(frozen=True)
class PatternInsights:
    """Summary over a set of patterns"""
    total_patterns: int
    strong_patterns: Tuple[PatternMatch, ...]
    emerging_patterns: Tuple[PatternMatch, ...]
    failing_patterns: Tuple[PatternMatch, ...]
    recommendations: Tuple[str, ...]
    confidence_level: float
    last_updated: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_patterns': self.total_patterns,
            'strong_patterns': [p.to_dict() for p in self.strong_patterns],
            'emerging_patterns': [p.to_dict() for p in self.emerging_patterns],
            'failing_patterns': [p.to_dict() for p in self.failing_patterns],
            'recommendations': list(self.recommendations),
            'confidence_level': self.confidence_level,
            'last_updated': _iso(self.last_updated)
        }


@dataclass(frozen=True)
class BotPerformance:
    """Rolling statistics for one trading bot"""
    bot_id: str
    total_trades: int = 0
    winning_trades: int = 0
    total_pnl: float = 0.0
    accuracy_score: float = 0.5
    confidence_weight: float = 1.0
    avg_holding_period: float = 0.0
    recent_outcomes: Tuple[TradeOutcome, ...] = ()
    last_updated: float = field(default_factory=time.time)

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bot_id': self.bot_id,
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'total_pnl': self.total_pnl,
            'accuracy_score': self.accuracy_score,
            'confidence_weight': self.confidence_weight,
            'avg_holding_period': self.avg_holding_period,
            'recent_outcomes': [o.to_dict() for o in self.recent_outcomes],
            'last_updated': self.last_updated
        }


@dataclass(frozen=True)
class SignalOutcome:
    """One entry of a signal's recent-outcome window"""
    was_correct: bool
    strength: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'was_correct': self.was_correct,
            'strength': self.strength,
            'timestamp': self.timestamp
        }


@dataclass(frozen=True)
class SignalEffectiveness:
    """Rolling correctness statistics for a (signal type, source) pair"""
    signal_type: str
    source: str
    total_signals: int = 0
    successful_predictions: int = 0
    effectiveness_score: float = 0.5
    weight_multiplier: float = 1.0
    recent_outcomes: Tuple[SignalOutcome, ...] = ()
    last_updated: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return signal_key(self.signal_type, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signal_type': self.signal_type,
            'source': self.source,
            'total_signals': self.total_signals,
            'successful_predictions': self.successful_predictions,
            'effectiveness_score': self.effectiveness_score,
            'weight_multiplier': self.weight_multiplier,
            'recent_outcomes': [o.to_dict() for o in self.recent_outcomes],
            'last_updated': self.last_updated
        }


def signal_key(signal_type: str, source: str) -> str:
    """Key used for signal weights in the adaptive settings"""
    return f"{signal_type}:{source}"


@dataclass(frozen=True)
class AdaptiveSettings:
    """Control parameters consumed by the rest of the trading system"""
    risk_multiplier: float = 1.0
    confidence_threshold: float = 0.6
    signal_weights: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    bot_weights: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    last_updated: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'risk_multiplier': self.risk_multiplier,
            'confidence_threshold': self.confidence_threshold,
            'signal_weights': dict(self.signal_weights),
            'bot_weights': dict(self.bot_weights),
            'last_updated': self.last_updated
        }


@dataclass(frozen=True)
class FeedbackLoopRecord:
    """Audit record of one cross-component nudge"""
    loop_id: str
    source_system: str
    target_system: str
    feedback_type: FeedbackType
    data: Any
    processed_at: datetime
    impact: FeedbackImpact

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loop_id': self.loop_id,
            'source_system': self.source_system,
            'target_system': self.target_system,
            'feedback_type': self.feedback_type.value,
            'data': self.data,
            'processed_at': _iso(self.processed_at),
            'impact': self.impact.value
        }


@dataclass(frozen=True)
class PredictiveModel:
    """Descriptor of a predictive model"""
    model_id: str
    model_type: ModelType
    description: str
    accuracy: float
    features: Tuple[str, ...]
    last_trained: datetime
    training_data_size: int = 0
    version: str = "1.0.0"
    is_active: bool = True
    validation_samples: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_id': self.model_id,
            'type': self.model_type.value,
            'description': self.description,
            'accuracy': self.accuracy,
            'features': list(self.features),
            'last_trained': _iso(self.last_trained),
            'training_data_size': self.training_data_size,
            'version': self.version,
            'is_active': self.is_active,
            'validation_samples': self.validation_samples
        }


@dataclass(frozen=True)
class RiskPrediction:
    """Risk estimate for a portfolio or a single position"""
    risk_level: RiskLevel
    probability: float
    time_horizon: str
    risk_factors: Tuple[str, ...]
    confidence: float
    generated_at: datetime
    expires_at: datetime
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'risk_level': self.risk_level.value,
            'probability': self.probability,
            'time_horizon': self.time_horizon,
            'risk_factors': list(self.risk_factors),
            'confidence': self.confidence,
            'generated_at': _iso(self.generated_at),
            'expires_at': _iso(self.expires_at)
        }


@dataclass(frozen=True)
class ReturnPrediction:
    """Expected return for a symbol derived from its trade history"""
    symbol: str
    expected_return: float
    confidence: float
    time_horizon: str
    upside: float
    downside: float
    volatility: float
    sample_size: int
    generated_at: datetime
    model_used: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'expected_return': self.expected_return,
            'confidence': self.confidence,
            'time_horizon': self.time_horizon,
            'upside': self.upside,
            'downside': self.downside,
            'volatility': self.volatility,
            'sample_size': self.sample_size,
            'generated_at': _iso(self.generated_at),
            'model_used': self.model_used
        }


@dataclass(frozen=True)
class LearningMetrics:
    """Dashboard-ready rollup"""
    total_trades: int = 0
    successful_trades: int = 0
    success_rate: float = 0.0
    average_return: float = 0.0
    average_pnl: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    patterns_identified: int = 0
    model_accuracy: float = 0.0
    data_quality: DataQuality = DataQuality.GOOD
    last_updated: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_trades': self.total_trades,
            'successful_trades': self.successful_trades,
            'success_rate': self.success_rate,
            'average_return': self.average_return,
            'average_pnl': self.average_pnl,
            'sharpe_ratio': self.sharpe_ratio,
            'max_drawdown': self.max_drawdown,
            'patterns_identified': self.patterns_identified,
            'model_accuracy': self.model_accuracy,
            'data_quality': self.data_quality.value,
            'last_updated': _iso(self.last_updated)
        }


@dataclass(frozen=True)
class LearningInsight:
    """Actionable observation produced after a trade closes"""
    insight_type: InsightType
    confidence: float
    message: str
    actionable: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.insight_type.value,
            'confidence': self.confidence,
            'message': self.message,
            'actionable': self.actionable,
            'data': dict(self.data),
            'created_at': self.created_at
        }


@dataclass(frozen=True)
class HoldingPeriodRecord:
    hours: float
    was_profitable: bool
    pnl: float


@dataclass(frozen=True)
class PortfolioLearning:
    """Portfolio-level learning state"""
    risk_tolerance_learned: float = 0.5
    preferred_holding_periods: Tuple[HoldingPeriodRecord, ...] = ()
    exit_reason_stats: Mapping[str, Mapping[str, int]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    last_updated: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'risk_tolerance_learned': self.risk_tolerance_learned,
            'preferred_holding_periods': [
                {'hours': r.hours, 'was_profitable': r.was_profitable, 'pnl': r.pnl}
                for r in self.preferred_holding_periods
            ],
            'exit_reason_stats': {k: dict(v) for k, v in self.exit_reason_stats.items()},
            'last_updated': self.last_updated
        }


def expiry_from(generated_at: datetime, hours: int = 24) -> datetime:
    return generated_at + timedelta(hours=hours)
