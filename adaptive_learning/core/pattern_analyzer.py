"""
pattern_analyzer.py
Batch mining of statistically supported groupings in the outcome history

Author: Adaptive Learning System
Date: 2024
"""

import logging
import threading
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import (
    ConditionOperator,
    PatternCondition,
    PatternInsights,
    PatternMatch,
    PatternStrength,
    PatternType,
    TradeOutcome,
    TradeOutcomeStatus,
)

logger = logging.getLogger(__name__)


SEVERITIES = ('low', 'medium', 'high', 'critical')


def pattern_confidence(sample_size: int, success_rate: float,
                       config: Optional[LearningConfig] = None) -> float:
    """Confidence grows with sample size and with distance of the rate from 0.5"""
    config = config or LearningConfig()
    size_confidence = min(1.0, sample_size / config.confidence_saturation_samples)
    rate_confidence = abs(success_rate - 0.5) * 2
    return (config.confidence_size_weight * size_confidence
            + config.confidence_rate_weight * rate_confidence)


def pattern_strength(confidence: float) -> PatternStrength:
    if confidence > 0.8:
        return PatternStrength.STRONG
    if confidence >= 0.6:
        return PatternStrength.MODERATE
    return PatternStrength.WEAK


class PatternAnalyzer:
    """Produces PatternMatch records along symbol, time and signal axes"""

    def __init__(self, config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self._patterns: Mapping[str, PatternMatch] = MappingProxyType({})
        self._run_guard = threading.Lock()
        self.runs_completed = 0
        self.runs_skipped = 0
        self.last_run: Optional[datetime] = None

    # Public API
    def run(self, outcomes: Sequence[TradeOutcome],
            signal_registry: Optional[Mapping[str, Mapping[str, Any]]] = None,
            now: Optional[datetime] = None) -> Optional[Dict[str, PatternMatch]]:
        """One analysis pass; returns the detected patterns, or None if a pass is already running"""
        if not self._run_guard.acquire(blocking=False):
            logger.info("Pattern analysis already running, dropping trigger")
            return None
        try:
            detected = self.analyze(outcomes, signal_registry, now)
            if detected:
                # Same-id patterns are superseded, others survive
                self._patterns = MappingProxyType({**self._patterns, **detected})
            self.last_run = now or datetime.now()
            return detected
        finally:
            self._run_guard.release()

    def analyze(self, outcomes: Sequence[TradeOutcome],
                signal_registry: Optional[Mapping[str, Mapping[str, Any]]] = None,
                now: Optional[datetime] = None) -> Dict[str, PatternMatch]:
        """Detect patterns without publishing them"""
        now = now or datetime.now()
        recent = list(outcomes)[:self.config.analysis_window]

        if len(recent) < self.config.min_outcomes_for_analysis:
            self.runs_skipped += 1
            logger.info(f"Insufficient data for pattern analysis: {len(recent)} outcomes")
            return {}

        registry = signal_registry or {}
        frame = self._build_frame(recent, registry)

        detected: Dict[str, PatternMatch] = {}
        for found in (
            self._analyze_symbol_patterns(frame, now),
            self._analyze_time_patterns(frame, now),
            self._analyze_signal_type_patterns(frame, now),
            self._analyze_severity_patterns(frame, now),
            self._analyze_risk_patterns(frame, now),
            self._analyze_critical_clusters(frame, registry, now),
        ):
            for pattern in found:
                detected[pattern.pattern_id] = pattern

        self.runs_completed += 1
        logger.info(
            f"Pattern analysis completed: {len(detected)} detected, "
            f"{len(self._patterns)} stored, {len(recent)} outcomes"
        )
        return detected

    def get_patterns(self, pattern_type: Optional[PatternType] = None) -> List[PatternMatch]:
        patterns = list(self._patterns.values())
        if pattern_type is None:
            return patterns
        return [p for p in patterns if p.pattern_type == pattern_type]

    def get_pattern(self, pattern_id: str) -> Optional[PatternMatch]:
        return self._patterns.get(pattern_id)

    def __len__(self) -> int:
        return len(self._patterns)

    @staticmethod
    def compile_insights(patterns: Sequence[PatternMatch]) -> PatternInsights:
        """Summarize a set of patterns into strong/emerging/failing groups"""
        strong = tuple(p for p in patterns if p.strength == PatternStrength.STRONG)
        emerging = tuple(p for p in patterns if p.occurrences < 20 and p.success_rate > 0.7)
        failing = tuple(p for p in patterns if p.success_rate < 0.4)

        recommendations = []
        if strong:
            recommendations.append(f"{len(strong)} strong patterns identified for optimization")
        if failing:
            recommendations.append(f"{len(failing)} failing patterns require attention")

        return PatternInsights(
            total_patterns=len(patterns),
            strong_patterns=strong,
            emerging_patterns=emerging,
            failing_patterns=failing,
            recommendations=tuple(recommendations),
            confidence_level=float(np.mean([p.confidence for p in patterns])) if patterns else 0.0
        )

    # Frame construction
    def _build_frame(self, outcomes: Sequence[TradeOutcome],
                     registry: Mapping[str, Mapping[str, Any]]) -> pd.DataFrame:
        rows = []
        for outcome in outcomes:
            types, severities = self._resolve_signals(outcome.related_signals, registry)
            rows.append({
                'trade_id': outcome.trade_id,
                'symbol': outcome.symbol,
                'is_win': outcome.outcome == TradeOutcomeStatus.WIN,
                'is_loss': outcome.outcome == TradeOutcomeStatus.LOSS,
                'pnl': outcome.pnl if outcome.pnl is not None else np.nan,
                'duration': outcome.duration_hours if outcome.duration_hours is not None else np.nan,
                'hour': outcome.executed_at.hour,
                'signal_types': types,
                'severities': severities,
            })
        return pd.DataFrame(rows)

    @staticmethod
    def _resolve_signals(related: Sequence[Any],
                         registry: Mapping[str, Mapping[str, Any]]) -> Tuple[List[str], List[str]]:
        types, severities = set(), set()
        for ref in related or []:
            info: Mapping[str, Any] = {}
            if isinstance(ref, Mapping):
                info = ref
            elif ref is not None:
                info = registry.get(str(ref), {})
            signal_type = info.get('type') or info.get('signal_type')
            severity = info.get('severity')
            if signal_type:
                types.add(str(signal_type))
            if severity and str(severity).lower() in SEVERITIES:
                severities.add(str(severity).lower())
        return sorted(types), sorted(severities)

    def _make_pattern(self, pattern_id: str, pattern_type: PatternType, description: str,
                      group: pd.DataFrame, conditions: Tuple[PatternCondition, ...],
                      now: datetime, with_return: bool = False,
                      timeframe: Optional[str] = None) -> PatternMatch:
        occurrences = int(len(group))
        success_rate = float(group['is_win'].mean()) if occurrences else 0.0
        confidence = pattern_confidence(occurrences, success_rate, self.config)
        average_return = None
        if with_return and group['pnl'].notna().any():
            average_return = float(group['pnl'].mean())
        return PatternMatch(
            pattern_id=pattern_id,
            pattern_type=pattern_type,
            description=description,
            occurrences=occurrences,
            success_rate=success_rate,
            average_return=average_return,
            confidence=confidence,
            timeframe=timeframe or self.config.pattern_timeframe,
            conditions=conditions,
            last_seen=now,
            strength=pattern_strength(confidence)
        )

    # Axes
    def _analyze_symbol_patterns(self, frame: pd.DataFrame, now: datetime) -> List[PatternMatch]:
        patterns = []
        for symbol, group in frame.groupby('symbol', sort=True):
            if len(group) < self.config.min_symbol_samples:
                continue
            patterns.append(self._make_pattern(
                f"symbol_performance_{symbol}",
                PatternType.TRADE_SUCCESS,
                f"{symbol} trading performance pattern",
                group,
                (PatternCondition('symbol', ConditionOperator.EQ, symbol, 1.0),),
                now,
                with_return=True
            ))
        return patterns

    def _analyze_time_patterns(self, frame: pd.DataFrame, now: datetime) -> List[PatternMatch]:
        patterns = []
        for hour, group in frame.groupby('hour', sort=True):
            if len(group) < self.config.min_time_samples:
                continue
            success_rate = float(group['is_win'].mean())
            # Buckets near 50% carry no decision value
            if self.config.neutral_band_low <= success_rate <= self.config.neutral_band_high:
                continue
            hour = int(hour)
            patterns.append(self._make_pattern(
                f"time_pattern_hour_{hour}",
                PatternType.TRADE_SUCCESS,
                f"Trading performance at {hour}:00 hour",
                group,
                (PatternCondition('hour', ConditionOperator.EQ, hour, 0.6),),
                now
            ))
        return patterns

    def _analyze_signal_type_patterns(self, frame: pd.DataFrame, now: datetime) -> List[PatternMatch]:
        exploded = self._explode(frame, 'signal_types', 'signal_type')
        patterns = []
        for signal_type, group in exploded.groupby('signal_type', sort=True):
            if len(group) < self.config.min_signal_type_samples:
                continue
            patterns.append(self._make_pattern(
                f"signal_accuracy_{signal_type}",
                PatternType.SIGNAL_ACCURACY,
                f"{str(signal_type).replace('_', ' ')} signal accuracy pattern",
                group,
                (PatternCondition('signal_type', ConditionOperator.EQ, signal_type, 1.0),),
                now,
                with_return=True
            ))
        return patterns

    def _analyze_severity_patterns(self, frame: pd.DataFrame, now: datetime) -> List[PatternMatch]:
        exploded = self._explode(frame, 'severities', 'severity')
        patterns = []
        for severity, group in exploded.groupby('severity', sort=True):
            if len(group) < self.config.min_severity_samples:
                continue
            patterns.append(self._make_pattern(
                f"signal_severity_{severity}",
                PatternType.SIGNAL_ACCURACY,
                f"{severity} severity signal performance",
                group,
                (PatternCondition('severity', ConditionOperator.EQ, severity, 0.8),),
                now
            ))
        return patterns

    def _analyze_risk_patterns(self, frame: pd.DataFrame, now: datetime) -> List[PatternMatch]:
        losses = frame[frame['is_loss']]
        if len(losses) < self.config.min_losses_for_risk_pattern:
            return []

        conditions = [PatternCondition('outcome', ConditionOperator.EQ, 'loss', 1.0)]
        avg_loss_duration = losses['duration'].mean()
        if pd.notna(avg_loss_duration):
            conditions.append(PatternCondition(
                'duration', ConditionOperator.LT, float(avg_loss_duration), 0.7
            ))

        return [self._make_pattern(
            'risk_pattern_losses',
            PatternType.RISK_PATTERN,
            'Common characteristics of losing trades',
            losses,
            tuple(conditions),
            now,
            with_return=True
        )]

    def _analyze_critical_clusters(self, frame: pd.DataFrame,
                                   registry: Mapping[str, Mapping[str, Any]],
                                   now: datetime) -> List[PatternMatch]:
        window_start = now - timedelta(seconds=self.config.critical_cluster_window_seconds)
        recent_critical = [
            signal_id for signal_id, info in registry.items()
            if str(info.get('severity', '')).lower() == 'critical'
            and isinstance(info.get('created_at'), datetime)
            and window_start <= info['created_at'] <= now
        ]
        if len(recent_critical) < self.config.critical_cluster_size:
            return []

        related = frame[frame['severities'].apply(lambda s: 'critical' in s)]
        success_rate = float(related['is_win'].mean()) if len(related) else 0.5
        confidence = pattern_confidence(len(recent_critical), success_rate, self.config)
        return [PatternMatch(
            pattern_id='critical_signal_cluster',
            pattern_type=PatternType.RISK_PATTERN,
            description='Multiple critical signals detected',
            occurrences=len(recent_critical),
            success_rate=success_rate,
            confidence=confidence,
            timeframe='1h',
            conditions=(PatternCondition('severity', ConditionOperator.EQ, 'critical', 1.0),),
            last_seen=now,
            strength=pattern_strength(confidence)
        )]

    @staticmethod
    def _explode(frame: pd.DataFrame, column: str, name: str) -> pd.DataFrame:
        exploded = frame.explode(column).dropna(subset=[column])
        exploded = exploded.rename(columns={column: name})
        return exploded.drop_duplicates(subset=['trade_id', name])
