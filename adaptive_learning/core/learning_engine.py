"""
learning_engine.py
Facade owning every learning component: inbound event routing, periodic
passes, the read-only query surface and the dashboard composite

Author: Adaptive Learning System
Date: 2024
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from adaptive_learning.core.adaptive_settings import AdaptiveSettingsStore
from adaptive_learning.core.feedback_processor import FeedbackLoopProcessor
from adaptive_learning.core.insights import InsightGenerator, PortfolioLearningTracker
from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.metrics_aggregator import MetricsAggregator
from adaptive_learning.core.model_registry import RETURN_PREDICTION_MODEL, ModelRegistry
from adaptive_learning.core.models import (
    AdaptiveSettings,
    BotPerformance,
    FeedbackLoopRecord,
    FeedbackType,
    LearningInsight,
    LearningMetrics,
    PatternInsights,
    PatternMatch,
    PatternType,
    PortfolioLearning,
    PredictiveModel,
    ReturnPrediction,
    RiskPrediction,
    SignalEffectiveness,
    TradeOutcome,
    TradeOutcomeStatus,
)
from adaptive_learning.core.outcome_store import OutcomeStore, event_trade_id
from adaptive_learning.core.pattern_analyzer import PatternAnalyzer
from adaptive_learning.core.performance_trackers import BotPerformanceTracker, SignalEffectivenessTracker
from adaptive_learning.core.predictors import RiskReturnPredictor
from adaptive_learning.infrastructure.bounded_buffer import BoundedBuffer
from adaptive_learning.infrastructure.event_bus import Events
from adaptive_learning.utils.error_handling import fallback_on_error
from adaptive_learning.utils.validators import first_present, to_bool, to_datetime, to_float, to_str

logger = logging.getLogger(__name__)


EventSink = Callable[[str, Any], Any]

# Reconciliation steps applied from the recent win rate
RECONCILE_MULTIPLIER_STEP = 0.05
RECONCILE_THRESHOLD_STEP = 0.02

# A pattern pass is also requested every N stored outcomes
PATTERN_TRIGGER_EVERY = 100

# Default routing of governance events: event -> (source, target)
RISK_ROUTES = {
    Events.RISK_SOFT_PULL: ('monarch', 'oracle'),
    Events.RISK_HARD_PULL: ('overseer', 'trade_bots'),
}


class LearningEngine:
    """Single-writer accumulator of trade, signal and governance events"""

    def __init__(self,
                 config: Optional[LearningConfig] = None,
                 event_sink: Optional[EventSink] = None,
                 metrics_exporter: Optional[Any] = None):
        self.config = config or LearningConfig()
        self.event_sink = event_sink
        self.metrics_exporter = metrics_exporter

        # Components
        self.outcomes = OutcomeStore(self.config.outcome_capacity)
        self.bot_tracker = BotPerformanceTracker(self.config)
        self.signal_tracker = SignalEffectivenessTracker(self.config)
        self.analyzer = PatternAnalyzer(self.config)
        self.predictor = RiskReturnPredictor(self.config)
        self.models = ModelRegistry(self.config)
        self.settings = AdaptiveSettingsStore(self.config)
        self.aggregator = MetricsAggregator(self.config)
        self.portfolio = PortfolioLearningTracker()
        self.insight_generator = InsightGenerator(self.config)
        self.feedback = FeedbackLoopProcessor(
            self.settings, self.signal_tracker, self.predictor,
            reconcile=self.reconcile_settings, config=self.config
        )

        # Signals announced via signal.created, resolved by the pattern analyzer
        self._signal_registry: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._registry_lock = threading.RLock()
        self.learning_events = BoundedBuffer(self.config.learning_event_capacity, name='learning_events')

        self._handlers: Dict[str, Callable[[str, Any], Any]] = {
            Events.TRADE_EXECUTED: self._on_trade_executed,
            Events.TRADE_CLOSED: self._on_trade_closed,
            Events.SIGNAL_OUTCOME: self._on_signal_outcome,
            Events.SIGNAL_CREATED: self._on_signal_created,
            Events.BOT_DECISION: self._on_bot_decision,
            Events.RISK_SOFT_PULL: self._on_risk_event,
            Events.RISK_HARD_PULL: self._on_risk_event,
            Events.RISK_INTERVENTION: self._on_risk_event,
        }
        self._ingest_lock = threading.RLock()
        self.events_processed = 0
        self.events_ignored = 0

        # Scheduling
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._sink_tasks = set()

        logger.info("Learning engine initialized")

    # Lifecycle
    async def start(self):
        """Start inbound draining and the periodic passes"""
        if self._running:
            return
        self._running = True

        self._tasks = [
            asyncio.create_task(self._inbound_loop()),
            asyncio.create_task(self._periodic_loop(
                'pattern analysis', self.config.pattern_analysis_interval, self.run_pattern_analysis
            )),
            asyncio.create_task(self._periodic_loop(
                'model retraining', self.config.model_update_interval, self.retrain_models
            )),
            asyncio.create_task(self._periodic_loop(
                'metrics', self.config.metrics_update_interval, self._metrics_pass
            )),
        ]
        logger.info("Started learning engine")

    async def stop(self):
        """Stop all engine tasks"""
        self._running = False

        tasks_to_wait = [t for t in self._tasks + list(self._sink_tasks) if not t.done()]
        for task in tasks_to_wait:
            task.cancel()
        if tasks_to_wait:
            await asyncio.gather(*tasks_to_wait, return_exceptions=True)
        self._tasks = []

        logger.info("Stopped learning engine")

    @property
    def is_running(self) -> bool:
        return self._running

    # Inbound
    async def submit(self, event_type: str, payload: Any):
        """Queue an inbound event for the drain task"""
        await self._inbound.put((event_type, payload))

    async def drain(self) -> int:
        """Handle everything currently queued; returns the number handled"""
        handled = 0
        while not self._inbound.empty():
            event_type, payload = self._inbound.get_nowait()
            self.handle_event(event_type, payload)
            handled += 1
        return handled

    @fallback_on_error(None)
    def handle_event(self, event_type: str, payload: Any) -> Any:
        """Dispatch one inbound event synchronously"""
        handler = self._handlers.get(event_type)
        if handler is None:
            self.events_ignored += 1
            logger.warning(f"Ignoring unknown event type: {event_type}")
            return None

        with self._ingest_lock:
            result = handler(event_type, payload)
            self.events_processed += 1
        return result

    async def _inbound_loop(self):
        """Drain the inbound queue"""
        while self._running:
            try:
                event_type, payload = await self._inbound.get()
                self.handle_event(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in inbound loop: {e}")

    async def _periodic_loop(self, name: str, interval: float, pass_fn: Callable[[], Any]):
        """Initial run shortly after start, then one pass per interval"""
        try:
            await asyncio.sleep(self.config.initial_run_delay)
        except asyncio.CancelledError:
            return

        while self._running:
            try:
                pass_fn()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {name} loop: {e}")
                await asyncio.sleep(interval)

    # Event handlers
    def _on_trade_executed(self, event_type: str, payload: Any) -> Optional[TradeOutcome]:
        trade_id = event_trade_id(payload)
        before = self.outcomes.get(trade_id) if trade_id else None

        outcome = self.outcomes.record_trade_execution(payload)
        if outcome is None:
            return None

        # Executions that already carry a realized pnl finalize the trade
        was_open = before is None or before.outcome == TradeOutcomeStatus.OPEN
        if was_open and outcome.is_resolved:
            self._process_finalized(outcome)
        else:
            self._maybe_request_patterns()
        return outcome

    def _on_trade_closed(self, event_type: str, payload: Any) -> Optional[TradeOutcome]:
        outcome, newly_finalized = self.outcomes.record_trade_outcome(payload)
        if outcome is None:
            return None
        if newly_finalized:
            self._process_finalized(outcome)
        else:
            logger.debug(f"Close event for {outcome.trade_id} did not finalize a new outcome")
        return outcome

    def _on_signal_outcome(self, event_type: str, payload: Any) -> Optional[SignalEffectiveness]:
        if not isinstance(payload, Mapping):
            logger.warning("Skipping malformed signal outcome: payload is not a mapping")
            return None

        signal_type = to_str(first_present(payload, 'signal_type', 'signalType', 'type'))
        source = to_str(first_present(payload, 'source', 'bot_id', 'botId')) or 'unknown'
        was_correct = to_bool(first_present(payload, 'was_correct', 'wasCorrect', 'correct'))
        if signal_type is None or was_correct is None:
            logger.warning(f"Skipping malformed signal outcome: type={signal_type} was_correct={was_correct}")
            return None

        strength = to_float(payload.get('strength'))
        observed_at = to_datetime(first_present(payload, 'timestamp', 'created_at'))
        record = self.signal_tracker.update(
            signal_type, source, was_correct,
            strength=strength if strength is not None else 1.0,
            timestamp=observed_at.timestamp() if observed_at else None
        )
        self._record_learning_event('signal_outcome', {
            'signal_type': signal_type, 'source': source, 'was_correct': was_correct
        })
        self.reconcile_settings()
        return record

    def _on_signal_created(self, event_type: str, payload: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, Mapping):
            logger.warning("Skipping malformed signal: payload is not a mapping")
            return None
        signal_id = to_str(first_present(payload, 'id', 'signal_id', 'signalId'))
        if signal_id is None:
            logger.warning("Skipping signal without id")
            return None

        info = {
            'type': to_str(first_present(payload, 'type', 'signal_type', 'signalType')),
            'severity': (to_str(payload.get('severity')) or '').lower() or None,
            'source': to_str(payload.get('source')),
            'confidence': to_float(payload.get('confidence')),
            'created_at': to_datetime(first_present(payload, 'created_at', 'createdAt', 'timestamp'))
            or datetime.now(),
        }
        with self._registry_lock:
            self._signal_registry.pop(signal_id, None)
            self._signal_registry[signal_id] = info
            while len(self._signal_registry) > self.config.signal_registry_capacity:
                self._signal_registry.popitem(last=False)
        return info

    def _on_bot_decision(self, event_type: str, payload: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, Mapping):
            logger.warning("Skipping malformed bot decision: payload is not a mapping")
            return None
        decision = {
            'bot_id': to_str(first_present(payload, 'bot_id', 'botId')),
            'symbol': to_str(payload.get('symbol')),
            'action': to_str(first_present(payload, 'action', 'decision')),
            'confidence': to_float(payload.get('confidence')),
        }
        self._record_learning_event('bot_decision', decision)
        return decision

    def _on_risk_event(self, event_type: str, payload: Any) -> Optional[FeedbackLoopRecord]:
        data = dict(payload) if isinstance(payload, Mapping) else {'value': payload}
        source, target = RISK_ROUTES.get(event_type, (None, None))

        if event_type == Events.RISK_INTERVENTION:
            kind = (to_str(first_present(data, 'kind', 'intervention', 'level')) or '').lower()
            source, target = RISK_ROUTES[Events.RISK_HARD_PULL if kind == 'hard' else Events.RISK_SOFT_PULL]

        source = to_str(first_present(data, 'source_system', 'sourceSystem')) or source
        target = to_str(first_present(data, 'target_system', 'targetSystem')) or target
        return self.process_feedback(source, target, FeedbackType.RISK_ADJUSTMENT, data)

    def _process_finalized(self, outcome: TradeOutcome):
        """Fold a newly finalized outcome into every downstream learner"""
        bot = self.bot_tracker.update(outcome.bot_id, outcome) if outcome.bot_id else None
        self.portfolio.update(outcome)
        insights = self.insight_generator.generate(outcome, bot, self.analyzer.get_patterns())

        self._record_learning_event('trade_outcome', {
            'trade_id': outcome.trade_id, 'outcome': outcome.outcome.value, 'pnl': outcome.pnl
        })
        self._export('record_outcome', outcome)
        self.reconcile_settings()

        self._emit(Events.OUTCOME_PROCESSED, {
            'outcome': outcome.to_dict(),
            'insights': [i.to_dict() for i in insights],
            'bot_performance': bot.to_dict() if bot else None
        })
        self._maybe_request_patterns()

    def _maybe_request_patterns(self):
        if len(self.outcomes) and len(self.outcomes) % PATTERN_TRIGGER_EVERY == 0:
            self.run_pattern_analysis()

    # Feedback and settings
    @fallback_on_error(None)
    def process_feedback(self, source_system: str, target_system: str,
                         feedback_type: Union[FeedbackType, str], data: Any) -> Optional[FeedbackLoopRecord]:
        """Record and apply one feedback loop"""
        record = self.feedback.process(source_system or 'unknown', target_system or 'unknown',
                                       feedback_type, data)
        if record is None:
            return None

        self._record_learning_event('feedback', {
            'loop_id': record.loop_id, 'type': record.feedback_type.value, 'impact': record.impact.value
        })
        self._export('record_feedback', record)
        self._emit(Events.FEEDBACK_PROCESSED, record.to_dict())
        return record

    @fallback_on_error(lambda: None)
    def reconcile_settings(self, adjust_from_performance: bool = False) -> AdaptiveSettings:
        """Copy tracker weights into the settings; optionally steer by recent win rate"""
        bot_weights = self.bot_tracker.weights()
        signal_weights = self.signal_tracker.weights()

        multiplier_delta = threshold_delta = 0.0
        if adjust_from_performance:
            multiplier_delta, threshold_delta = self._performance_adjustment()

        settings = self.settings.apply(lambda s: replace(
            s,
            bot_weights=MappingProxyType(bot_weights),
            signal_weights=MappingProxyType(signal_weights),
            risk_multiplier=s.risk_multiplier + multiplier_delta,
            confidence_threshold=s.confidence_threshold + threshold_delta
        ))
        self._export('update_settings', settings)
        self._emit(Events.SETTINGS_UPDATED, settings.to_dict())
        return settings

    def _performance_adjustment(self) -> Tuple[float, float]:
        resolved = [o for o in self.outcomes.get_recent(self.config.metrics_window) if o.is_resolved]
        if len(resolved) < self.config.min_outcomes_for_reconcile:
            return 0.0, 0.0

        win_rate = sum(1 for o in resolved if o.outcome == TradeOutcomeStatus.WIN) / len(resolved)
        if win_rate > self.config.improve_threshold:
            return RECONCILE_MULTIPLIER_STEP, -RECONCILE_THRESHOLD_STEP
        if win_rate < self.config.degrade_threshold:
            return -RECONCILE_MULTIPLIER_STEP, RECONCILE_THRESHOLD_STEP
        return 0.0, 0.0

    # Periodic passes
    @fallback_on_error(dict)
    def run_pattern_analysis(self, now: Optional[datetime] = None) -> Dict[str, PatternMatch]:
        """One pattern pass over the bounded outcome window"""
        detected = self.analyzer.run(
            self.outcomes.get_recent(self.config.analysis_window),
            self._signal_registry_snapshot(),
            now
        )
        if detected is None:
            return {}

        if detected:
            self._emit(Events.PATTERNS_UPDATED, {
                'detected': sorted(detected),
                'total_patterns': len(self.analyzer)
            })
        self._export('set_pattern_count', len(self.analyzer))
        return detected

    @fallback_on_error(list)
    def retrain_models(self, now: Optional[datetime] = None) -> List[PredictiveModel]:
        """Recompute model accuracies from walk-forward validation"""
        updated = self.models.retrain(
            self.outcomes.snapshot(), self.settings.get().confidence_threshold, now
        )
        return updated or []

    @fallback_on_error(lambda: None)
    def update_metrics(self) -> Optional[LearningMetrics]:
        """Recompute and publish the metrics snapshot"""
        metrics = self.aggregator.update(
            self.outcomes.get_recent(self.config.metrics_window),
            len(self.analyzer),
            self.models.average_accuracy()
        )
        if metrics is None:
            return None

        self._export('update_learning_metrics', metrics)
        self._emit(Events.METRICS_UPDATED, metrics.to_dict())
        return metrics

    def _metrics_pass(self):
        self.update_metrics()
        self.reconcile_settings(adjust_from_performance=True)

    # Queries
    @fallback_on_error(list)
    def get_patterns(self, pattern_type: Optional[Union[PatternType, str]] = None) -> List[PatternMatch]:
        if pattern_type is not None:
            pattern_type = PatternType(pattern_type)
        return self.analyzer.get_patterns(pattern_type)

    @fallback_on_error(lambda: PatternAnalyzer.compile_insights([]))
    def get_pattern_insights(self) -> PatternInsights:
        return PatternAnalyzer.compile_insights(self.analyzer.get_patterns())

    @fallback_on_error(list)
    def get_models(self, active_only: bool = True) -> List[PredictiveModel]:
        models = self.models.get_all()
        return [m for m in models if m.is_active] if active_only else models

    @fallback_on_error(LearningMetrics)
    def get_learning_metrics(self) -> LearningMetrics:
        return self.aggregator.get()

    @fallback_on_error(list)
    def get_feedback_loops(self, limit: int = 100) -> List[FeedbackLoopRecord]:
        return self.feedback.get_recent(limit)

    @fallback_on_error(list)
    def get_trade_outcomes(self, limit: int = 1000) -> List[TradeOutcome]:
        return self.outcomes.get_recent(limit)

    @fallback_on_error(lambda: None)
    def get_bot_performance(self, bot_id: str) -> BotPerformance:
        return self.bot_tracker.get(bot_id)

    @fallback_on_error(list)
    def get_top_bots(self, n: int = 5) -> List[BotPerformance]:
        return self.bot_tracker.get_top(n)

    @fallback_on_error(list)
    def get_signal_effectiveness(self, signal_type: Optional[str] = None,
                                 source: Optional[str] = None) -> List[SignalEffectiveness]:
        return self.signal_tracker.find(signal_type, source)

    @fallback_on_error(AdaptiveSettings)
    def get_adaptive_settings(self) -> AdaptiveSettings:
        return self.settings.get()

    @fallback_on_error(PortfolioLearning)
    def get_portfolio_learning(self) -> PortfolioLearning:
        return self.portfolio.get()

    @fallback_on_error(list)
    def get_insights(self, limit: int = 10) -> List[LearningInsight]:
        return self.insight_generator.get_recent(limit)

    @fallback_on_error(lambda: LearningEngine._empty_dashboard())
    def get_dashboard(self) -> Dict[str, Any]:
        """Overview counters, top bots, settings, insights and trends"""
        recent = self.outcomes.get_recent(self.config.metrics_window)
        resolved = [o for o in recent if o.is_resolved]
        wins = sum(1 for o in resolved if o.outcome == TradeOutcomeStatus.WIN)

        return {
            'overview': {
                'total_trades': len(self.outcomes),
                'overall_win_rate': wins / len(resolved) if resolved else 0.0,
                'active_bots': len(self.bot_tracker),
                'learning_events': len(self.learning_events),
                'patterns_identified': len(self.analyzer),
                'feedback_loops': len(self.feedback)
            },
            'top_bots': [b.to_dict() for b in self.bot_tracker.get_top(5)],
            'adaptive_settings': self.settings.get().to_dict(),
            'recent_insights': [i.to_dict() for i in self.insight_generator.get_recent(10)],
            'learning_metrics': self.aggregator.get().to_dict(),
            'portfolio_learning': self.portfolio.get().to_dict(),
            'performance_trends': self.aggregator.performance_trends(recent)
        }

    @staticmethod
    def _empty_dashboard() -> Dict[str, Any]:
        return {
            'overview': {
                'total_trades': 0, 'overall_win_rate': 0.0, 'active_bots': 0,
                'learning_events': 0, 'patterns_identified': 0, 'feedback_loops': 0
            },
            'top_bots': [],
            'adaptive_settings': AdaptiveSettings().to_dict(),
            'recent_insights': [],
            'learning_metrics': LearningMetrics().to_dict(),
            'portfolio_learning': PortfolioLearning().to_dict(),
            'performance_trends': {'daily_pnl': [], 'win_rate_trend': [], 'risk_adjusted_returns': []}
        }

    # Predictions
    @fallback_on_error(list)
    def predict_risk(self, portfolio: Any) -> List[RiskPrediction]:
        return self.predictor.predict_risk(portfolio)

    @fallback_on_error(lambda: None)
    def predict_portfolio_risk(self, portfolio: Any, time_horizon: str = '1d') -> Optional[RiskPrediction]:
        return self.predictor.predict_portfolio_risk(portfolio, time_horizon)

    @fallback_on_error(lambda: None)
    def predict_position_risk(self, position: Any, portfolio: Any,
                              time_horizon: str = '1d') -> Optional[RiskPrediction]:
        return self.predictor.predict_position_risk(position, portfolio, time_horizon)

    @fallback_on_error(lambda: None)
    def predict_return(self, symbol: str, time_horizon: str = '1d') -> Optional[ReturnPrediction]:
        """Return estimate from the symbol's history, or None"""
        if not self.models.is_active(RETURN_PREDICTION_MODEL):
            return None
        return self.predictor.predict_return(
            symbol,
            self.outcomes.get_by_symbol(symbol, self.config.return_history_limit),
            time_horizon,
            RETURN_PREDICTION_MODEL
        )

    def get_state(self) -> Dict[str, Any]:
        """Component counters for diagnostics"""
        return {
            'running': self._running,
            'events_processed': self.events_processed,
            'events_ignored': self.events_ignored,
            'inbound_queue': self._inbound.qsize(),
            'outcome_store': self.outcomes.get_stats(),
            'signal_registry': len(self._signal_registry),
            'predictor': self.predictor.get_state(),
            'settings_updates': self.settings.update_count,
            'pattern_runs': {
                'completed': self.analyzer.runs_completed,
                'skipped': self.analyzer.runs_skipped
            }
        }

    # Outbound
    def _emit(self, event_type: str, payload: Any):
        """Publish to the sink; sink failures are logged and never propagate"""
        if self.event_sink is None:
            return
        try:
            result = self.event_sink(event_type, payload)
            if asyncio.iscoroutine(result):
                self._schedule_sink(event_type, result)
        except Exception as e:
            logger.error(f"Event sink failed for {event_type}: {e}")

    def _schedule_sink(self, event_type: str, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"No running event loop, dropped {event_type}")
            return
        task = loop.create_task(coro)
        self._sink_tasks.add(task)
        task.add_done_callback(self._sink_done)

    def _sink_done(self, task: asyncio.Task):
        self._sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event sink failed: {task.exception()}")

    def _export(self, method: str, *args):
        if self.metrics_exporter is None:
            return
        try:
            getattr(self.metrics_exporter, method)(*args)
        except Exception as e:
            logger.error(f"Metrics exporter {method} failed: {e}")

    def _record_learning_event(self, kind: str, data: Dict[str, Any]):
        self.learning_events.append({'type': kind, 'timestamp': time.time(), 'data': data})

    def _signal_registry_snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._registry_lock:
            return dict(self._signal_registry)
