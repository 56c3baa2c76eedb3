"""
Integration tests for the LearningEngine facade

Drives the engine through inbound events and checks the learners,
the adaptive settings and the outbound notifications together.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.learning_engine import LearningEngine
from adaptive_learning.core.models import (
    FeedbackImpact,
    FeedbackType,
    PatternType,
    TradeOutcomeStatus,
)
from adaptive_learning.infrastructure.event_bus import EventBus, Events, connect_engine
from adaptive_learning.monitoring.prometheus_metrics import LearningMetricsExporter
from tests.fixtures.trade_data import BASE_TIME, alternating_wins, close_event, execution_event


def _trade(engine, trade_id, pnl, symbol='AAPL', bot_id='B1', signals=None, **close_extra):
    engine.handle_event(Events.TRADE_EXECUTED, execution_event(
        trade_id, symbol=symbol, bot_id=bot_id, signals=signals or []
    ))
    return engine.handle_event(Events.TRADE_CLOSED, close_event(trade_id, pnl, **close_extra))


def _of_type(emitted, event_type):
    return [payload for kind, payload in emitted if kind == event_type]


@pytest.mark.integration
class TestTradeLifecycle:
    """Execution and close events through to the learners"""

    def test_execution_then_close(self, engine, emitted):
        opened = engine.handle_event(Events.TRADE_EXECUTED, execution_event('T1'))
        assert opened.outcome == TradeOutcomeStatus.OPEN
        assert _of_type(emitted, Events.OUTCOME_PROCESSED) == []

        closed = engine.handle_event(Events.TRADE_CLOSED, close_event('T1', 25.0))

        assert closed.outcome == TradeOutcomeStatus.WIN
        assert closed.return_pct == pytest.approx(0.025)
        processed = _of_type(emitted, Events.OUTCOME_PROCESSED)
        assert len(processed) == 1
        assert processed[0]['outcome']['trade_id'] == 'T1'
        assert processed[0]['bot_performance']['total_trades'] == 1

    def test_replayed_close_is_idempotent(self, engine, emitted):
        _trade(engine, 'T1', 25.0)
        engine.handle_event(Events.TRADE_CLOSED, close_event('T1', 25.0))
        engine.handle_event(Events.TRADE_CLOSED, close_event('T1', 25.0))

        assert engine.get_bot_performance('B1').total_trades == 1
        assert len(_of_type(emitted, Events.OUTCOME_PROCESSED)) == 1
        assert len(engine.get_trade_outcomes()) == 1

    def test_partial_replay_keeps_result(self, engine, emitted):
        _trade(engine, 'T1', 25.0)

        # A bare close carries neither pnl nor an exit price
        replayed = engine.handle_event(Events.TRADE_CLOSED, {'trade_id': 'T1'})
        assert replayed.outcome == TradeOutcomeStatus.WIN
        assert replayed.pnl == 25.0

        engine.handle_event(Events.TRADE_CLOSED, close_event('T1', 25.0))

        assert engine.get_trade_outcomes()[0].outcome == TradeOutcomeStatus.WIN
        assert engine.get_bot_performance('B1').total_trades == 1
        assert len(_of_type(emitted, Events.OUTCOME_PROCESSED)) == 1

    def test_execution_with_pnl_finalizes(self, engine, emitted):
        engine.handle_event(Events.TRADE_EXECUTED, execution_event('T1', pnl=-12.0))

        assert engine.get_bot_performance('B1').total_trades == 1
        assert len(_of_type(emitted, Events.OUTCOME_PROCESSED)) == 1

        # A late duplicate execution never refinalizes
        engine.handle_event(Events.TRADE_EXECUTED, execution_event('T1', pnl=-12.0))
        assert engine.get_bot_performance('B1').total_trades == 1

    def test_close_without_execution(self, engine):
        outcome = engine.handle_event(Events.TRADE_CLOSED, close_event('T9', -5.0, symbol='MSFT', bot_id='B2'))

        assert outcome.symbol == 'MSFT'
        assert engine.get_bot_performance('B2').winning_trades == 0

    def test_sixty_trade_bot_scenario(self, engine):
        for i, won in enumerate(alternating_wins(60)):
            _trade(engine, f"T{i}", 10.0 if won else -10.0)

        bot = engine.get_bot_performance('B1')
        assert bot.total_trades == 60
        assert bot.winning_trades == 45
        assert bot.accuracy_score == pytest.approx(37 / 50)
        assert bot.confidence_weight == 1.5
        assert engine.get_adaptive_settings().bot_weights['B1'] == 1.5
        assert engine.get_top_bots(1)[0].bot_id == 'B1'

    def test_insights_and_portfolio(self, engine):
        for i in range(10):
            _trade(engine, f"T{i}", 10.0)

        insights = engine.get_insights()
        assert insights
        assert insights[0].data['bot_id'] == 'B1'

        portfolio = engine.get_portfolio_learning()
        assert len(portfolio.preferred_holding_periods) == 10
        assert portfolio.exit_reason_stats['take_profit']['wins'] == 10

    def test_pattern_pass_every_hundred_outcomes(self, engine):
        for i in range(100):
            engine.handle_event(Events.TRADE_EXECUTED, execution_event(f"T{i}"))

        assert engine.analyzer.runs_completed == 1


@pytest.mark.integration
class TestPredictions:
    """Return and risk predictions through the engine"""

    def test_return_prediction_needs_history(self, engine):
        for i in range(5):
            _trade(engine, f"A{i}", 10.0)
        assert engine.predict_return('AAPL') is None

        for i in range(5, 12):
            _trade(engine, f"A{i}", 10.0)
        prediction = engine.predict_return('AAPL', '1w')

        assert prediction.sample_size == 12
        assert prediction.expected_return == pytest.approx(0.01)
        assert prediction.volatility == pytest.approx(0.0)
        assert prediction.time_horizon == '1w'

    def test_return_prediction_inactive_model(self, engine):
        for i in range(12):
            _trade(engine, f"A{i}", 10.0)
        engine.models.set_active('return_prediction_v1', False)

        assert engine.predict_return('AAPL') is None

    def test_malformed_portfolio(self, engine):
        predictions = engine.predict_risk('not a portfolio')

        assert len(predictions) == 1
        assert predictions[0].risk_factors == ()


@pytest.mark.integration
class TestFeedback:
    """Governance events and feedback loops"""

    def test_hard_pull_critical(self, engine, emitted):
        record = engine.handle_event(Events.RISK_HARD_PULL, {'severity': 'critical', 'reason': 'drawdown'})

        assert (record.source_system, record.target_system) == ('overseer', 'trade_bots')
        assert record.feedback_type == FeedbackType.RISK_ADJUSTMENT
        assert record.impact == FeedbackImpact.HIGH

        settings = engine.get_adaptive_settings()
        assert settings.risk_multiplier == pytest.approx(0.9)
        assert settings.confidence_threshold == pytest.approx(0.65)
        assert len(_of_type(emitted, Events.FEEDBACK_PROCESSED)) == 1

    def test_soft_pull_medium(self, engine):
        record = engine.handle_event(Events.RISK_SOFT_PULL, {'reason': 'volatility'})

        assert (record.source_system, record.target_system) == ('monarch', 'oracle')
        assert record.impact == FeedbackImpact.MEDIUM
        assert engine.get_adaptive_settings().risk_multiplier == pytest.approx(0.95)

    def test_intervention_routing(self, engine):
        hard = engine.handle_event(Events.RISK_INTERVENTION, {'kind': 'HARD'})
        soft = engine.handle_event(Events.RISK_INTERVENTION, {})
        custom = engine.handle_event(Events.RISK_INTERVENTION, {'source_system': 'desk', 'target_system': 'bots'})

        assert hard.source_system == 'overseer'
        assert soft.source_system == 'monarch'
        assert (custom.source_system, custom.target_system) == ('desk', 'bots')

    def test_non_mapping_payload(self, engine):
        record = engine.handle_event(Events.RISK_SOFT_PULL, 'halt')

        assert record.data == {'value': 'halt'}

    def test_repeated_pulls_stay_bounded(self, engine):
        for _ in range(50):
            engine.handle_event(Events.RISK_HARD_PULL, {'severity': 'critical'})

        settings = engine.get_adaptive_settings()
        assert settings.risk_multiplier == 0.5
        assert settings.confidence_threshold == 0.8
        assert len(engine.get_feedback_loops(10)) == 10

    def test_direct_signal_feedback(self, engine):
        record = engine.process_feedback('oracle', 'learning', 'signal_accuracy',
                                         {'signal_type': 'breakout', 'was_correct': True})

        assert record.impact == FeedbackImpact.MEDIUM
        assert engine.get_adaptive_settings().confidence_threshold == pytest.approx(0.59)
        assert engine.get_signal_effectiveness('breakout', 'oracle')[0].total_signals == 1

    def test_unknown_feedback_type(self, engine):
        assert engine.process_feedback('a', 'b', 'gossip', {}) is None
        assert engine.get_feedback_loops() == []


@pytest.mark.integration
class TestSignals:
    """Signal outcomes and the signal registry"""

    def test_signal_outcomes_reach_settings(self, engine):
        for _ in range(6):
            engine.handle_event(Events.SIGNAL_OUTCOME, {
                'signalType': 'breakout', 'source': 'oracle', 'wasCorrect': True
            })

        record = engine.get_signal_effectiveness('breakout', 'oracle')[0]
        assert record.total_signals == 6
        assert record.weight_multiplier == pytest.approx(1.2)
        assert engine.get_adaptive_settings().signal_weights['breakout:oracle'] == pytest.approx(1.2)

    def test_malformed_signal_outcome(self, engine):
        assert engine.handle_event(Events.SIGNAL_OUTCOME, {'type': 'breakout'}) is None
        assert engine.handle_event(Events.SIGNAL_OUTCOME, ['nope']) is None
        assert engine.get_signal_effectiveness() == []

    def test_registry_feeds_pattern_analysis(self, engine, emitted):
        for i in range(3):
            engine.handle_event(Events.SIGNAL_CREATED, {
                'id': f"S{i}", 'type': 'breakout', 'severity': 'CRITICAL', 'source': 'oracle'
            })
        for i in range(50):
            _trade(engine, f"T{i}", 10.0 if i % 2 else -10.0, signals=[f"S{i % 3}"])

        detected = engine.run_pattern_analysis()

        assert 'critical_signal_cluster' in detected
        assert 'signal_severity_critical' in detected
        assert 'signal_accuracy_breakout' in detected
        assert engine.get_patterns(PatternType.RISK_PATTERN)
        assert engine.get_patterns('risk_pattern') == engine.get_patterns(PatternType.RISK_PATTERN)
        updates = _of_type(emitted, Events.PATTERNS_UPDATED)
        assert updates[-1]['total_patterns'] == len(engine.get_patterns())

    def test_pattern_insights(self, engine):
        for i in range(60):
            _trade(engine, f"T{i}", 10.0)
        engine.run_pattern_analysis()

        insights = engine.get_pattern_insights()
        assert insights.total_patterns == len(engine.get_patterns())
        assert insights.strong_patterns

    def test_bot_decision_recorded(self, engine):
        decision = engine.handle_event(Events.BOT_DECISION, {'botId': 'B1', 'symbol': 'AAPL', 'action': 'buy'})

        assert decision['bot_id'] == 'B1'
        assert engine.get_dashboard()['overview']['learning_events'] == 1


@pytest.mark.integration
class TestPeriodicPasses:
    """Metrics, reconciliation and model retraining"""

    def test_update_metrics(self, engine, emitted):
        for i in range(4):
            _trade(engine, f"T{i}", 10.0 if i else -10.0)

        metrics = engine.update_metrics()

        assert metrics.total_trades == 4
        assert metrics.success_rate == pytest.approx(0.75)
        assert engine.get_learning_metrics() is metrics
        assert _of_type(emitted, Events.METRICS_UPDATED)[-1]['total_trades'] == 4

    def test_reconcile_from_performance(self, engine):
        for i in range(20):
            _trade(engine, f"T{i}", 10.0)

        settings = engine.reconcile_settings(adjust_from_performance=True)

        assert settings.risk_multiplier == pytest.approx(1.05)
        assert settings.confidence_threshold == pytest.approx(0.58)

    def test_reconcile_needs_enough_outcomes(self, engine):
        for i in range(19):
            _trade(engine, f"T{i}", -10.0)

        assert engine.reconcile_settings(adjust_from_performance=True).risk_multiplier == 1.0

    def test_retrain_models(self, engine):
        for i in range(40):
            _trade(engine, f"T{i}", 10.0)

        updated = engine.retrain_models()

        assert {m.model_id for m in updated} == {m.model_id for m in engine.get_models()}
        assert all(m.training_data_size == 40 for m in updated)

    def test_exporter_receives_updates(self):
        exporter = LearningMetricsExporter()
        engine = LearningEngine(metrics_exporter=exporter)

        _trade(engine, 'T1', 10.0)
        engine.update_metrics()

        registry = exporter.registry
        assert registry.get_sample_value('learning_trades_processed_total', {'outcome': 'win'}) == 1
        assert registry.get_sample_value('learning_success_rate') == 1.0


@pytest.mark.integration
class TestMixedTimestamps:
    """Producers mixing timezone-aware and naive timestamps"""

    def test_passes_survive_aware_datetimes(self, engine):
        aware_base = BASE_TIME.replace(tzinfo=timezone.utc)
        engine.handle_event(Events.SIGNAL_CREATED, {
            'id': 'S0', 'type': 'breakout', 'severity': 'critical',
            'created_at': datetime.now(timezone.utc)
        })
        for i in (1, 2):
            engine.handle_event(Events.SIGNAL_CREATED, {'id': f"S{i}", 'type': 'breakout', 'severity': 'critical'})

        for i in range(60):
            base = aware_base if i % 2 else BASE_TIME
            executed_at = base + timedelta(hours=i)
            engine.handle_event(Events.TRADE_EXECUTED, execution_event(
                f"T{i}", executed_at=executed_at, signals=[f"S{i % 3}"]
            ))
            engine.handle_event(Events.TRADE_CLOSED, close_event(
                f"T{i}", 10.0 if i % 4 else -10.0, closed_at=executed_at + timedelta(hours=2)
            ))

        assert all(o.executed_at.tzinfo is None for o in engine.get_trade_outcomes())
        assert 'critical_signal_cluster' in engine.run_pattern_analysis()
        assert len(engine.retrain_models()) == 3

        dashboard = engine.get_dashboard()
        assert dashboard['overview']['total_trades'] == 60
        assert dashboard['performance_trends']['daily_pnl']


@pytest.mark.integration
class TestTotality:
    """Public operations never raise"""

    def test_unknown_and_malformed_events(self, engine):
        assert engine.handle_event('trade.teleported', {}) is None
        assert engine.handle_event(Events.TRADE_CLOSED, None) is None
        assert engine.handle_event(Events.TRADE_EXECUTED, {'symbol': 'AAPL'}) is None
        assert engine.handle_event(Events.SIGNAL_CREATED, {'type': 'breakout'}) is None
        assert engine.events_ignored == 1

    def test_handler_failure_contained(self, engine, caplog):
        with patch.object(engine.outcomes, 'record_trade_outcome', side_effect=RuntimeError("disk")):
            assert engine.handle_event(Events.TRADE_CLOSED, close_event('T1', 5.0)) is None
        assert 'disk' in caplog.text

    def test_query_failure_returns_default(self, engine):
        with patch.object(engine.bot_tracker, 'get_top', side_effect=RuntimeError()):
            assert engine.get_top_bots() == []
            dashboard = engine.get_dashboard()
        assert dashboard['overview']['total_trades'] == 0

    def test_bad_pattern_type(self, engine):
        assert engine.get_patterns('astrology') == []

    def test_failing_sink_does_not_propagate(self):
        def sink(event_type, payload):
            raise RuntimeError("sink down")

        engine = LearningEngine(event_sink=sink)
        outcome = _trade(engine, 'T1', 10.0)

        assert outcome.outcome == TradeOutcomeStatus.WIN
        assert engine.get_bot_performance('B1').total_trades == 1

    def test_async_sink_without_loop(self):
        async def sink(event_type, payload):
            pass

        engine = LearningEngine(event_sink=sink)

        assert _trade(engine, 'T1', 10.0) is not None

    def test_dashboard_keys(self, engine):
        _trade(engine, 'T1', 10.0)

        dashboard = engine.get_dashboard()

        assert set(dashboard) == {
            'overview', 'top_bots', 'adaptive_settings', 'recent_insights',
            'learning_metrics', 'portfolio_learning', 'performance_trends'
        }
        assert dashboard['overview']['total_trades'] == 1
        assert dashboard['overview']['overall_win_rate'] == 1.0
        assert dashboard['top_bots'][0]['bot_id'] == 'B1'


@pytest.mark.integration
class TestAsyncOperation:
    """Queueing, scheduling and outbound delivery"""

    async def test_submit_and_drain(self, engine):
        await engine.submit(Events.TRADE_EXECUTED, execution_event('T1'))
        await engine.submit(Events.TRADE_CLOSED, close_event('T1', 10.0))

        assert await engine.drain() == 2
        assert engine.get_bot_performance('B1').total_trades == 1
        assert engine.get_state()['events_processed'] == 2

    async def test_start_runs_passes(self, emitted):
        config = LearningConfig(initial_run_delay=0.01)
        engine = LearningEngine(config, event_sink=lambda t, p: emitted.append((t, p)))

        await engine.start()
        assert engine.is_running
        await engine.submit(Events.TRADE_CLOSED, close_event('T1', 10.0))
        await asyncio.sleep(0.2)
        await engine.stop()

        assert not engine.is_running
        assert len(engine.get_trade_outcomes()) == 1
        assert _of_type(emitted, Events.METRICS_UPDATED)
        assert engine.get_state()['inbound_queue'] == 0

    async def test_async_sink_scheduled(self):
        received = []

        async def sink(event_type, payload):
            received.append(event_type)

        engine = LearningEngine(event_sink=sink)
        _trade(engine, 'T1', 10.0)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert Events.OUTCOME_PROCESSED in received
        await engine.stop()

    async def test_bus_round_trip(self):
        bus = EventBus()
        engine = LearningEngine(event_sink=bus.emit)
        connect_engine(bus, engine)
        processed = []
        bus.subscribe(Events.OUTCOME_PROCESSED, processed.append)

        await bus.publish(Events.TRADE_CLOSED, close_event('T1', 10.0))
        await bus.drain()
        await engine.drain()
        await bus.drain()

        assert len(processed) == 1
        assert processed[0]['outcome']['trade_id'] == 'T1'
