"""
Unit tests for the Outcome Store.

Tests cover:
- Outcome classification and pnl derivation
- Execution and close event handling
- Replayed closes and late executions
- FIFO eviction at capacity
- Malformed events
"""

import dataclasses
import pytest
from datetime import datetime

from adaptive_learning.core.models import TradeOutcomeStatus
from adaptive_learning.core.outcome_store import (
    OutcomeStore,
    classify_outcome,
    derive_pnl,
    event_trade_id,
)
from tests.fixtures.trade_data import close_event, execution_event


class TestClassification:
    """Test outcome classification helpers"""

    @pytest.mark.parametrize("pnl,expected", [
        (12.5, TradeOutcomeStatus.WIN),
        (-0.01, TradeOutcomeStatus.LOSS),
        (0.0, TradeOutcomeStatus.BREAKEVEN),
        (None, TradeOutcomeStatus.OPEN),
    ])
    def test_classify_outcome(self, pnl, expected):
        assert classify_outcome(pnl) == expected

    def test_derive_pnl_long(self):
        assert derive_pnl('buy', 100.0, 110.0, 5) == pytest.approx(50.0)

    def test_derive_pnl_short_inverts_sign(self):
        assert derive_pnl('sell', 100.0, 110.0, 5) == pytest.approx(-50.0)
        assert derive_pnl('short', 100.0, 90.0, 5) == pytest.approx(50.0)

    def test_derive_pnl_missing_inputs(self):
        assert derive_pnl('buy', 100.0, None, 5) is None

    def test_event_trade_id_aliases(self):
        assert event_trade_id({'tradeId': 'T1'}) == 'T1'
        assert event_trade_id({'id': 7}) == '7'
        assert event_trade_id({'symbol': 'AAPL'}) is None
        assert event_trade_id("not-a-mapping") is None


class TestTradeExecution:
    """Test execution event handling"""

    def test_execution_creates_open_outcome(self):
        store = OutcomeStore()
        outcome = store.record_trade_execution(execution_event('T1'))

        assert outcome.trade_id == 'T1'
        assert outcome.outcome == TradeOutcomeStatus.OPEN
        assert outcome.entry_price == 100.0
        assert outcome.bot_id == 'B1'
        assert outcome.executed_at == datetime(2024, 1, 15, 9, 0)
        assert len(store) == 1

    def test_camel_case_keys(self):
        store = OutcomeStore()
        outcome = store.record_trade_execution({
            'tradeId': 'T2', 'symbol': 'MSFT', 'entryPrice': 50, 'quantity': 2, 'botId': 'B9'
        })

        assert outcome.trade_id == 'T2'
        assert outcome.entry_price == 50.0
        assert outcome.bot_id == 'B9'

    def test_execution_with_exit_data_is_resolved(self):
        store = OutcomeStore()
        outcome = store.record_trade_execution(execution_event('T3', exitPrice=105.0))

        assert outcome.pnl == pytest.approx(50.0)
        assert outcome.outcome == TradeOutcomeStatus.WIN

    def test_late_execution_never_reopens(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T4'))
        store.record_trade_outcome(close_event('T4', pnl=-20.0))

        outcome = store.record_trade_execution(execution_event('T4', price=101.0))

        assert outcome.outcome == TradeOutcomeStatus.LOSS
        assert outcome.pnl == -20.0
        assert outcome.entry_price == 101.0

    def test_malformed_execution_skipped(self):
        store = OutcomeStore()

        assert store.record_trade_execution({'symbol': 'AAPL'}) is None
        assert store.record_trade_execution(None) is None
        assert store.skipped_events == 2
        assert len(store) == 0


class TestTradeClose:
    """Test close event handling"""

    def test_close_finalizes_existing_trade(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1'))

        outcome, newly_finalized = store.record_trade_outcome(
            close_event('T1', pnl=30.0, max_drawdown_pct=0.02)
        )

        assert newly_finalized is True
        assert outcome.outcome == TradeOutcomeStatus.WIN
        assert outcome.duration_hours == 2.0
        assert outcome.exit_reason == 'take_profit'
        assert outcome.max_drawdown_pct == 0.02
        assert outcome.symbol == 'AAPL'

    def test_close_without_execution_creates_record(self):
        store = OutcomeStore()
        outcome, newly_finalized = store.record_trade_outcome(
            {'trade_id': 'T9', 'symbol': 'TSLA', 'pnl': -5}
        )

        assert newly_finalized is True
        assert outcome.outcome == TradeOutcomeStatus.LOSS
        assert outcome.closed_at is not None

    def test_close_derives_pnl_from_exit_price(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1', side='sell', quantity=4))

        outcome, _ = store.record_trade_outcome({'trade_id': 'T1', 'exit_price': 90.0})

        assert outcome.pnl == pytest.approx(40.0)
        assert outcome.outcome == TradeOutcomeStatus.WIN

    def test_close_without_exit_data_stays_open(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1'))

        outcome, newly_finalized = store.record_trade_outcome({'trade_id': 'T1'})

        assert outcome.outcome == TradeOutcomeStatus.OPEN
        assert newly_finalized is False

    def test_replayed_close_reports_not_new(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1'))
        event = close_event('T1', pnl=30.0)

        _, first = store.record_trade_outcome(event)
        outcome, second = store.record_trade_outcome(event)

        assert first is True
        assert second is False
        assert outcome.pnl == 30.0
        assert len(store) == 1

    def test_partial_replay_keeps_settled_result(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1'))
        settled, _ = store.record_trade_outcome(close_event('T1', pnl=30.0))

        replayed, partial_new = store.record_trade_outcome({'trade_id': 'T1'})
        outcome, full_new = store.record_trade_outcome(close_event('T1', pnl=30.0))

        assert replayed.outcome == TradeOutcomeStatus.WIN
        assert replayed.pnl == 30.0
        assert replayed.closed_at == settled.closed_at
        assert partial_new is False
        assert full_new is False
        assert outcome.outcome == TradeOutcomeStatus.WIN
        assert store.get_stats()['open_trades'] == 0

    def test_malformed_close_skipped(self):
        store = OutcomeStore()
        outcome, newly_finalized = store.record_trade_outcome({'pnl': 10})

        assert outcome is None
        assert newly_finalized is False


class TestCapacity:
    """Test bounded storage and queries"""

    def test_fifo_eviction(self):
        store = OutcomeStore(capacity=3)
        for i in range(5):
            store.record_trade_execution(execution_event(f"T{i}"))

        assert len(store) == 3
        assert store.get('T0') is None
        assert store.get('T1') is None
        assert [o.trade_id for o in store.snapshot()] == ['T2', 'T3', 'T4']
        assert store.evicted == 2

    def test_update_does_not_change_eviction_order(self):
        store = OutcomeStore(capacity=2)
        store.record_trade_execution(execution_event('A'))
        store.record_trade_execution(execution_event('B'))
        store.record_trade_outcome(close_event('A', pnl=5.0))
        store.record_trade_execution(execution_event('C'))

        assert store.get('A') is None
        assert store.get('B') is not None

    def test_get_recent_newest_first(self):
        store = OutcomeStore()
        for i in range(5):
            store.record_trade_execution(execution_event(f"T{i}"))

        assert [o.trade_id for o in store.get_recent(3)] == ['T4', 'T3', 'T2']
        assert store.get_recent(0) == []

    def test_get_by_symbol(self):
        store = OutcomeStore()
        store.record_trade_execution(execution_event('T1', symbol='AAPL'))
        store.record_trade_execution(execution_event('T2', symbol='MSFT'))
        store.record_trade_execution(execution_event('T3', symbol='AAPL'))

        assert [o.trade_id for o in store.get_by_symbol('AAPL')] == ['T3', 'T1']
        assert len(store.get_by_symbol('AAPL', limit=1)) == 1

    def test_stats(self):
        store = OutcomeStore(capacity=10)
        store.record_trade_execution(execution_event('T1'))
        store.record_trade_outcome(close_event('T2', pnl=1.0))

        stats = store.get_stats()
        assert stats['size'] == 2
        assert stats['open_trades'] == 1
        assert stats['capacity'] == 10


class TestPublishedRecords:
    """Stored outcomes are immutable values"""

    def test_outcome_is_frozen(self):
        store = OutcomeStore()
        outcome = store.record_trade_execution(execution_event('T1', signals=['S1', 'S2']))

        assert outcome.related_signals == ('S1', 'S2')
        with pytest.raises(dataclasses.FrozenInstanceError):
            outcome.pnl = 99.0

    def test_close_replaces_record(self):
        store = OutcomeStore()
        opened = store.record_trade_execution(execution_event('T1'))

        closed, _ = store.record_trade_outcome(close_event('T1', pnl=5.0))

        assert opened.outcome == TradeOutcomeStatus.OPEN
        assert store.get('T1') is closed
        assert closed.related_signals == ()
