"""
outcome_store.py
Append-only, size-bounded store of trade outcomes

Author: Adaptive Learning System
Date: 2024
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from adaptive_learning.core.models import TradeOutcome, TradeOutcomeStatus
from adaptive_learning.utils.validators import (
    first_present, to_datetime, to_float, to_list, to_str
)

logger = logging.getLogger(__name__)


SHORT_SIDES = ('sell', 'short')


def classify_outcome(pnl: Optional[float]) -> TradeOutcomeStatus:
    """win iff pnl > 0, loss iff pnl < 0, open when pnl is unknown"""
    if pnl is None:
        return TradeOutcomeStatus.OPEN
    if pnl > 0:
        return TradeOutcomeStatus.WIN
    if pnl < 0:
        return TradeOutcomeStatus.LOSS
    return TradeOutcomeStatus.BREAKEVEN


def derive_pnl(side: str, entry_price: Optional[float], exit_price: Optional[float],
               quantity: Optional[float]) -> Optional[float]:
    """P&L from prices when the event does not carry it"""
    if entry_price is None or exit_price is None or quantity is None:
        return None
    pnl = (exit_price - entry_price) * quantity
    if side and side.lower() in SHORT_SIDES:
        pnl = -pnl
    return pnl


def event_trade_id(event: Mapping[str, Any]) -> Optional[str]:
    """Correlation id of an inbound trade event, if any"""
    if not isinstance(event, Mapping):
        return None
    return to_str(first_present(event, 'trade_id', 'tradeId', 'id'))


class OutcomeStore:
    """Bounded ring of TradeOutcome records keyed by trade id"""

    def __init__(self, capacity: int = 10000):
        self.capacity = capacity
        self._outcomes: "OrderedDict[str, TradeOutcome]" = OrderedDict()
        self._lock = threading.RLock()
        self.evicted = 0
        self.skipped_events = 0

    def record_trade_execution(self, event: Mapping[str, Any]) -> Optional[TradeOutcome]:
        """Create or update a trade from an execution event"""
        if not isinstance(event, Mapping):
            return self._skip(f"execution event is not a mapping: {type(event).__name__}")

        trade_id = event_trade_id(event)
        if trade_id is None:
            return self._skip("execution event without trade id")

        side = to_str(event.get('side')) or 'buy'
        entry_price = to_float(first_present(event, 'entry_price', 'entryPrice', 'price'))
        exit_price = to_float(first_present(event, 'exit_price', 'exitPrice'))
        quantity = to_float(event.get('quantity'))
        pnl = to_float(first_present(event, 'pnl', 'realized_pnl'))
        if pnl is None:
            pnl = derive_pnl(side, entry_price, exit_price, quantity)

        with self._lock:
            existing = self._outcomes.get(trade_id)
            if existing is not None:
                # A late execution event never reopens a finalized trade
                updated = replace(
                    existing,
                    symbol=to_str(event.get('symbol')) or existing.symbol,
                    side=side,
                    entry_price=entry_price if entry_price is not None else existing.entry_price,
                    quantity=quantity if quantity is not None else existing.quantity,
                    bot_id=to_str(first_present(event, 'bot_id', 'botId')) or existing.bot_id,
                    confidence=self._confidence(event, existing.confidence),
                    related_signals=self._signals(event) or existing.related_signals
                )
                if existing.outcome == TradeOutcomeStatus.OPEN and pnl is not None:
                    updated = replace(updated, pnl=pnl, exit_price=exit_price,
                                      outcome=classify_outcome(pnl))
                self._outcomes[trade_id] = updated
                return updated

            outcome = TradeOutcome(
                trade_id=trade_id,
                symbol=to_str(event.get('symbol')) or 'UNKNOWN',
                side=side,
                entry_price=entry_price,
                exit_price=exit_price,
                quantity=quantity,
                pnl=pnl,
                duration_hours=to_float(first_present(event, 'duration_hours', 'duration')),
                outcome=classify_outcome(pnl),
                executed_at=to_datetime(first_present(event, 'executed_at', 'executedAt', 'timestamp'))
                or datetime.now(),
                closed_at=to_datetime(first_present(event, 'closed_at', 'closedAt')),
                related_signals=self._signals(event),
                bot_id=to_str(first_present(event, 'bot_id', 'botId')),
                confidence=self._confidence(event, None)
            )
            self._insert(trade_id, outcome)

        logger.info(f"Trade outcome recorded: {trade_id} {outcome.symbol} ({outcome.outcome.value})")
        return outcome

    def record_trade_outcome(self, event: Mapping[str, Any]) -> Tuple[Optional[TradeOutcome], bool]:
        """Finalize a trade from a close event

        Returns the stored outcome and whether this call moved it out of
        `open`; replays of an already-closed trade report False.
        """
        if not isinstance(event, Mapping):
            return self._skip(f"close event is not a mapping: {type(event).__name__}"), False

        trade_id = event_trade_id(event)
        if trade_id is None:
            return self._skip("close event without trade id"), False

        with self._lock:
            existing = self._outcomes.get(trade_id)
            base = existing or TradeOutcome(
                trade_id=trade_id,
                symbol=to_str(event.get('symbol')) or 'UNKNOWN',
                side=to_str(event.get('side')) or 'buy',
                bot_id=to_str(first_present(event, 'bot_id', 'botId')),
                related_signals=self._signals(event),
                confidence=self._confidence(event, None)
            )

            exit_price = to_float(first_present(event, 'exit_price', 'exitPrice'))
            if exit_price is None:
                exit_price = base.exit_price
            pnl = to_float(first_present(event, 'realized_pnl', 'pnl', 'realizedPnl'))
            if pnl is None:
                pnl = derive_pnl(base.side, base.entry_price, exit_price, base.quantity)
            if pnl is None:
                # A partial replay keeps what an earlier close already settled
                pnl = base.pnl

            duration = to_float(first_present(
                event, 'holding_period_hours', 'duration_hours', 'duration'
            ))
            closed_at = to_datetime(first_present(event, 'closed_at', 'closedAt', 'timestamp'))
            if closed_at is None:
                closed_at = base.closed_at
            if closed_at is None and pnl is not None:
                closed_at = datetime.now()

            finalized = replace(
                base,
                symbol=to_str(event.get('symbol')) or base.symbol,
                exit_price=exit_price,
                pnl=pnl,
                outcome=classify_outcome(pnl) if pnl is not None else base.outcome,
                duration_hours=duration if duration is not None else base.duration_hours,
                closed_at=closed_at,
                bot_id=to_str(first_present(event, 'bot_id', 'botId')) or base.bot_id,
                exit_reason=to_str(first_present(event, 'exit_reason', 'exitReason')) or base.exit_reason,
                max_drawdown_pct=self._optional(event, base.max_drawdown_pct, 'max_drawdown_pct'),
                max_gain_pct=self._optional(event, base.max_gain_pct, 'max_gain_pct')
            )

            was_open = existing is None or existing.outcome == TradeOutcomeStatus.OPEN
            newly_finalized = was_open and finalized.outcome != TradeOutcomeStatus.OPEN

            if existing is None:
                self._insert(trade_id, finalized)
            else:
                self._outcomes[trade_id] = finalized

        if newly_finalized:
            logger.info(f"Trade closed: {trade_id} {finalized.outcome.value} pnl={finalized.pnl}")
        elif existing is not None and not was_open:
            logger.debug(f"Replayed close for {trade_id} overwrote stored outcome")
        return finalized, newly_finalized

    def get(self, trade_id: str) -> Optional[TradeOutcome]:
        with self._lock:
            return self._outcomes.get(trade_id)

    def get_recent(self, limit: int = 1000) -> List[TradeOutcome]:
        """Most recent outcomes first"""
        if limit <= 0:
            return []
        with self._lock:
            items = list(self._outcomes.values())
        return items[::-1][:limit]

    def get_by_symbol(self, symbol: str, limit: Optional[int] = None) -> List[TradeOutcome]:
        matches = [o for o in self.get_recent(self.capacity) if o.symbol == symbol]
        return matches if limit is None else matches[:limit]

    def snapshot(self) -> List[TradeOutcome]:
        """All outcomes in insertion order"""
        with self._lock:
            return list(self._outcomes.values())

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._outcomes)
            open_trades = sum(1 for o in self._outcomes.values() if o.outcome == TradeOutcomeStatus.OPEN)
        return {
            'size': size,
            'capacity': self.capacity,
            'open_trades': open_trades,
            'evicted': self.evicted,
            'skipped_events': self.skipped_events
        }

    def __len__(self) -> int:
        return len(self._outcomes)

    def _insert(self, trade_id: str, outcome: TradeOutcome):
        while len(self._outcomes) >= self.capacity:
            self._outcomes.popitem(last=False)
            self.evicted += 1
        self._outcomes[trade_id] = outcome

    def _skip(self, reason: str) -> None:
        self.skipped_events += 1
        logger.warning(f"Skipping malformed event: {reason}")
        return None

    @staticmethod
    def _signals(event: Mapping[str, Any]) -> Tuple[Any, ...]:
        return tuple(to_list(first_present(event, 'related_signals', 'relatedSignals', 'signals')))

    @staticmethod
    def _confidence(event: Mapping[str, Any], default: Optional[float]) -> Optional[float]:
        value = to_float(event.get('confidence'))
        return value if value is not None else default

    @staticmethod
    def _optional(event: Mapping[str, Any], default: Optional[float], key: str) -> Optional[float]:
        value = to_float(event.get(key))
        return value if value is not None else default
