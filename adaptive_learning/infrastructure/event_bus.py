"""
event_bus.py
In-process publish/subscribe bus used to feed the learning engine and
carry its outbound notifications

Author: Adaptive Learning System
Date: 2024
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class Events:
    """Event names understood or emitted by the learning engine"""
    # Inbound
    TRADE_EXECUTED = "trade.executed"
    TRADE_CLOSED = "trade.closed"
    SIGNAL_OUTCOME = "signal.outcome"
    SIGNAL_CREATED = "signal.created"
    BOT_DECISION = "bot.decision"
    RISK_SOFT_PULL = "risk.soft_pull"
    RISK_HARD_PULL = "risk.hard_pull"
    RISK_INTERVENTION = "risk.intervention"

    # Outbound
    OUTCOME_PROCESSED = "learning.outcome_processed"
    FEEDBACK_PROCESSED = "learning.feedback_processed"
    METRICS_UPDATED = "learning.metrics_updated"
    PATTERNS_UPDATED = "learning.patterns_updated"
    SETTINGS_UPDATED = "learning.settings_updated"

    INBOUND = (
        TRADE_EXECUTED, TRADE_CLOSED, SIGNAL_OUTCOME, SIGNAL_CREATED,
        BOT_DECISION, RISK_SOFT_PULL, RISK_HARD_PULL, RISK_INTERVENTION
    )


class EventBus:
    """Central event bus for component communication"""

    def __init__(self, max_queue_size: int = 0):
        self.subscribers: Dict[str, List[Callable]] = defaultdict(list)
        self.event_queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.running = False
        self.dropped_events = 0
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start event processing"""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._process_events())

    async def stop(self):
        """Stop event processing"""
        self.running = False
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def publish(self, event_type: str, data: Any):
        """Publish event to all subscribers"""
        await self.event_queue.put((event_type, data))

    def emit(self, event_type: str, data: Any):
        """Non-blocking publish usable from synchronous code"""
        try:
            self.event_queue.put_nowait((event_type, data))
        except asyncio.QueueFull:
            self.dropped_events += 1
            logger.warning(f"Event queue full, dropped {event_type}")

    def subscribe(self, event_type: str, handler: Callable):
        """Subscribe to event type"""
        self.subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Callable):
        handlers = self.subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def dispatch(self, event_type: str, data: Any):
        """Deliver one event to its subscribers"""
        for handler in list(self.subscribers.get(event_type, [])):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {e}")

    async def drain(self):
        """Deliver everything currently queued"""
        while not self.event_queue.empty():
            event_type, data = self.event_queue.get_nowait()
            await self.dispatch(event_type, data)

    async def _process_events(self):
        """Process events from queue"""
        while self.running:
            try:
                event_type, data = await asyncio.wait_for(
                    self.event_queue.get(), timeout=1.0
                )
                await self.dispatch(event_type, data)

            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Event processing error: {e}")


def connect_engine(bus: EventBus, engine) -> None:
    """Route the bus's inbound events into the engine's queue"""
    for event_type in Events.INBOUND:
        bus.subscribe(event_type, _make_forwarder(engine, event_type))


def _make_forwarder(engine, event_type: str) -> Callable:
    async def forward(data: Any):
        await engine.submit(event_type, data)
    return forward
