"""
Bounded Buffer - FIFO-evicting collections
Keeps the most recent items only; the oldest item is dropped silently at capacity
"""

import logging
import threading
import time
from collections import deque
from typing import Any, Dict, Iterator, List

logger = logging.getLogger(__name__)


class BoundedBuffer:
    """Thread-safe buffer with a size limit"""

    def __init__(self, max_size: int = 1000, name: str = "buffer"):
        self.buffer = deque(maxlen=max_size)
        self.max_size = max_size
        self.name = name
        self.total_items = 0
        self.evicted_items = 0
        self.created_at = time.time()
        self._lock = threading.Lock()

    def append(self, item: Any):
        """Add item to buffer"""
        with self._lock:
            if len(self.buffer) == self.max_size:
                self.evicted_items += 1
            self.buffer.append(item)
            self.total_items += 1

    def extend(self, items: List[Any]):
        """Add multiple items to buffer"""
        for item in items:
            self.append(item)

    def get_recent(self, n: int = 100) -> List[Any]:
        """Get n most recent items, newest first"""
        if n <= 0:
            return []
        with self._lock:
            items = list(self.buffer)
        return items[::-1][:n]

    def get_all(self) -> List[Any]:
        """Get all items in insertion order"""
        with self._lock:
            return list(self.buffer)

    def clear(self):
        with self._lock:
            old_size = len(self.buffer)
            self.buffer.clear()
        logger.debug(f"Cleared {self.name} buffer: {old_size} items removed")

    def get_stats(self) -> Dict[str, Any]:
        """Get buffer statistics"""
        with self._lock:
            size = len(self.buffer)
        return {
            'name': self.name,
            'current_size': size,
            'max_size': self.max_size,
            'total_items': self.total_items,
            'evicted_items': self.evicted_items,
            'age_hours': (time.time() - self.created_at) / 3600
        }

    def __len__(self) -> int:
        return len(self.buffer)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.get_all())
