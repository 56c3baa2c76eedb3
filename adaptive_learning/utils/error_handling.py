"""
error_handling.py
Decorator keeping engine entry points total

Author: Adaptive Learning System
Date: 2024
"""

import asyncio
import logging
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)


def _resolve(default: Any) -> Any:
    # Types and factories build a fresh value per call
    return default() if callable(default) else default


def fallback_on_error(default: Any = None):
    """Log any exception raised by the wrapped call and return `default` instead"""
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                    return _resolve(default)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                return _resolve(default)
        return sync_wrapper

    return decorator
