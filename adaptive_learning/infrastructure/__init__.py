"""
Engine infrastructure - event delivery and bounded collections
"""

# Import all modules
from .bounded_buffer import *
from .event_bus import *

# Define what gets exported
__all__ = [
    'bounded_buffer',
    'event_bus',
]
