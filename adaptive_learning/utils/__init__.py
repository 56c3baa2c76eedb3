"""
Utilities - input coercion and error handling helpers
"""

# Import all modules
from .validators import *
from .error_handling import *

# Define what gets exported
__all__ = [
    'validators',
    'error_handling',
]
