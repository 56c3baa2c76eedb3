"""
Adaptive learning engine - windowed trade statistics, pattern mining and
adaptive control parameters for a trading dashboard
"""

__version__ = '1.0.0'

from .core.learning_config import LearningConfig, load_config
from .core.learning_engine import LearningEngine

__all__ = [
    'LearningConfig',
    'LearningEngine',
    'load_config',
    '__version__',
]
