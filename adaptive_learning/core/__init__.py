"""
Core learning components - outcome tracking, pattern mining and adaptation
"""

# Import all modules
from .models import *
from .learning_config import *
from .outcome_store import *
from .performance_trackers import *
from .adaptive_settings import *
from .pattern_analyzer import *
from .predictors import *
from .model_registry import *
from .feedback_processor import *
from .metrics_aggregator import *
from .insights import *
from .learning_engine import *

# Define what gets exported
__all__ = [
    'models',
    'learning_config',
    'outcome_store',
    'performance_trackers',
    'adaptive_settings',
    'pattern_analyzer',
    'predictors',
    'model_registry',
    'feedback_processor',
    'metrics_aggregator',
    'insights',
    'learning_engine',
]
