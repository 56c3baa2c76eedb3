"""
Monitoring and dashboard - Prometheus export and read-only HTTP API
"""

# Import all modules
from .prometheus_metrics import *
from .learning_api import *

# Define what gets exported
__all__ = [
    'prometheus_metrics',
    'learning_api',
]
