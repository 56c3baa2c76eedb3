"""
Shared fixtures for the adaptive learning test suite
"""

import pytest

from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.learning_engine import LearningEngine


@pytest.fixture
def config():
    """Default configuration"""
    return LearningConfig()


@pytest.fixture
def emitted():
    """Outbound events captured by the recording sink"""
    return []


@pytest.fixture
def engine(config, emitted):
    """Engine with a recording event sink"""
    return LearningEngine(config, event_sink=lambda event_type, payload: emitted.append((event_type, payload)))
