"""
Unit tests for the Adaptive Settings Store.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from dataclasses import FrozenInstanceError, replace
from types import MappingProxyType

from adaptive_learning.core.adaptive_settings import AdaptiveSettingsStore
from adaptive_learning.core.learning_config import LearningConfig


class TestAdaptiveSettingsStore:
    """Test clamped, atomically replaced settings"""

    def test_defaults(self):
        settings = AdaptiveSettingsStore().get()

        assert settings.risk_multiplier == 1.0
        assert settings.confidence_threshold == 0.6
        assert dict(settings.signal_weights) == {}
        assert dict(settings.bot_weights) == {}

    def test_defaults_from_config(self):
        store = AdaptiveSettingsStore(LearningConfig(default_risk_multiplier=0.8,
                                                     default_confidence_threshold=0.7))

        assert store.get().risk_multiplier == 0.8
        assert store.get().confidence_threshold == 0.7

    def test_update_clamps_every_field(self):
        store = AdaptiveSettingsStore()
        settings = store.update(
            risk_multiplier=9.0,
            confidence_threshold=0.1,
            bot_weights={'B1': 3.0, 'B2': 0.0},
            signal_weights={'breakout:oracle': 5.0}
        )

        assert settings.risk_multiplier == 1.5
        assert settings.confidence_threshold == 0.4
        assert dict(settings.bot_weights) == {'B1': 1.5, 'B2': 0.3}
        assert dict(settings.signal_weights) == {'breakout:oracle': 1.8}

    def test_published_value_is_immutable(self):
        store = AdaptiveSettingsStore()
        settings = store.update(bot_weights={'B1': 1.0})

        with pytest.raises(FrozenInstanceError):
            settings.risk_multiplier = 2.0
        with pytest.raises(TypeError):
            settings.bot_weights['B1'] = 2.0
        assert isinstance(settings.bot_weights, MappingProxyType)

    def test_updates_replace_value(self):
        store = AdaptiveSettingsStore()
        before = store.get()
        after = store.nudge(risk_factor=0.5)

        assert before.risk_multiplier == 1.0
        assert after.risk_multiplier == 0.5
        assert store.get() is after
        assert store.update_count == 1

    def test_apply(self):
        store = AdaptiveSettingsStore()
        settings = store.apply(lambda s: replace(s, confidence_threshold=s.confidence_threshold + 0.05))

        assert settings.confidence_threshold == pytest.approx(0.65)

    def test_nudge_bounds(self):
        store = AdaptiveSettingsStore()
        for _ in range(100):
            settings = store.nudge(risk_factor=1.2, threshold_delta=-0.05)

        assert settings.risk_multiplier == 1.5
        assert settings.confidence_threshold == 0.4

    def test_concurrent_nudges_are_not_lost(self):
        store = AdaptiveSettingsStore()

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: store.nudge(threshold_delta=0.001), range(100)))

        assert store.update_count == 100
        assert store.get().confidence_threshold == pytest.approx(0.7)

    def test_concurrent_nudges_stay_clamped(self):
        store = AdaptiveSettingsStore()
        factors = [(1.2, -0.05) if i % 2 else (0.7, 0.05) for i in range(200)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            published = list(pool.map(lambda f: store.nudge(*f), factors))

        assert store.update_count == 200
        for settings in published + [store.get()]:
            assert 0.5 <= settings.risk_multiplier <= 1.5
            assert 0.4 <= settings.confidence_threshold <= 0.8
