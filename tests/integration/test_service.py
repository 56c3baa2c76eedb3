"""
Integration tests for the service entry point wiring
"""

import pytest
from unittest.mock import patch

from adaptive_learning.infrastructure.event_bus import Events
from adaptive_learning.main import LearningService, main, setup_logging
from tests.fixtures.trade_data import close_event, execution_event


@pytest.mark.integration
class TestLearningService:
    """Bus, engine, exporter and API assembled from raw configuration"""

    def test_config_sections(self):
        service = LearningService({
            'learning': {'recent_window': 20},
            'api': {'enabled': False, 'port': 9001}
        })

        assert service.config.recent_window == 20
        assert service.api is None
        assert service.api_port == 9001

    def test_api_flag_overrides_config(self):
        assert LearningService({}, api_enabled=False).api is None
        assert LearningService({}).api is not None

    async def test_events_flow_through_bus(self):
        service = LearningService({}, api_enabled=False)
        processed = []
        service.event_bus.subscribe(Events.OUTCOME_PROCESSED, processed.append)

        await service.event_bus.publish(Events.TRADE_EXECUTED, execution_event('T1'))
        await service.event_bus.publish(Events.TRADE_CLOSED, close_event('T1', 15.0))
        await service.event_bus.drain()
        await service.engine.drain()
        await service.event_bus.drain()

        assert len(processed) == 1
        assert service.exporter.registry.get_sample_value(
            'learning_trades_processed_total', {'outcome': 'win'}
        ) == 1

        await service.shutdown()
        assert not service.engine.is_running


class TestEntryPoint:
    """Command line startup"""

    def test_missing_config_exits(self, tmp_path):
        argv = ['adaptive-learning', '--config', str(tmp_path / 'missing.yaml')]
        with patch('sys.argv', argv):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1

    def test_setup_logging_creates_log_dir(self, tmp_path):
        log_file = tmp_path / 'logs' / 'learning.log'

        setup_logging('DEBUG', str(log_file))

        assert log_file.parent.is_dir()
