"""
learning_api.py
Read-only API endpoints for the learning dashboard

Author: Adaptive Learning System
Date: 2024
"""

import logging
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from adaptive_learning.core.models import PatternType
from adaptive_learning.monitoring.prometheus_metrics import LearningMetricsExporter

logger = logging.getLogger(__name__)


class LearningAPI:
    """API endpoints for the learning engine"""

    def __init__(self, engine, exporter: Optional[LearningMetricsExporter] = None):
        self.engine = engine
        self.exporter = exporter
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes"""
        self.app.router.add_get('/api/dashboard', self.get_dashboard)
        self.app.router.add_get('/api/patterns', self.get_patterns)
        self.app.router.add_get('/api/patterns/insights', self.get_pattern_insights)
        self.app.router.add_get('/api/metrics', self.get_metrics)
        self.app.router.add_get('/api/models', self.get_models)
        self.app.router.add_get('/api/bots', self.get_bots)
        self.app.router.add_get('/api/bots/{bot_id}', self.get_bot)
        self.app.router.add_get('/api/signals', self.get_signals)
        self.app.router.add_get('/api/feedback', self.get_feedback)
        self.app.router.add_get('/api/outcomes', self.get_outcomes)
        self.app.router.add_get('/api/settings', self.get_settings)
        self.app.router.add_get('/api/predictions/return/{symbol}', self.get_return_prediction)
        self.app.router.add_get('/metrics', self.get_prometheus_metrics)

    async def get_dashboard(self, request):
        """Get the dashboard composite"""
        try:
            return web.json_response(self.engine.get_dashboard())
        except Exception as e:
            logger.error(f"Error getting dashboard: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_patterns(self, request):
        """Get stored patterns, optionally filtered by ?type="""
        try:
            pattern_type = request.query.get('type')
            if pattern_type is not None:
                pattern_type = PatternType(pattern_type)
            patterns = self.engine.get_patterns(pattern_type)
            return web.json_response({'patterns': [p.to_dict() for p in patterns]})
        except ValueError as e:
            return web.json_response({'error': str(e)}, status=400)
        except Exception as e:
            logger.error(f"Error getting patterns: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_pattern_insights(self, request):
        try:
            return web.json_response(self.engine.get_pattern_insights().to_dict())
        except Exception as e:
            logger.error(f"Error getting pattern insights: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_metrics(self, request):
        """Get the current learning metrics snapshot"""
        try:
            return web.json_response(self.engine.get_learning_metrics().to_dict())
        except Exception as e:
            logger.error(f"Error getting metrics: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_models(self, request):
        try:
            return web.json_response({'models': [m.to_dict() for m in self.engine.get_models()]})
        except Exception as e:
            logger.error(f"Error getting models: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_bots(self, request):
        """Get top-N bots by accuracy"""
        try:
            limit = int(request.query.get('limit', 5))
            return web.json_response({'bots': [b.to_dict() for b in self.engine.get_top_bots(limit)]})
        except ValueError as e:
            return web.json_response({'error': str(e)}, status=400)
        except Exception as e:
            logger.error(f"Error getting bots: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_bot(self, request):
        try:
            bot = self.engine.get_bot_performance(request.match_info['bot_id'])
            return web.json_response(bot.to_dict())
        except Exception as e:
            logger.error(f"Error getting bot: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_signals(self, request):
        """Get signal effectiveness, optionally filtered by ?type= and ?source="""
        try:
            records = self.engine.get_signal_effectiveness(
                request.query.get('type'), request.query.get('source')
            )
            return web.json_response({'signals': [r.to_dict() for r in records]})
        except Exception as e:
            logger.error(f"Error getting signals: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_feedback(self, request):
        try:
            limit = int(request.query.get('limit', 100))
            loops = self.engine.get_feedback_loops(limit)
            return web.json_response({'feedback_loops': [f.to_dict() for f in loops]})
        except ValueError as e:
            return web.json_response({'error': str(e)}, status=400)
        except Exception as e:
            logger.error(f"Error getting feedback loops: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_outcomes(self, request):
        try:
            limit = int(request.query.get('limit', 1000))
            outcomes = self.engine.get_trade_outcomes(limit)
            return web.json_response({'outcomes': [o.to_dict() for o in outcomes]})
        except ValueError as e:
            return web.json_response({'error': str(e)}, status=400)
        except Exception as e:
            logger.error(f"Error getting outcomes: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_settings(self, request):
        try:
            return web.json_response(self.engine.get_adaptive_settings().to_dict())
        except Exception as e:
            logger.error(f"Error getting settings: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_return_prediction(self, request):
        try:
            symbol = request.match_info['symbol']
            horizon = request.query.get('horizon', '1d')
            prediction = self.engine.predict_return(symbol, horizon)
            if prediction is None:
                return web.json_response({'symbol': symbol, 'prediction': None})
            return web.json_response({'symbol': symbol, 'prediction': prediction.to_dict()})
        except Exception as e:
            logger.error(f"Error getting return prediction: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def get_prometheus_metrics(self, request):
        """Prometheus text exposition"""
        if self.exporter is None:
            return web.Response(status=404, text='metrics exporter disabled')
        response = web.Response(body=self.exporter.render())
        response.content_type = CONTENT_TYPE_LATEST.split(';')[0]
        return response

    async def start_server(self, host: str = 'localhost', port: int = 8080):
        """Start API server"""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(f"Learning API server started on {host}:{port}")

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Learning API server stopped")
