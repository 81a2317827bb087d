# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Flask application factory for the Smartwatch Monitor web API.

The Flask server runs in its own thread. Handlers hand their async work
to the monitor's event loop (see api.run_async), which owns the HTTP
session and the database connection.

Usage:
    from smartwatch_monitor.web.app import create_app

    app = create_app(config, loop, detection_loop, store, dispatcher, client)
    app.run()
"""

import logging

from flask import Flask, g

from smartwatch_monitor import __version__

logger = logging.getLogger(__name__)


def create_app(
    config,
    event_loop,
    detection_loop=None,
    store=None,
    dispatcher=None,
    client=None,
):
    """Create and configure Flask application.

    Args:
        config: Application configuration object
        event_loop: Running asyncio loop that owns the async components
        detection_loop: DetectionLoop instance (for status)
        store: WatermarkStore instance
        dispatcher: AlertDispatcher instance
        client: EventSourceClient or MockEventSource

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Store references to core components
    app.config['EVENT_LOOP'] = event_loop
    app.config['REQUEST_TIMEOUT'] = config.web.request_timeout_seconds
    app.config['DETECTION_LOOP'] = detection_loop
    app.config['WATERMARK_STORE'] = store
    app.config['ALERT_DISPATCHER'] = dispatcher
    app.config['EVENT_SOURCE'] = client
    app.config['APP_CONFIG'] = config

    from smartwatch_monitor.web.api import api_bp

    app.register_blueprint(api_bp, url_prefix='/api')

    @app.before_request
    def before_request():
        """Make components available on flask.g."""
        g.detection_loop = app.config.get('DETECTION_LOOP')
        g.store = app.config.get('WATERMARK_STORE')
        g.dispatcher = app.config.get('ALERT_DISPATCHER')
        g.client = app.config.get('EVENT_SOURCE')
        g.config = app.config.get('APP_CONFIG')

    @app.route('/')
    def index():
        return {'app': 'Smartwatch Monitor', 'version': __version__, 'api': '/api'}

    logger.info("Flask application created")
    return app
