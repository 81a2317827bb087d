# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""REST API endpoints for Smartwatch Monitor.

Provides JSON API for:
- Loop status and the current alert
- Event list and the read/unread notification view
- Mark-all-read
- Remote configuration and audio pass-through
"""

import asyncio
import concurrent.futures
import logging
from datetime import datetime

from flask import Blueprint, Response, current_app, g, jsonify, request
from pydantic import ValidationError

from smartwatch_monitor.exceptions import FetchError, StoreError
from smartwatch_monitor.models import ConfigurationPayload, events_to_dicts
from smartwatch_monitor.read_state import mark_all_read, partition, sort_newest_first

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)


def run_async(coro):
    """Run a coroutine on the monitor's event loop and wait for the result."""
    loop = current_app.config['EVENT_LOOP']
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    try:
        return future.result(timeout=current_app.config['REQUEST_TIMEOUT'])
    except concurrent.futures.TimeoutError:
        future.cancel()
        raise


# ==================== Error Handlers ====================

@api_bp.errorhandler(FetchError)
def handle_fetch_error(e):
    logger.warning(f"Upstream request failed: {e}")
    return jsonify({'error': f'Event source unavailable: {e}'}), 502


@api_bp.errorhandler(StoreError)
def handle_store_error(e):
    logger.error(f"Watermark store failed: {e}")
    return jsonify({'error': 'Watermark store unavailable'}), 503


@api_bp.errorhandler(concurrent.futures.TimeoutError)
def handle_timeout(e):
    return jsonify({'error': 'Request timed out'}), 504


# ==================== Health Check ====================

@api_bp.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({
        'status': 'ok',
        'timestamp': datetime.now().isoformat(),
    })


# ==================== Status ====================

@api_bp.route('/status')
def get_status():
    """Get detection loop status, current alert and watermark."""
    if not g.detection_loop:
        return jsonify({'error': 'Detection loop not available'}), 503

    alert = g.dispatcher.current_alert if g.dispatcher else None
    return jsonify({
        'loop': g.detection_loop.get_status().to_dict(),
        'alert': alert.to_dict() if alert else None,
        'watermark': run_async(g.store.get()),
        'mock_mode': g.config.mock_mode,
    })


# ==================== Events ====================

@api_bp.route('/events')
def get_events():
    """Get all events, newest first.

    Query params:
        abnormal: "1" to return only abnormal events
    """
    events = run_async(g.client.fetch())
    if request.args.get('abnormal') in ('1', 'true'):
        events = [e for e in events if e.is_abnormal]

    return jsonify({
        'events': events_to_dicts(sort_newest_first(events)),
        'count': len(events),
    })


@api_bp.route('/notifications')
def get_notifications():
    """Abnormal events split into unread and read.

    Opening this view clears the visible alert.

    Query params:
        timestamp: Event the user arrived for (from the alert route)
    """
    events = run_async(g.client.fetch())
    abnormal = [e for e in events if e.is_abnormal]
    watermark = run_async(g.store.get())
    unread, read = partition(abnormal, watermark)

    if g.dispatcher:
        run_async(g.dispatcher.cancel())

    selected = None
    target = request.args.get('timestamp')
    if target:
        selected = next((e.to_dict() for e in abnormal if e.timestamp == target), None)

    return jsonify({
        'watermark': watermark,
        'unread': events_to_dicts(sort_newest_first(unread)),
        'read': events_to_dicts(sort_newest_first(read)),
        'unread_count': len(unread),
        'read_count': len(read),
        'selected': selected,
    })


@api_bp.route('/notifications/mark-read', methods=['POST'])
def mark_notifications_read():
    """Mark abnormal events as read.

    JSON body (optional):
        up_to: Only consider events at or before this timestamp, i.e. the
               ones the user was actually shown
    """
    data = request.get_json(silent=True) or {}
    up_to = data.get('up_to')
    if up_to is not None and not isinstance(up_to, str):
        return jsonify({'error': 'up_to must be a timestamp string'}), 400

    events = run_async(g.client.fetch())
    shown = [e for e in events if e.is_abnormal and (up_to is None or e.timestamp <= up_to)]
    watermark = run_async(mark_all_read(shown, g.store))
    if watermark is None:
        watermark = run_async(g.store.get())

    return jsonify({
        'success': True,
        'watermark': watermark,
    })


@api_bp.route('/watermark', methods=['DELETE'])
def reset_watermark():
    """Forget the watermark; every event becomes unread again."""
    run_async(g.store.clear())
    logger.info("Watermark reset via API")
    return jsonify({'success': True, 'watermark': None})


# ==================== Alert Slot ====================

@api_bp.route('/alert')
def get_alert():
    alert = g.dispatcher.current_alert if g.dispatcher else None
    return jsonify({'alert': alert.to_dict() if alert else None})


@api_bp.route('/alert', methods=['DELETE'])
def cancel_alert():
    if not g.dispatcher:
        return jsonify({'error': 'Alert dispatcher not available'}), 503
    cleared = run_async(g.dispatcher.cancel())
    return jsonify({'success': True, 'cleared': cleared})


# ==================== Configuration ====================

@api_bp.route('/config')
def get_config():
    """Read the reporting configuration from the server."""
    payload = run_async(g.client.get_config())
    return jsonify(payload.to_wire())


@api_bp.route('/config', methods=['POST'])
def update_config():
    """Save the reporting configuration on the server."""
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'error': 'JSON body required'}), 400

    try:
        payload = ConfigurationPayload.model_validate(data)
    except ValidationError as e:
        return jsonify({'error': 'Invalid configuration', 'details': e.errors(include_url=False)}), 400

    run_async(g.client.post_config(payload))
    logger.info("Configuration updated via API")
    return jsonify({'success': True, 'config': payload.to_wire()})


# ==================== Audio ====================

@api_bp.route('/audio')
def get_audio():
    """Audio clip recorded for one event."""
    timestamp = request.args.get('timestamp')
    if not timestamp:
        return jsonify({'error': 'timestamp parameter required'}), 400

    try:
        data = run_async(g.client.fetch_audio(timestamp))
    except FetchError as e:
        if e.status == 404:
            return jsonify({'error': f'No audio for {timestamp}'}), 404
        raise

    return Response(data, mimetype='audio/wav')
