"""Flask HTTP surface: health metrics, hub event stream, log queries and live tails."""

import logging

from flask import Flask, Response, jsonify, request, stream_with_context

from relay.adapter import LogAdapter, validate_unit
from relay.config import Config
from relay.errors import HubStopped, RelayError
from relay.filters import LogFilter
from relay.hub import Hub
from relay.models import Envelope
from relay.sse import stream_subscription
from relay.tail import LogTail

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "X-Accel-Buffering": "no",
}


def create_app(config: Config, hub: Hub, adapter: LogAdapter, sampler) -> Flask:
    app = Flask(__name__)

    def _unit() -> str:
        return validate_unit(request.args.get("unit") or config.unit)

    @app.errorhandler(ValueError)
    def bad_request(exc):
        return jsonify(error=str(exc)), 400

    @app.route("/health")
    def health():
        return jsonify(status="ok", subscribers=hub.subscriber_count)

    @app.route("/api/health")
    def api_health():
        try:
            snapshot = sampler.sample_now()
        except Exception as exc:
            logger.warning("Error sampling metrics: %s", exc)
            return jsonify(error=str(exc)), 500
        hub.publish(Envelope.metrics(snapshot))
        return jsonify(snapshot)

    @app.route("/api/events")
    def api_events():
        try:
            subscription = hub.register()
        except HubStopped as exc:
            return jsonify(error=str(exc)), 503
        stream = stream_subscription(subscription, config.keepalive_interval, named=True)
        return Response(stream_with_context(stream), mimetype="text/event-stream", headers=SSE_HEADERS)

    @app.route("/api/logs")
    def api_logs():
        unit = _unit()
        log_filter = LogFilter.from_params(request.args, default_lines=config.default_lines)
        try:
            result = adapter.fetch(unit, log_filter)
        except RelayError as exc:
            logger.warning("Log query for %s failed: %s", unit, exc)
            return Response(str(exc), status=500, mimetype="text/plain")
        return jsonify(result.to_dict())

    @app.route("/api/logs/units")
    def api_units():
        try:
            units = adapter.list_units(timeout=config.units_timeout)
        except RelayError as exc:
            logger.warning("Listing units failed: %s", exc)
            return Response(str(exc), status=500, mimetype="text/plain")
        return jsonify(units=units)

    @app.route("/api/logs/stream")
    def api_logs_stream():
        if "text/event-stream" not in request.headers.get("Accept", ""):
            return Response("Accept: text/event-stream required", status=406, mimetype="text/plain")
        unit = _unit()
        log_filter = LogFilter.from_params(request.args)
        tail = LogTail(adapter, unit, log_filter, outbox_capacity=config.outbox_capacity)
        subscription = tail.start()
        stream = stream_subscription(subscription, config.keepalive_interval,
                                     named=False, on_close=tail.stop)
        return Response(stream_with_context(stream), mimetype="text/event-stream", headers=SSE_HEADERS)

    return app


def run_dashboard(app: Flask, host: str, port: int):
    """Run the Flask app (intended for use in a daemon thread)."""
    app.run(host=host, port=port, threaded=True, use_reloader=False)
