"""Entry point for the service event relay."""

import argparse
import logging
import signal
import sys
import threading

from relay.adapter import LogAdapter
from relay.broadcaster import MetricsBroadcaster
from relay.config import load_config, load_yaml_config
from relay.dashboard import create_app, run_dashboard
from relay.hub import Hub
from relay.metrics import HealthSampler
from relay.source import JournalSource

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Service event relay: metrics fan-out and log tailing")
    parser.add_argument("--unit", default=None, help="Default log unit to query and follow")
    parser.add_argument("--host", default=None, help="Address to listen on (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 8080)")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--log-level", dest="log_level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv=None):
    args = build_cli_parser().parse_args(argv)
    config = load_config(args, load_yaml_config(args.config))

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    hub = Hub(outbox_capacity=config.outbox_capacity, control_capacity=config.control_capacity)
    hub.start()

    source = JournalSource(config.journalctl, config.systemctl, poll_interval=config.poll_interval)
    adapter = LogAdapter(
        source,
        fetch_timeout=config.fetch_timeout,
        poll_interval=config.poll_interval,
        idle_flush=config.idle_flush,
        terminate_grace=config.terminate_grace,
    )
    sampler = HealthSampler(config.disk_path)
    broadcaster = MetricsBroadcaster(hub, sampler, interval=config.metrics_interval)
    broadcaster.start()

    app = create_app(config, hub, adapter, sampler)
    web_thread = threading.Thread(target=run_dashboard, args=(app, config.host, config.port), daemon=True)
    web_thread.start()
    logger.info("Serving on %s:%d, default unit %s", config.host, config.port, config.unit)

    try:
        shutdown_event.wait()
    finally:
        broadcaster.stop()
        hub.stop()
        logger.info("Relay stopped.")


if __name__ == "__main__":
    main()
