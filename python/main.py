#!/usr/bin/env python3
"""
registry-gc-listener

  1. Webhook /events -> schedules registry garbage-collect (debounced)
  2. Periodically (or via /prune) keeps the N most recent tags of every
     repository, then runs garbage-collect as well

Basic auth is only needed for pruning; garbage collection works on the
registry's storage volume.
"""

import argparse
import signal
import sys
import threading

from gc_listener.config_manager import ConfigManager, ConfigValidationError
from gc_listener.health_checks import HealthChecker
from gc_listener.listener import GCListener
from gc_listener.logging_utils import get_logger, setup_logging


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Prune old registry tags and run registry garbage collection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Listen for registry notifications and prune every PRUNE_INTERVAL
  python main.py serve

  # One prune + GC run in the foreground
  KEEP_N=5 REGISTRY_USER=admin REGISTRY_PASS=secret python main.py prune

  # Garbage collection only
  python main.py gc
        """,
    )
    parser.add_argument("--config", help="Path to config.yaml (default: CONFIG_FILE or ./config.yaml)")
    parser.add_argument("--log-level", help="debug, info, warning or error (default: LOG_LEVEL or info)")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the HTTP listener and the periodic scheduler (default)")
    subparsers.add_parser("prune", help="Run prune + garbage collection once and exit")
    subparsers.add_parser("gc", help="Run garbage collection once and exit")
    subparsers.add_parser("health", help="Run health checks and print a report")
    subparsers.add_parser("config", help="Print the effective configuration")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
    return args


def _install_signal_handlers(listener: GCListener) -> None:
    def _handle(signum, _frame):
        listener.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def serve(listener: GCListener, config_manager: ConfigManager) -> int:
    import uvicorn

    from api import create_app

    host, port = config_manager.get_listen_address()
    get_logger(__name__).info("listener on %s:%d", host, port)
    # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown, which stops the listener
    uvicorn.run(create_app(listener), host=host, port=port, log_config=None)
    listener.stop()
    return 0


def main(argv=None) -> int:
    args = parse_arguments(argv)

    try:
        config_manager = ConfigManager(config_file=args.config, validate=False)
        setup_logging(args.log_level or config_manager.get_log_level())
        config_manager.validate_config()
    except ConfigValidationError as e:
        setup_logging()
        get_logger(__name__).error(str(e))
        return 2

    if args.command == "config":
        config_manager.print_config()
        return 0

    listener = GCListener.from_config(config_manager, shutdown=threading.Event())

    if args.command == "health":
        checker = HealthChecker(config_manager, listener.client, listener.collector)
        return 0 if checker.print_health_report(checker.run_all_checks()) else 1

    if args.command == "serve":
        return serve(listener, config_manager)

    _install_signal_handlers(listener)
    if args.command == "gc":
        return 0 if listener.collector.run() else 1

    outcome = listener.orchestrator.prune_and_reclaim()
    return 0 if outcome.reclaimed else 1


if __name__ == "__main__":
    sys.exit(main())
