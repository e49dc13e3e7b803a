"""
Command line entry point.

Usage:
    mqtt-sweep analyse                          # Driver owns the QoS x delay plan
    mqtt-sweep respond                          # Probe relays requests to the Driver
    mqtt-sweep observe                          # log traffic on the configured topics
    mqtt-sweep analyse -c my.properties --log-level DEBUG
"""

import argparse
import sys

from .broker import link_factory
from .config import load_config
from .coordinator import SweepCoordinator, Topology
from .exceptions import SweepError
from .logs import actor_logger, initialize_logging, shutdown_logging
from .probe import Probe

DEFAULT_CONFIGS = {
    "analyse": "resource/analyser.properties",
    "respond": "resource/responder.properties",
    "observe": "resource/config.properties",
}

TOPOLOGIES = {
    "analyse": Topology.DRIVER_SOURCE,
    "respond": Topology.PROBE_SOURCE,
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mqtt-sweep",
        description="QoS x delay conformance sweep against an MQTT broker")
    p.add_argument("command", choices=["analyse", "respond", "observe"])
    p.add_argument("-c", "--config", default=None,
                   help="Path to a .properties file (default depends on command)")
    p.add_argument("--log-dir", default="logs")
    p.add_argument("--log-level", default="INFO",
                   help="TRACE, DEBUG, INFO, WARNING, ERROR or CRITICAL")
    p.add_argument("--no-color", action="store_true",
                   help="Disable ANSI colours on the console")
    return p


def observe(config, logger):
    probe = Probe(config, link_factory(config),
                  logger=actor_logger(logger, role="probe",
                                      client_id=config.subscriber_connection.id))
    probe.start()
    try:
        return probe.run_static()
    except KeyboardInterrupt:
        probe.stop()
        probe.disconnect()
        raise


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config_path = args.config or DEFAULT_CONFIGS[args.command]

    try:
        logger = initialize_logging(prefix=f"{args.command}_", log_dir=args.log_dir,
                                    level=args.log_level, color=not args.no_color)
    except (OSError, ValueError) as e:
        print(f"Could not initialise logging: {e}", file=sys.stderr)
        return 1
    log = actor_logger(logger, role="main")

    try:
        config = load_config(config_path, log)
        if args.command == "observe":
            outcome = observe(config, logger)
            log.info("Probe finished: %s", outcome.value)
        else:
            SweepCoordinator(config, TOPOLOGIES[args.command], logger=logger).run()
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return 130
    except SweepError as e:
        log.critical("%s", e)
        return 1
    finally:
        shutdown_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
