#!/usr/bin/env python3
"""eagle: keep a steady, known HTTP load flowing against a set of targets.

Results of every request are aggregated into Prometheus counters and
latency histograms served on /metrics.
"""
import argparse
import logging
import signal
import sys

from eagle.aggregator import Aggregator, Registry, new_channel
from eagle.attacker import Attacker
from eagle.config import CONFIG, Settings, TestConfig, load_test_file, parse_duration
from eagle.errors import EagleError, ValidationError
from eagle.loadtest import LoadTest
from eagle.resolver import describe_targets, parse_target, resolve_targets, srv_lookup
from eagle.server import create_app, parse_listen, serve

logger = logging.getLogger("eagle")

SHUTDOWN_TIMEOUT = 30.0


def parse_arguments(argv=None):
    """Parse command line arguments for the load generator."""
    parser = argparse.ArgumentParser(
        prog='eagle',
        description='Continuously load test HTTP targets and expose the results for Prometheus',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--listen', type=str, default=CONFIG["EAGLE_LISTEN"], help='Server listen address')
    parser.add_argument('--config', type=str, default=None, help='TOML file describing the load test')
    parser.add_argument('--name', type=str, default=None,
                        help='Load test name (required without --config, overrides the file otherwise)')
    parser.add_argument('--target', dest='targets', action='append', default=[], metavar='NAME:LOCATOR',
                        help='Target as name:url or name:srv-name, may be repeated')
    parser.add_argument('--rate', type=int, default=None,
                        help=f'Requests per second per endpoint (default {CONFIG["EAGLE_RATE"]})')
    parser.add_argument('--duration', type=str, default=None,
                        help=f'Length of one attack cycle, e.g. 1s or 500ms (default {CONFIG["EAGLE_DURATION"]}s)')
    parser.add_argument('--log-level', type=str, default=CONFIG["EAGLE_LOG_LEVEL"], help='Logging level')
    return parser, parser.parse_args(argv)


def build_test_config(args) -> TestConfig:
    if args.config:
        test_config = load_test_file(args.config)
    else:
        test_config = TestConfig(name=args.name or "")

    targets = list(test_config.targets) + [parse_target(value) for value in args.targets]
    return TestConfig(
        name=args.name or test_config.name,
        rate=args.rate if args.rate is not None else (test_config.rate or CONFIG["EAGLE_RATE"]),
        duration=parse_duration(args.duration) if args.duration else (test_config.duration or CONFIG["EAGLE_DURATION"]),
        targets=targets,
    )


def build_load_test(test_config: TestConfig, settings: Settings, attacker=None, lookup=srv_lookup) -> LoadTest:
    """Resolve every target and register it as a layer; raises on any configuration error."""
    load_test = LoadTest(
        test_config.name,
        settings=settings,
        attacker=attacker,
        rate=test_config.rate,
        duration=test_config.duration,
    )

    resolved = resolve_targets(test_config.targets, lookup)
    if resolved:
        logger.info("Targets:\n%s", describe_targets(resolved))
    for name, (spec, endpoints) in resolved.items():
        load_test.register(name, endpoints, rate=spec.rate, duration=spec.duration, headers=spec.headers)

    if not load_test.layers:
        raise ValidationError(f"load test '{load_test.name}' has no targets")
    return load_test


def shutdown(load_test: LoadTest, aggregator: Aggregator, timeout: float = SHUTDOWN_TIMEOUT):
    """Stop attacking, let in-flight cycles finish, then fold what they produced."""
    logger.info("Stopping load test '%s'", load_test.name)
    load_test.stop()
    load_test.join(timeout)
    aggregator.stop(timeout)
    logger.info("Aggregated %d results", aggregator.processed)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv=None) -> int:
    """Main function – parse arguments, start the load test and serve metrics."""
    parser, args = parse_arguments(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if not args.listen or not (args.config or args.targets):
        parser.print_usage(sys.stderr)
        return 1

    try:
        parse_listen(args.listen)
        settings = Settings.from_config()
        test_config = build_test_config(args)
        load_test = build_load_test(test_config, settings, Attacker(settings))
    except EagleError as e:
        logger.error(f"{e}")
        parser.print_usage(sys.stderr)
        return 1

    channel = new_channel(settings)
    registry = Registry(load_test.name, settings)
    aggregator = Aggregator(channel, registry)
    aggregator.start()
    load_test.run(channel)

    signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        serve(create_app(registry, load_test, aggregator), args.listen)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        shutdown(load_test, aggregator)
        load_test.attacker.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
