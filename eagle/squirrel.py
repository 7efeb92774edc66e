#!/usr/bin/env python3
"""squirrel: an instrumented HTTP backend to point load tests at.

Answers every request with OK and counts it in Prometheus, labelled with
the load test headers eagle attaches to its requests.
"""
import argparse
import json
import logging
import sys
import time

from flask import Flask, Response, g, request
from prometheus_client import CollectorRegistry, Counter, Summary, generate_latest, CONTENT_TYPE_LATEST

from eagle.config import CONFIG, Settings
from eagle.server import parse_listen, serve

logger = logging.getLogger("squirrel")


def create_app(settings=None, delay: float = 0.0, log_requests: bool = False, namespace: str = "squirrel") -> Flask:
    settings = settings or Settings()
    app = Flask(__name__)
    registry = CollectorRegistry()
    app.config["SQUIRREL_REGISTRY"] = registry

    load_test_headers = {
        "endpoint": settings.header_endpoint,
        "target": settings.header_target,
        "test": settings.header_test,
    }
    label_names = ("method", "path", "code") + tuple(load_test_headers)

    request_latency = Counter(
        'requests_latency_seconds_total', 'Total amount of time squirrel has spent to answer requests in seconds',
        label_names, namespace=namespace, registry=registry,
    )
    request_durations = Summary(
        'requests_duration_seconds', 'Amounts of time squirrel has spent answering requests in seconds',
        label_names, namespace=namespace, registry=registry,
    )
    request_total = Counter(
        'requests', 'Total number of requests made',
        label_names, namespace=namespace, registry=registry,
    )

    @app.before_request
    def before_request_timing():
        g.start_time = time.time()
        g.start_ns = time.time_ns()

    @app.after_request
    def after_request_metrics(response):
        if request.path == '/metrics':
            return response

        duration = time.time() - g.start_time
        labels = {
            "method": request.method.lower(),
            "path": request.path,
            "code": str(response.status_code),
        }
        for name, header in load_test_headers.items():
            labels[name] = request.headers.get(header) or "unknown"

        request_total.labels(**labels).inc()
        request_latency.labels(**labels).inc(duration)
        request_durations.labels(**labels).observe(duration)

        if log_requests:
            log_request(g.start_ns)
        return response

    @app.route('/metrics', methods=['GET'])
    def metrics():
        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    @app.route('/', defaults={'path': ''}, methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'HEAD', 'OPTIONS'])
    @app.route('/<path:path>', methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'HEAD', 'OPTIONS'])
    def ok(path):
        if delay > 0:
            time.sleep(delay)
        return Response("OK", mimetype="text/plain")

    return app


def log_request(started_ns: int):
    entry = {
        "header": {name: request.headers.getlist(name) for name in request.headers.keys()},
        "method": request.method,
        "path": request.path,
        "time": started_ns,
    }
    logger.info(json.dumps(entry))


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        prog='squirrel',
        description='HTTP backend that counts load test requests in Prometheus',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--listen', type=str, default=CONFIG["SQUIRREL_LISTEN"], help='Server listen address')
    parser.add_argument('--delay', type=float, default=CONFIG["SQUIRREL_DELAY"], help='Delay for responses in seconds')
    parser.add_argument('--log-requests', action=argparse.BooleanOptionalAction,
                        default=CONFIG["SQUIRREL_LOG_REQUESTS"],
                        help='Log http request info as JSON')
    return parser, parser.parse_args(argv)


def main(argv=None) -> int:
    parser, args = parse_arguments(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    if not args.listen:
        parser.print_usage(sys.stderr)
        return 1
    try:
        parse_listen(args.listen)
    except ValueError as e:
        logger.error(f"{e}")
        parser.print_usage(sys.stderr)
        return 1

    app = create_app(Settings.from_config(), delay=args.delay, log_requests=args.log_requests)
    serve(app, args.listen)
    return 0


if __name__ == '__main__':
    sys.exit(main())
