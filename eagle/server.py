import logging
from typing import Optional, Tuple

from flask import Flask, Response, jsonify

from eagle.errors import ValidationError

logger = logging.getLogger(__name__)


def parse_listen(listen: str) -> Tuple[str, int]:
    """Split a listen address like ':7800' or '127.0.0.1:7800' into host and port."""
    if not listen:
        raise ValidationError("missing listen address")
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise ValidationError(f"invalid listen address '{listen}'")
    return host or "0.0.0.0", int(port)


def create_app(registry, load_test=None, aggregator=None) -> Flask:
    app = Flask(__name__)

    @app.route('/metrics', methods=['GET'])
    def metrics():
        body, content_type = registry.exposition()
        return Response(body, mimetype=content_type)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            "status": "healthy",
            "test": registry.test_name,
            "layers": list(load_test.layers) if load_test is not None else [],
            "processed": aggregator.processed if aggregator is not None else 0,
        }), 200

    return app


def serve(app: Flask, listen: str, debug: Optional[bool] = False):
    host, port = parse_listen(listen)
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)
