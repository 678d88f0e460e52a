import logging
import os
import threading
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from tunebridge.application.extraction import LinkExtractor
from tunebridge.application.resolution import ResolutionOrchestrator
from tunebridge.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from tunebridge.crosscutting.logging import setup_logging
from tunebridge.crosscutting.metrics import MetricsCollector
from tunebridge.interfaces.bootstrap import build_orchestrator


VERSION = "0.1.0"


class HTTPServer:
    """HTTP interface for tunebridge: health check plus resolve and extract endpoints."""

    def __init__(self,
                 host: str = 'localhost',
                 port: int = 3000,
                 debug: bool = False,
                 orchestrator: Optional[ResolutionOrchestrator] = None,
                 manager: Optional[SecretManager] = None):
        """Initialize HTTP server.

        The orchestrator is built from configuration on the first request
        that needs one unless it is passed in.
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)
        self.metrics = MetricsCollector()

        self.version = VERSION
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._orchestrator = orchestrator
        self._manager = manager
        self._build_lock = threading.Lock()

        self._setup_routes()

    def _get_orchestrator(self) -> ResolutionOrchestrator:
        with self._build_lock:
            if self._orchestrator is None:
                manager = self._manager or get_secret_manager()
                self._orchestrator = build_orchestrator(manager, self.metrics)
            return self._orchestrator

    def _message_text(self):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return None, {}
        text = payload.get('text')
        if not isinstance(text, str) or not text.strip():
            return None, payload
        return text, payload

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'tunebridge HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'resolve': '/resolve',
                    'extract': '/extract',
                    'metrics': '/metrics'
                }
            }), 200

        @self.app.route('/resolve', methods=['POST'])
        def resolve():
            """Resolve every link of a message into the configured catalogs."""
            text, payload = self._message_text()
            if text is None:
                return jsonify({'error': 'Request body must contain a non-empty "text"'}), 400

            try:
                orchestrator = self._get_orchestrator()
            except ConfigError as e:
                self.logger.error(f"Resolver is not configured: {e}")
                return jsonify({'error': 'Resolver is not configured', 'details': str(e)}), 503

            resolution = orchestrator.resolve_message(text, message_id=payload.get('message_id'))
            if payload.get('expand_albums'):
                for service in list(resolution.resources):
                    resolution.resources[service] = orchestrator.expand_tracks(resolution, service)
            return jsonify(resolution.to_dict()), 200

        @self.app.route('/extract', methods=['POST'])
        def extract():
            """List the links of a message; short links are not expanded."""
            text, _ = self._message_text()
            if text is None:
                return jsonify({'error': 'Request body must contain a non-empty "text"'}), 400

            found = LinkExtractor().extract_all(text)
            return jsonify({
                'resources': {
                    service.value: [ref.to_dict() for ref in refs]
                    for service, refs in found.items()
                },
                'count': sum(len(refs) for refs in found.values())
            }), 200

        @self.app.route('/metrics', methods=['GET'])
        def metrics():
            return jsonify(self.metrics.to_dict()), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting tunebridge HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(orchestrator: Optional[ResolutionOrchestrator] = None,
               manager: Optional[SecretManager] = None) -> Flask:
    """Create Flask app; used by tests and WSGI servers."""
    server = HTTPServer(orchestrator=orchestrator, manager=manager)
    return server.app


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging(os.getenv('TUNEBRIDGE_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('TUNEBRIDGE_HTTP_HOST', 'localhost'),
        port=int(os.getenv('TUNEBRIDGE_HTTP_PORT', '3000')),
    )
    server.run()


if __name__ == '__main__':
    main()
