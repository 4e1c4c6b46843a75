import argparse
import logging

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config
from lf_server.exception.StoreError import StoreError
from lf_server.messaging.store import get_conversation_store, reset_conversation_store
from lf_server.routes.messages import messages_bp
from lf_server.security.authentication import AuthSecurity
from lf_server.websocket.hub import init_websocket_hub


def configure_logging():
    """Configure root logging from config (LOG_LEVEL, LOG_FORMAT, LOG_DATE_FORMAT)."""
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATE_FORMAT,
    )


def create_app(store=None) -> Flask:
    """Application factory used by server.py and tests.

    Registers the messaging blueprint and configures CORS and auth. When a
    store is given it replaces the process-wide conversation store.
    """
    AuthSecurity.configure_from_config()
    if store is not None:
        reset_conversation_store(store)

    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS_LIST)
    app.register_blueprint(messages_bp)

    try:
        get_conversation_store().ensure_indexes()
    except StoreError as e:
        logging.warning('Could not ensure messaging indexes: %s', e)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'app': config.APP_NAME, 'version': config.APP_VERSION})

    return app


def create_socketio(app: Flask, store=None, executor=None) -> SocketIO:
    """Attach Socket.IO (threading mode) and the messaging hub to ``app``."""
    origins = config.CORS_ORIGINS_LIST
    socketio = SocketIO(app, async_mode='threading', cors_allowed_origins='*' if origins == ['*'] else origins)
    init_websocket_hub(app, socketio, store=store, executor=executor)
    return socketio


def parse_args():
    """Parse simple CLI arguments for running the server."""
    parser = argparse.ArgumentParser(description='Run the campus lost & found messaging server')
    parser.add_argument('--port', type=int, default=config.PORT, help='TCP port to bind (default: config PORT)')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    configure_logging()
    app = create_app()
    socketio = create_socketio(app)
    logging.info('Starting server with Socket.IO on port %s', args.port)
    socketio.run(app, host="0.0.0.0", port=args.port, debug=config.DEBUG, allow_unsafe_werkzeug=True)
