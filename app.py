import logging
import os
import time

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_socketio import SocketIO

from events import ChatNamespace
from models import db
from store import DEFAULT_HISTORY_LIMIT, ChatStore

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def configure_logging(level):
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def cors_origins(value):
    """'*' allows every origin, otherwise a comma separated list."""
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def create_app(config=None):
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///chat.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['HISTORY_LIMIT'] = int(os.getenv('HISTORY_LIMIT', DEFAULT_HISTORY_LIMIT))
    app.config['CORS_ORIGINS'] = os.getenv('CORS_ORIGINS', '*')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.secret_key = os.getenv('SECRET_KEY', 'dev-secret-change-me')
    if config:
        app.config.from_mapping(config)

    configure_logging(app.config['LOG_LEVEL'])
    db.init_app(app)

    # The store is the only thing that talks to the database
    store = ChatStore(db)
    app.extensions['chat_store'] = store

    socketio = SocketIO(app, cors_allowed_origins=cors_origins(app.config['CORS_ORIGINS']))
    socketio.on_namespace(ChatNamespace('/', store, history_limit=app.config['HISTORY_LIMIT']))

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'uptime': time.monotonic() - STARTED_AT})

    return app


if __name__ == '__main__':
    app = create_app()
    socketio = app.extensions['socketio']
    port = int(os.getenv('PORT', 5000))
    logger.info('Server running on http://localhost:%s', port)
    socketio.run(app, host='0.0.0.0', port=port,
                 debug=os.getenv('FLASK_DEBUG') == '1', allow_unsafe_werkzeug=True)
