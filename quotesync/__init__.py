import os
import logging

from flask import Flask, current_app, jsonify
from dotenv import load_dotenv

from .catalog import ProductCatalog
from .config import DevConfig, ProdConfig, TestConfig
from .connectivity import ConnectivityMonitor
from .errors import (
    NetworkError,
    QuoteSyncError,
    RemoteError,
    StorageError,
    SyncError,
    ValidationError,
)
from .offline_store import DurableQueueStore
from .page_cache import PaginatedQueryCache
from .remote import RemoteGateway
from .sync_engine import SyncEngine

CONFIGS = {
    'development': DevConfig,
    'testing': TestConfig,
    'production': ProdConfig,
}


class QuoteSync:
    """The wired sync layer held in ``app.extensions['quotesync']``."""

    def __init__(self, config, db_path, sensor=None):
        self.monitor = ConnectivityMonitor(sensor)
        self.store = DurableQueueStore(db_path)
        self.gateway = RemoteGateway(
            config['QUOTES_API_URL'],
            connect_timeout=config['REMOTE_CONNECT_TIMEOUT'],
            read_timeout=config['REMOTE_READ_TIMEOUT'],
            max_retries=config['REMOTE_MAX_RETRIES'],
        )
        self.engine = SyncEngine(
            self.monitor,
            self.store,
            self.gateway,
            failure_policy=config['SYNC_FAILURE_POLICY'],
            max_attempts=config['SYNC_MAX_ATTEMPTS'],
            background=config['SYNC_BACKGROUND'],
            sync_on_startup=config['SYNC_ON_STARTUP'],
        )
        self.cache = PaginatedQueryCache(
            self.monitor, self.store, self.gateway, per_page=config['QUOTES_PER_PAGE']
        )
        self.catalog = ProductCatalog(self.monitor, self.store, self.gateway)
        # queued writes and finished drains change what page 1 should show
        self.engine.add_listener(lambda event, data: self.cache.invalidate())

    def close(self):
        self.engine.close()
        self.cache.close()
        self.monitor.stop()
        self.gateway.close()


def get_sync() -> QuoteSync:
    return current_app.extensions['quotesync']


def _error_response(e: QuoteSyncError, status: int):
    body = {'error': e.message, 'type': type(e).__name__}
    if isinstance(e, ValidationError) and e.errors:
        body['errors'] = e.errors
    if isinstance(e, RemoteError):
        body['status_code'] = e.status_code
    if isinstance(e, SyncError) and isinstance(e.cause, RemoteError):
        body['status_code'] = e.cause.status_code
    return jsonify(body), status


def create_app(config_name: str | None = None, instance_path: str | None = None,
               sensor=None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_path=instance_path, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    app.config.from_object(CONFIGS.get(env, ProdConfig))

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db_path = os.path.join(app.instance_path, app.config['OFFLINE_DB_FILENAME'])
    app.extensions['quotesync'] = QuoteSync(app.config, db_path, sensor=sensor)

    @app.errorhandler(ValidationError)
    def bad_request(e):
        return _error_response(e, 400)

    @app.errorhandler(RemoteError)
    @app.errorhandler(SyncError)
    def bad_gateway(e):
        return _error_response(e, 502)

    @app.errorhandler(NetworkError)
    def unavailable(e):
        return _error_response(e, 503)

    @app.errorhandler(StorageError)
    def storage_failed(e):
        return _error_response(e, 500)

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='not found'), 404

    from quotesync.routes import bp as quotes_bp
    from quotesync.cli import sync_cli

    app.register_blueprint(quotes_bp)
    app.cli.add_command(sync_cli)

    return app
