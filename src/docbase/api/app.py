from flask import Flask, jsonify

from docbase.config import config, configure_logging
from docbase.errors import (
    DocbaseError,
    DuplicateKey,
    InvalidArgument,
    NotFound,
    SchemaMismatch,
    StoreUnavailable,
    Timeout,
    VersionConflict,
)
from docbase.projection import to_json_compatible
from docbase.store import DocumentStore, create_store

STATUS_CODES = (
    (InvalidArgument, 400),
    (SchemaMismatch, 400),
    (NotFound, 404),
    (VersionConflict, 409),
    (DuplicateKey, 409),
    (StoreUnavailable, 503),
    (Timeout, 504),
)


def status_for(error: DocbaseError) -> int:
    for error_class, status in STATUS_CODES:
        if isinstance(error, error_class):
            return status
    return 500


def create_app(store: DocumentStore = None) -> Flask:
    """Application factory."""
    configure_logging()
    app = Flask(__name__)

    app.store = store or create_store(config)

    # Register blueprints
    from docbase.api.collections import bp as collections_bp

    app.register_blueprint(collections_bp, url_prefix="/api/collections")

    @app.errorhandler(DocbaseError)
    def handle_docbase_error(error: DocbaseError):
        return jsonify(to_json_compatible(error.details())), status_for(error)

    @app.route("/api/health")
    def health():
        return {"status": "ok"}

    return app
