from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from satlotto.clients.base import ChainOracle
from satlotto.engine import RoundStore
from satlotto.errors import ExternalServiceError, ValidationError
from satlotto.metrics import METRICS, Metrics

from .config import load_settings
from .routes.health import bp as health_bp
from .routes.status import bp as status_bp

EXTENSION_KEY = "satlotto"


def create_app(
    store: RoundStore,
    chain: ChainOracle,
    metrics: Optional[Metrics] = None,
    secret_key: Optional[str] = None,
) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = secret_key or "satlotto-dev-secret"
    app.extensions[EXTENSION_KEY] = {
        "store": store,
        "chain": chain,
        "metrics": metrics or METRICS,
    }

    app.register_blueprint(health_bp)
    app.register_blueprint(status_bp, url_prefix="/api")

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(ExternalServiceError)
    def handle_unavailable(exc: ExternalServiceError):
        app.logger.exception("Upstream failure: %s", exc)
        return jsonify({"error": "upstream unavailable"}), 503

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": str(exc)}), 500

    return app


def main() -> None:
    from satlotto.clients.bitcoind import BitcoindChainOracle, BitcoindClientConfig
    from satlotto.storage import Database, SqlRoundStore

    settings = load_settings()
    database = Database(settings.database_url)
    database.create_all()
    btc = settings.bitcoind
    chain = BitcoindChainOracle(
        BitcoindClientConfig(
            url=btc.url,
            username=btc.username,
            password=btc.password,
            timeout_seconds=btc.timeout_seconds,
        )
    )
    app = create_app(SqlRoundStore(database), chain, secret_key=settings.flask.secret_key)
    app.run(host=settings.host, port=settings.port, debug=settings.flask.debug)


if __name__ == "__main__":
    main()
