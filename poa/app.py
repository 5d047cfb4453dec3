"""
Flask API for Proof-of-Attention

Tracks attention sessions and issues a proof once a session ends with a
human-looking heartbeat pattern.

Endpoints:
- POST /api/attention/start      start a session
- POST /api/attention/heartbeat  record a liveness signal
- POST /api/attention/end        finish a session and issue a proof
- GET  /api/attention/session/<id>  inspect a session
- GET  /api/poa/<tokenId>        look up a minted proof
- GET  /api/poa/user/<address>   proofs minted to an address
"""
import argparse
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from pydantic import BaseModel, Field, ValidationError, field_validator

from poa.config import AttentionConfig, load_config
from poa.errors import IssuanceError, RequestValidationError, SessionError
from poa.issuance import ProofIssuer, build_issuer
from poa.lifecycle import AttentionLifecycle
from poa.models.store import SessionStore, SessionSweeper

logger = logging.getLogger(__name__)

ETH_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
# Largest integer a JS client can send exactly (Number.MAX_SAFE_INTEGER)
MAX_TIMESTAMP_MS = 2**53 - 1


class StartSessionRequest(BaseModel):
    userAddress: str = Field(pattern=ETH_ADDRESS_PATTERN)
    taskId: str

    @field_validator("taskId")
    @classmethod
    def _task_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("taskId must be a non-empty string")
        return value


class HeartbeatRequest(BaseModel):
    sessionId: str = Field(min_length=1)
    userAddress: str = Field(min_length=1)
    timestamp: Optional[int] = Field(default=None, ge=0, le=MAX_TIMESTAMP_MS)


class EndSessionRequest(BaseModel):
    sessionId: str = Field(min_length=1)
    userAddress: str = Field(min_length=1)


@dataclass
class PoaRuntime:
    """Process-level objects shared by request handlers."""

    config: AttentionConfig
    store: SessionStore
    lifecycle: AttentionLifecycle
    issuer: ProofIssuer
    sweeper: SessionSweeper


def runtime() -> PoaRuntime:
    return current_app.extensions["poa"]


def parse_body(model):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise RequestValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        fields = ", ".join(err["field"] for err in errors)
        raise RequestValidationError(f"Invalid request: {fields}", errors) from e


def create_app(
    config: Optional[AttentionConfig] = None,
    store: Optional[SessionStore] = None,
    issuer: Optional[ProofIssuer] = None,
    clock: Optional[Callable[[], int]] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Configuration. Loaded from the environment if None.
        store: Session store. A fresh one is created if None.
        issuer: Proof issuer. Built from config if None.
        clock: Millisecond clock shared by the store and issuer.
    """
    if config is None:
        config = load_config()
    if store is None:
        store = SessionStore(clock=clock)
    if issuer is None:
        issuer = build_issuer(config, clock=clock)

    app = Flask(__name__)
    CORS(app, origins=list(config.cors_origins))

    app.extensions["poa"] = PoaRuntime(
        config=config,
        store=store,
        lifecycle=AttentionLifecycle.from_config(store, config),
        issuer=issuer,
        sweeper=SessionSweeper(store, config.session_retention_ms, config.sweep_interval_ms),
    )

    register_routes(app)
    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask):
    @app.errorhandler(SessionError)
    def handle_session_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(RequestValidationError)
    def handle_validation_error(error):
        return jsonify({
            "success": False,
            "error": str(error),
            "code": error.code,
            "details": error.errors,
        }), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(500)
    def handle_internal_error(error):
        original = getattr(error, "original_exception", None) or error
        logger.error("Unhandled error: %s", original, exc_info=original)
        return jsonify({"success": False, "error": "Internal server error"}), 500


def register_routes(app: Flask):
    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "message": "POA Backend API is running"})

    @app.route("/api/attention/start", methods=["POST"])
    def start_session():
        """
        Start a new attention tracking session.

        Body: {"userAddress": "0x...", "taskId": "..."}
        """
        body = parse_body(StartSessionRequest)
        result = runtime().lifecycle.start(body.userAddress, body.taskId)
        return jsonify({"success": True, **result.to_dict()})

    @app.route("/api/attention/heartbeat", methods=["POST"])
    def heartbeat():
        """
        Record a heartbeat. Clients send one roughly every 30 seconds while
        the user is active.

        Body: {"sessionId": "...", "userAddress": "0x...", "timestamp": 1731652010000}
        ``timestamp`` is optional; server time is used when absent.
        """
        body = parse_body(HeartbeatRequest)
        result = runtime().lifecycle.heartbeat(body.sessionId, body.userAddress, body.timestamp)
        return jsonify({"success": True, "received": True, **result.to_dict()})

    @app.route("/api/attention/end", methods=["POST"])
    def end_session():
        """
        Finish a session and, if accepted, issue the proof.

        A failed issuance is reported in the response; the session stays
        accepted either way.
        """
        body = parse_body(EndSessionRequest)
        rt = runtime()
        result = rt.lifecycle.finish(body.sessionId, body.userAddress)

        response = {"success": True, **result.to_dict()}
        try:
            receipt = rt.issuer.issue(result.proof)
        except IssuanceError as e:
            logger.warning("Proof issuance failed for session %s: %s", result.session_id, e)
            response.update(
                tokenId=None,
                ipfsHash=None,
                transactionHash=None,
                issuance={"status": "failed", "error": str(e)},
            )
        else:
            response.update(receipt.to_dict())
            response["issuance"] = {"status": "issued"}
        return jsonify(response)

    @app.route("/api/attention/session/<session_id>", methods=["GET"])
    def get_session(session_id):
        """Read-only session summary with a live bot-score preview."""
        snapshot, verdict = runtime().lifecycle.preview(session_id)
        return jsonify({
            "success": True,
            "sessionId": snapshot.session_id,
            "userAddress": snapshot.identity,
            "taskId": snapshot.task_id,
            "state": snapshot.state.value,
            "startedAt": snapshot.started_at,
            "endedAt": snapshot.ended_at,
            "heartbeatCount": snapshot.heartbeat_count,
            "preview": verdict.to_dict(),
        })

    @app.route("/api/poa/<token_id>", methods=["GET"])
    def get_poa(token_id):
        """Get a minted proof by token id."""
        issuer = runtime().issuer
        record = issuer.issuer.get(token_id)
        if record is None:
            return jsonify({"success": False, "error": "POA not found"}), 404
        data = record.to_dict()
        try:
            data["proof"] = issuer.artifacts.fetch(record.ipfs_hash)
        except IssuanceError as e:
            logger.warning("Could not load proof artifact %s: %s", record.ipfs_hash, e)
            data["proof"] = None
        return jsonify({"success": True, "poa": data})

    @app.route("/api/poa/user/<user_address>", methods=["GET"])
    def get_user_poas(user_address):
        """Get every proof minted to an address."""
        tokens = runtime().issuer.issuer.tokens_of(user_address)
        return jsonify({
            "success": True,
            "userAddress": user_address.lower(),
            "count": len(tokens),
            "poas": [t.to_dict() for t in tokens],
        })


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main(argv=None):
    """Run the API server."""
    config = load_config()

    parser = argparse.ArgumentParser(description="Proof-of-Attention API server")
    parser.add_argument("--host", default=config.host, help="Bind address")
    parser.add_argument("--port", type=int, default=config.port, help="Port")
    args = parser.parse_args(argv)

    configure_logging(config.log_level)
    app = create_app(config)
    sweeper = app.extensions["poa"].sweeper
    sweeper.start()

    logger.info("POA Backend server running on %s:%d", args.host, args.port)
    try:
        app.run(host=args.host, port=args.port, debug=False)
    finally:
        sweeper.stop()


if __name__ == "__main__":
    main()
