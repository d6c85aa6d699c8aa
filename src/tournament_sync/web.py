#!/usr/bin/env python3
"""Web API for tournament sync.

This module serves a DocumentTree over HTTP so several devices can sync
against one authoritative store. HttpRemoteStore is its client.
Uses only core/ modules.

Endpoints:
    GET    /api/health               Health check
    GET    /api/docs/<collection>    List documents (optional ?order_by=field)
    POST   /api/docs/<collection>    Create a document
    GET    /api/docs/<document>      Get a document
    PATCH  /api/docs/<document>      Merge fields into a document
    PUT    /api/docs/<document>      Create or replace a document
    DELETE /api/docs/<document>      Delete a document (idempotent)

Paths alternate collection/document segments, so a path with an odd number
of segments is a collection and an even number a document:
    organizations/{orgId}/tournaments/{tournamentId}/matches

All endpoints return JSON responses. Timestamps are ISO-8601 strings.

POST body:
    - id: Client-supplied document id (optional; reusing it overwrites)
    - data: Document fields (object, required)

PATCH/PUT body:
    - data: Document fields (object, required)
"""

from __future__ import annotations

import argparse
import functools
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from tournament_sync.core.remote import DocumentTree, RemoteDocument, to_jsonable
from tournament_sync.core.sync_utils import RecordNotFoundError
from tournament_sync.core.validation import ValidationError, split_path

logger = logging.getLogger(__name__)


def api_endpoint(func: Callable) -> Callable:
    """Decorator for consistent API error handling.

    Catches ValidationError (400), RecordNotFoundError (404) and
    Exception (500) with proper JSON error responses and logging.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except RecordNotFoundError as e:
            return jsonify({"error": e.message}), 404
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            return jsonify({"error": str(e)}), 500
    return wrapper


def _document_json(doc: RemoteDocument) -> Dict[str, Any]:
    return {"id": doc.id, "path": doc.path, "data": to_jsonable(doc.data)}


def _request_data() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("body", "a JSON object is required")
    data = body.get("data")
    if not isinstance(data, dict):
        raise ValidationError("data", "must be an object")
    return data


def _is_collection(doc_path: str) -> bool:
    return len(split_path(doc_path)) % 2 == 1


def create_app(tree: Optional[DocumentTree] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        tree: Document tree to serve (default: a new, empty one)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes

    store = tree if tree is not None else DocumentTree()
    app.config["DOCUMENT_TREE"] = store

    logger.info("Web API initialized with in-memory document tree")

    # Error handlers
    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        """Handle 405 errors."""
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error: Any) -> tuple[Response, int]:
        """Handle 500 errors."""
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(ValidationError)
    def validation_error(error: ValidationError) -> tuple[Response, int]:
        """Handle validation errors."""
        logger.warning(f"Validation error: {error.field} - {error.message}")
        return jsonify({"error": f"Invalid {error.field}: {error.message}"}), 400

    # Routes
    @app.route("/api/docs/<path:doc_path>", methods=["GET"])
    @api_endpoint
    def get_path(doc_path: str) -> tuple[Response, int]:
        """Get a document, or list a collection."""
        if _is_collection(doc_path):
            order_by = request.args.get("order_by") or None
            docs = store.list(doc_path, order_by=order_by)
            return jsonify({"documents": [_document_json(d) for d in docs]}), 200

        data = store.get(doc_path)
        if data is None:
            return jsonify({"error": f"Document {doc_path} not found"}), 404
        doc_id = doc_path.strip("/").rsplit("/", 1)[1]
        return jsonify(_document_json(RemoteDocument(doc_id, doc_path.strip("/"), data))), 200

    @app.route("/api/docs/<path:doc_path>", methods=["POST"])
    @api_endpoint
    def create_document(doc_path: str) -> tuple[Response, int]:
        """Create a document in a collection."""
        if not _is_collection(doc_path):
            raise ValidationError("path", "POST needs a collection path")
        body = request.get_json(silent=True) or {}
        doc_id = store.create(doc_path, _request_data(), doc_id=body.get("id"))
        logger.info(f"Created {doc_path.strip('/')}/{doc_id} via API")
        return jsonify({"id": doc_id}), 201

    @app.route("/api/docs/<path:doc_path>", methods=["PATCH"])
    @api_endpoint
    def update_document(doc_path: str) -> tuple[Response, int]:
        """Merge fields into an existing document."""
        store.update(doc_path, _request_data())
        return jsonify({"updated": True}), 200

    @app.route("/api/docs/<path:doc_path>", methods=["PUT"])
    @api_endpoint
    def replace_document(doc_path: str) -> tuple[Response, int]:
        """Create or replace a document."""
        store.set(doc_path, _request_data())
        return jsonify({"updated": True}), 200

    @app.route("/api/docs/<path:doc_path>", methods=["DELETE"])
    @api_endpoint
    def delete_document(doc_path: str) -> tuple[Response, int]:
        """Delete a document (deleting a missing one is not an error)."""
        deleted = store.delete(doc_path)
        if deleted:
            logger.info(f"Deleted {doc_path.strip('/')} via API")
        return jsonify({"deleted": deleted}), 200

    @app.route("/api/health", methods=["GET"])
    def health_check() -> tuple[Response, int]:
        """Health check endpoint.

        Returns:
            JSON response indicating service health
        """
        return jsonify({"status": "ok", "documents": store.count()}), 200

    return app


def add_web_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add web subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add web parser to
    """
    web_parser = subparsers.add_parser(
        "web",
        help="Start the document server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    web_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )

    web_parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port to bind to (default: 5000)"
    )

    web_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run web server with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default (unused;
            the server keeps documents in memory)
        args: Parsed command-line arguments (should have host, port, debug attributes)

    Returns:
        Exit code (0 for success)
    """
    logger.info("Starting tournament sync document server")

    app = create_app()

    app.run(
        host=args.host,
        port=args.port,
        debug=args.debug
    )

    return 0
