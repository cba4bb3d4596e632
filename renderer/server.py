"""
HTTP Microservice
=================
Flask-based HTTP API for the question renderer.

Lets a web front end or another service request renditions over HTTP
instead of shelling out to the CLI.

Endpoints:
    POST   /api/render        → Document → {html, transcript, ...}
    POST   /api/transcript    → Document → {transcript}
    POST   /api/media/clear   → Drop cached signed URLs (session end)
    GET    /api/health        → Health check
    GET    /api/info          → Renderer version info

The service runs single-threaded: the media cache belongs to one engine and
each request drives it to completion with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from . import __version__
from .engine import RenderEngine, RendererConfig
from .models import BlockType, QuestionDocument

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

_engine: Optional[RenderEngine] = None


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    global _engine

    if config:
        app.config.update(config)

    engine = app.config.get("RENDER_ENGINE")
    if engine is None:
        engine = RenderEngine(RendererConfig.from_env())
    _engine = engine

    return app


def get_engine() -> RenderEngine:
    global _engine
    if _engine is None:
        _engine = RenderEngine(RendererConfig.from_env())
    return _engine


def _read_document():
    """Parse the request body into a QuestionDocument, or an error response."""
    data = request.get_json(silent=True)
    if data is None:
        return None, (jsonify({"error": "Request body must be JSON"}), 400)

    try:
        return QuestionDocument.from_json_data(data), None
    except (ValueError, ValidationError) as e:
        logger.warning(f"Rejected document: {e}")
        return None, (jsonify({"error": "Invalid question document", "detail": str(e)}), 400)


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "question-renderer",
        "version": __version__,
        "cached_media_urls": len(get_engine().resolver),
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Renderer version and capability info."""
    engine = get_engine()
    return jsonify({
        "version": __version__,
        "block_types": [t.value for t in BlockType],
        "capabilities": [
            "visual_html",
            "speech_transcript",
            "signed_media_urls",
        ],
        "storage_configured": engine.resolver.signer is not None,
    })


# ─── Render Endpoints ────────────────────────────────────────────────────────


@app.route("/api/render", methods=["POST"])
def render():
    """Render a question document to HTML and a transcript."""
    document, error = _read_document()
    if error:
        return error

    result = asyncio.run(get_engine().render_question(document))
    return jsonify(result.model_dump())


@app.route("/api/transcript", methods=["POST"])
def transcript():
    """Read-aloud transcript only; no media is resolved."""
    document, error = _read_document()
    if error:
        return error

    return jsonify({
        "id": document.id,
        "transcript": get_engine().transcript(document),
    })


@app.route("/api/media/clear", methods=["POST"])
def clear_media():
    """Forget every cached signed URL."""
    resolver = get_engine().resolver
    cleared = len(resolver)
    resolver.clear()
    return jsonify({"cleared": cleared})


# ─── Server Runner ───────────────────────────────────────────────────────────


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Start the Flask development server."""
    create_app()
    logger.info(f"Starting question renderer service on {host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=False)
