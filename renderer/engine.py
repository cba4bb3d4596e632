"""
Render Engine
=============
Orchestrator that turns a question document into both renditions: the
visual HTML/SVG markup and the speakable transcript.

Usage:
    engine = RenderEngine(RendererConfig.from_env())
    result = engine.render_file("path/to/question.json")
    # result is a list of RenderResult, one per question in the file

Architecture:
    JSON → QuestionDocument → (prewarm media cache) →
        VisualRenderer → HTML
        linearize      → transcript
    → RenderResult (JSON)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import __version__
from .media import DEFAULT_TTL_SECONDS, HttpStorageSigner, MediaResolver
from .models import MediaRef, QuestionDocument, RenderResult
from .speech import linearize
from .visual import VisualRenderer

logger = logging.getLogger(__name__)


@dataclass
class RendererConfig:
    """Configuration for the render engine."""

    # Object storage
    storage_url: Optional[str] = None
    storage_key: Optional[str] = None
    media_bucket: str = "question-media"
    signed_url_ttl: int = DEFAULT_TTL_SECONDS

    # Output settings
    output_dir: str = "output"

    # Playback
    poll_interval: float = 0.1

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Output files
    save_html: bool = True
    save_transcript: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "RendererConfig":
        """Build a config from environment variables, then apply overrides."""
        config = cls(
            storage_url=os.environ.get("STORAGE_URL") or None,
            storage_key=os.environ.get("STORAGE_KEY") or None,
            media_bucket=os.environ.get("MEDIA_BUCKET", "question-media"),
            signed_url_ttl=int(os.environ.get("SIGNED_URL_TTL", DEFAULT_TTL_SECONDS)),
            log_level=os.environ.get("RENDERER_LOG_LEVEL", "INFO"),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


class RenderEngine:
    """
    Main rendering engine.

    Owns one ``MediaResolver`` so signed URLs are shared across every
    question rendered in the session. Not thread-safe: run it on one
    event loop at a time.
    """

    def __init__(
        self,
        config: Optional[RendererConfig] = None,
        resolver: Optional[MediaResolver] = None,
    ):
        self.config = config or RendererConfig()
        self._setup_logging()
        self.resolver = resolver or MediaResolver(
            signer=self._build_signer(),
            ttl_seconds=self.config.signed_url_ttl,
        )
        self.visual = VisualRenderer(self.resolver)

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        renderer_logger = logging.getLogger("renderer")
        renderer_logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Console handler
        if not renderer_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            renderer_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            renderer_logger.addHandler(file_handler)

    def _build_signer(self) -> Optional[HttpStorageSigner]:
        if self.config.storage_url and self.config.storage_key:
            return HttpStorageSigner(self.config.storage_url, self.config.storage_key)
        logger.info("No storage credentials configured; stored media will be unavailable")
        return None

    # ─── Rendering ────────────────────────────────────────────────────────

    async def render_question(self, document: QuestionDocument) -> RenderResult:
        """Render one question to HTML and transcript."""
        self.visual.images.reset()

        html = await self.visual.render_document(document.content, document.options)
        transcript = linearize(document.content, document.options)

        audio_url = None
        if document.audio_path:
            audio_url = await self.resolver.resolve(MediaRef(
                bucket=document.audio_bucket or self.config.media_bucket,
                path=document.audio_path,
            ))

        result = RenderResult(
            document_id=document.id,
            html=html,
            transcript=transcript,
            block_count=document.block_count,
            option_count=len(document.options or []),
            unavailable_images=self.visual.images.unavailable,
            audio_url=audio_url,
            rendered_at=datetime.now(timezone.utc).isoformat(),
            renderer_version=__version__,
        )
        logger.info(
            f"Rendered question {document.id or '(unnamed)'}: "
            f"{result.block_count} blocks, {len(result.unavailable_images)} images unavailable"
        )
        return result

    async def render_many(self, documents: list[QuestionDocument]) -> list[RenderResult]:
        """Render questions in order, prewarming every image URL up front."""
        await self.resolver.prewarm(
            ref for doc in documents for ref in doc.image_refs
        )
        results = []
        for document in documents:
            results.append(await self.render_question(document))
        return results

    def transcript(self, document: QuestionDocument) -> str:
        return linearize(document.content, document.options)

    # ─── Files ────────────────────────────────────────────────────────────

    def load_file(self, path: str) -> list[QuestionDocument]:
        """
        Load question documents from a JSON file.

        The file may hold one question object, a bare list of blocks, or a
        ``{"questions": [...]}`` wrapper.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the JSON is malformed or has the wrong shape.
        """
        path = os.path.abspath(path)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Document not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

        if isinstance(data, dict) and isinstance(data.get("questions"), list):
            documents = [QuestionDocument.from_json_data(q) for q in data["questions"]]
        else:
            documents = [QuestionDocument.from_json_data(data)]

        stem = Path(path).stem
        for i, doc in enumerate(documents):
            if not doc.id:
                documents[i] = doc.model_copy(
                    update={"id": stem if len(documents) == 1 else f"{stem}_{i + 1}"}
                )
        return documents

    def render_file(self, path: str, save: bool = True) -> list[RenderResult]:
        """Load, render and (optionally) save every question in a file."""
        documents = self.load_file(path)
        logger.info(f"Rendering {len(documents)} question(s) from: {path}")
        results = asyncio.run(self.render_many(documents))

        if save:
            output_dir = Path(self.config.output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            for result in results:
                self.save_result(result, output_dir)
            logger.info(f"Output saved to: {output_dir}")

        return results

    def save_result(self, result: RenderResult, output_dir: Path):
        doc_id = _safe_name(result.document_id or "question")
        self._save_json(result, output_dir / f"{doc_id}_rendered.json")
        if self.config.save_html:
            self._save_text(result.html, output_dir / f"{doc_id}_rendered.html")
        if self.config.save_transcript:
            self._save_text(result.transcript, output_dir / f"{doc_id}_transcript.txt")

    def _save_json(self, result: RenderResult, filepath: Path):
        """Save RenderResult to JSON file."""
        try:
            data = result.model_dump()
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON output: {filepath}")
        except Exception as e:
            logger.error(f"Failed to save JSON: {e}")

    def _save_text(self, text: str, filepath: Path):
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(text)
            logger.info(f"Saved: {filepath}")
        except Exception as e:
            logger.error(f"Failed to save {filepath.name}: {e}")


def _safe_name(name: str) -> str:
    clean = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
    return clean[:50]
