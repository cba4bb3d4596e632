"""
Media Resolver
==============
Resolves image/audio references to fetchable URLs.

A reference is either a direct URL (returned unchanged) or a
``bucket``/``path`` pair in private object storage, exchanged for a signed,
time-limited URL by a ``StorageSigner``. Signed URLs are cached in memory:

    Key:   "{bucket}:{path}"
    Value: CacheEntry(url, expires_at)

An entry is reused only while it stays valid for at least
``buffer_seconds`` more, so a URL never expires while an image or audio
clip is still loading from it.

Resolution failures never raise; they are logged and reported as ``None``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol
from urllib.parse import quote, unquote

import requests

from .models import MediaRef

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
EXPIRY_BUFFER_SECONDS = 300

STORAGE_URL_PATTERN = re.compile(r"/storage/v1/object/(?:public|sign)/([^/]+)/([^?]+)")


class RendererError(Exception):
    """Base error for the renderer package."""


class SigningError(RendererError):
    """The storage backend refused or failed to sign a URL."""


# ─── Signer Interface ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SignedUrl:
    url: str
    valid_for: int


class StorageSigner(Protocol):
    """Object-storage collaborator that issues signed URLs."""

    async def sign(self, bucket: str, path: str, ttl_seconds: int) -> SignedUrl: ...


class HttpStorageSigner:
    """
    Signs URLs against an object-storage REST endpoint.

    POST {base_url}/storage/v1/object/sign/{bucket}/{path}
         {"expiresIn": ttl_seconds}
      →  {"signedURL": "/object/sign/...?token=..."}

    The blocking HTTP call runs in a worker thread so the event loop keeps
    serving other resolutions.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    async def sign(self, bucket: str, path: str, ttl_seconds: int) -> SignedUrl:
        return await asyncio.to_thread(self._sign_blocking, bucket, path, ttl_seconds)

    def _sign_blocking(self, bucket: str, path: str, ttl_seconds: int) -> SignedUrl:
        endpoint = f"{self.base_url}/storage/v1/object/sign/{bucket}/{quote(path)}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
        }

        try:
            response = self.session.post(
                endpoint,
                json={"expiresIn": ttl_seconds},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise SigningError(f"Signing request failed for {bucket}:{path}: {e}") from e
        except ValueError as e:
            raise SigningError(f"Invalid signing response for {bucket}:{path}") from e

        signed = data.get("signedURL") or data.get("signedUrl")
        if not signed:
            raise SigningError(f"No signed URL returned for {bucket}:{path}")

        if signed.startswith("/"):
            signed = f"{self.base_url}/storage/v1{signed}"
        return SignedUrl(url=signed, valid_for=ttl_seconds)


# ─── Cache ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CacheEntry:
    url: str
    expires_at: float

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        return self.expires_at > now + buffer_seconds


class MediaResolver:
    """
    Resolves media references with an in-memory signed-URL cache.

    All methods are coroutines run on a single event loop; the cache is only
    touched from that loop and needs no lock.
    """

    def __init__(
        self,
        signer: Optional[StorageSigner] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        buffer_seconds: int = EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.signer = signer
        self.ttl_seconds = ttl_seconds
        self.buffer_seconds = buffer_seconds
        self.clock = clock
        self._cache: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def cached_url(self, bucket: str, path: str) -> Optional[str]:
        """Cached URL for ``bucket:path`` if still fresh, else ``None``."""
        entry = self._cache.get(f"{bucket}:{path}")
        if entry and entry.is_fresh(self.clock(), self.buffer_seconds):
            return entry.url
        return None

    async def resolve(self, ref: MediaRef) -> Optional[str]:
        """Direct URLs pass through; storage references are signed."""
        if ref.url:
            return ref.url
        if ref.bucket and ref.path:
            return await self.signed_url(ref.bucket, ref.path)
        return None

    async def signed_url(
        self,
        bucket: str,
        path: str,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """Signed URL for a private asset, served from cache while fresh."""
        ttl = ttl_seconds or self.ttl_seconds
        key = f"{bucket}:{path}"
        now = self.clock()

        cached = self._cache.get(key)
        if cached and cached.is_fresh(now, self.buffer_seconds):
            return cached.url

        if self.signer is None:
            logger.warning(f"No storage signer configured, cannot resolve {key}")
            return None

        try:
            signed = await self.signer.sign(bucket, path, ttl)
        except Exception as e:
            logger.error(f"Error creating signed URL for {key}: {e}")
            return None

        if not signed or not signed.url:
            logger.error(f"Signer returned no URL for {key}")
            return None

        self._cache[key] = CacheEntry(
            url=signed.url,
            expires_at=now + (signed.valid_for or ttl),
        )
        logger.debug(f"Signed {key} (valid {signed.valid_for or ttl}s)")
        return signed.url

    async def resolve_many(
        self,
        refs: Iterable[MediaRef],
        ttl_seconds: Optional[int] = None,
    ) -> dict[str, Optional[str]]:
        """
        Resolve many storage references at once.

        Fresh cache hits are answered immediately; the rest are signed
        concurrently. A failed item maps to ``None`` without affecting its
        siblings. Keys are ``"bucket:path"``.
        """
        results: dict[str, Optional[str]] = {}
        pending: dict[str, MediaRef] = {}

        for ref in refs:
            if not ref.is_stored:
                continue
            key = ref.cache_key
            if key in results or key in pending:
                continue
            url = self.cached_url(ref.bucket, ref.path)
            if url:
                results[key] = url
            else:
                pending[key] = ref

        if pending:
            logger.debug(f"Signing {len(pending)} media URLs ({len(results)} cached)")
            urls = await asyncio.gather(*(
                self.signed_url(ref.bucket, ref.path, ttl_seconds)
                for ref in pending.values()
            ))
            results.update(zip(pending.keys(), urls))

        return results

    async def prewarm(self, refs: Iterable[MediaRef]) -> None:
        """Populate the cache ahead of rendering so images paint sooner."""
        results = await self.resolve_many(refs)
        failed = sum(1 for url in results.values() if url is None)
        if failed:
            logger.warning(f"Prewarm: {failed}/{len(results)} media URLs unavailable")

    def clear(self) -> None:
        """Drop all cached URLs (session end)."""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"Cleared {count} cached media URLs")


# ─── Request Sequencing ───────────────────────────────────────────────────────


class RequestSequencer:
    """
    Tags asynchronous resolutions so only the newest result is applied.

    Each ``issue(key)`` returns a fresh, monotonically increasing number and
    records it as the latest for ``key``. A response is applied only if
    ``is_latest(key, seq)`` still holds when it arrives.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._latest: dict[str, int] = {}

    def issue(self, key: str) -> int:
        seq = next(self._counter)
        self._latest[key] = seq
        return seq

    def is_latest(self, key: str, seq: int) -> bool:
        return self._latest.get(key) == seq

    def invalidate(self, key: str) -> None:
        """Make every outstanding request for ``key`` stale."""
        self._latest.pop(key, None)


# ─── Storage URL Helpers ──────────────────────────────────────────────────────


def is_storage_url(url: str) -> bool:
    """Whether ``url`` points into the object-storage API."""
    return "/storage/v1/object/" in url


def parse_storage_url(url: str) -> Optional[MediaRef]:
    """
    Extract bucket and path from a public or signed storage URL.
    Used to migrate legacy direct URLs to bucket/path references.
    """
    match = STORAGE_URL_PATTERN.search(url)
    if not match:
        return None
    return MediaRef(bucket=match.group(1), path=unquote(match.group(2)))
