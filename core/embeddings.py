"""
Text embedding client (OpenAI-compatible ``/embeddings`` endpoint).
"""

from __future__ import annotations

import random
import threading
import time
from typing import List, Optional

import httpx

import core.config as config
from core.errors import EmbeddingProviderError
from core.validators import validate_embedding_vector, validate_required_text

logger = config.logger

http_client = None  # Reusable HTTP client for embedding calls


def _embeddings_url() -> str:
    return f"{config.OPENAI_BASE_URL}/embeddings"


def init_http_client():
    """Initialize HTTP client for embedding API calls."""
    global http_client
    headers = {"Content-Type": "application/json"}
    if config.OPENAI_API_KEY:
        headers["Authorization"] = f"Bearer {config.OPENAI_API_KEY}"
    http_client = httpx.Client(
        timeout=httpx.Timeout(config.EMBEDDING_TIMEOUT_SECONDS),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
        headers=headers,
    )
    logger.info("HTTP client initialized")


def cleanup_http_client():
    """Clean up HTTP client on shutdown."""
    global http_client
    if http_client:
        http_client.close()
        http_client = None
        logger.info("HTTP client closed")


class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
            }


embedding_circuit_breaker = EmbeddingCircuitBreaker(
    failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
    cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
)


def _raise_embedding_unavailable(detail: str) -> None:
    logger.warning("embedding_provider_unavailable", extra={"detail": detail})
    raise EmbeddingProviderError("embedding provider unavailable")


def _sleep_backoff(attempt: int) -> None:
    base = config.EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    jitter = random.uniform(0, config.EMBEDDING_RETRY_JITTER_SECONDS)
    time.sleep(base + jitter)


def embed_text_sync(text: str) -> List[float]:
    """Embed ``text`` with the configured provider using the pooled client."""
    validate_required_text(text, "text", max(config.MAX_CONTENT_LENGTH, config.MAX_QUERY_LENGTH))
    if config.EMBEDDING_PROVIDER == "none":
        _raise_embedding_unavailable("embedding provider disabled")
    if embedding_circuit_breaker.is_open():
        _raise_embedding_unavailable("circuit breaker open")
    global http_client
    if http_client is None:
        init_http_client()

    for attempt in range(config.EMBEDDING_RETRY_MAX + 1):
        try:
            response = http_client.post(
                _embeddings_url(),
                json={
                    "model": config.EMBEDDING_MODEL,
                    "input": text,
                },
            )
        except httpx.RequestError:
            if attempt >= config.EMBEDDING_RETRY_MAX:
                embedding_circuit_breaker.record_failure("request error")
                _raise_embedding_unavailable("request error")
            _sleep_backoff(attempt)
            continue

        if response.status_code in {429, 500, 502, 503, 504}:
            if attempt >= config.EMBEDDING_RETRY_MAX:
                embedding_circuit_breaker.record_failure(f"status {response.status_code}")
                _raise_embedding_unavailable(f"status {response.status_code}")
            _sleep_backoff(attempt)
            continue
        if response.status_code >= 400:
            embedding_circuit_breaker.record_failure(f"status {response.status_code}")
            _raise_embedding_unavailable(f"status {response.status_code}")

        data = response.json()
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            embedding_circuit_breaker.record_failure("malformed response")
            _raise_embedding_unavailable("malformed response")
        embedding_circuit_breaker.record_success()
        return validate_embedding_vector(vector)

    _raise_embedding_unavailable("retries exhausted")
