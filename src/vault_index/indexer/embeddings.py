"""Embedding providers.

``HttpEmbedding`` talks to an Ollama-compatible ``/api/embed`` endpoint.
``HashEmbedding`` derives vectors from content hashes; it needs no model
and is used for offline indexing and tests.
"""

import hashlib
import logging
import math
import struct
import threading

import httpx

from vault_index.config import Config
from vault_index.errors import EmbeddingError, ProviderUnavailableError
from vault_index.indexer.protocols import EmbeddingProvider

logger = logging.getLogger(__name__)

EMBED_TIMEOUT = 60.0
MAX_BATCH = 64


class HashEmbedding:
    """Deterministic unit vectors built from SHA-256 digests of the text."""

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> list[float]:
        values: list[float] = []
        counter = 0
        while len(values) < self._dimension:
            digest = hashlib.sha256(f"{counter}:{text}".encode()).digest()
            for (word,) in struct.iter_unpack(">I", digest):
                values.append(word / 0xFFFFFFFF * 2.0 - 1.0)
            counter += 1
        values = values[: self._dimension]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


class HttpEmbedding:
    """
    Ollama-compatible embedding client.

    Connection failures raise ProviderUnavailableError; HTTP errors and
    malformed responses raise EmbeddingError.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimension: int | None = None,
        timeout: float = EMBED_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._dimension = dimension
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension check"))
        return self._dimension

    def close(self) -> None:
        self._client.close()

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for i in range(0, len(texts), MAX_BATCH):
            vectors.extend(self._request(texts[i : i + MAX_BATCH]))
        return vectors

    def _request(self, texts: list[str]) -> list[list[float]]:
        url = f"{self.base_url}/api/embed"
        try:
            response = self._client.post(url, json={"model": self.model, "input": texts})
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"Embedding request to {url} timed out") from e
        except httpx.RequestError as e:
            raise ProviderUnavailableError(f"Embedding service unreachable: {e}") from e

        if response.status_code >= 400:
            raise EmbeddingError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            embeddings = response.json()["embeddings"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response from {url}") from e
        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}"
            )

        with self._lock:
            if self._dimension is None and embeddings:
                self._dimension = len(embeddings[0])
        return embeddings


def create_embedder(config: Config) -> EmbeddingProvider:
    """Get embedding provider based on config."""
    if config.embedding_provider == "http":
        logger.info(
            "Using HTTP embeddings: %s (model %s)", config.embedding_url, config.embedding_model
        )
        return HttpEmbedding(config.embedding_url, config.embedding_model)
    if config.embedding_provider == "hash":
        return HashEmbedding(config.embedding_dimension)
    raise ValueError(f"Unknown embedding provider: {config.embedding_provider}")
