"""Embedding models used to index document chunks."""
from __future__ import annotations

import hashlib
import logging
import random
import time
from functools import lru_cache
from typing import List, Protocol, Sequence

from .config import Settings, get_settings
from .telemetry import log_event

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
HASH_DIMENSION = 384


class EmbeddingModel(Protocol):
    name: str

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class HashEmbeddingModel:
    """Deterministic pseudo-embeddings derived from a SHA-256 seed.

    Identical texts always map to identical vectors, which is enough for
    exact-match retrieval in tests and for running without model weights.
    """

    name = "deterministic-hash"

    def __init__(self, dimension: int = HASH_DIMENSION) -> None:
        self.dimension = dimension

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._embed(str(text)) for text in texts]

    def _embed(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest(), "big")
        rng = random.Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self.dimension)]


class SentenceTransformerEmbeddingModel:
    """Wrapper around a sentence-transformers model."""

    def __init__(self, model_name_or_path: str = DEFAULT_MODEL_NAME, *, device: str | None = None) -> None:
        from sentence_transformers import SentenceTransformer

        self.name = model_name_or_path
        self._model = SentenceTransformer(model_name_or_path, device=device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        embeddings = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        log_event(
            LOGGER,
            "embeddings.compute",
            level="debug",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model=self.name,
            count=len(texts),
        )
        return embeddings.tolist()


def build_embedding_model(settings: Settings) -> EmbeddingModel:
    if settings.embedding_backend == "sentence-transformers":
        LOGGER.info("Loading sentence-transformers model %s", settings.embedding_model)
        return SentenceTransformerEmbeddingModel(settings.embedding_model)
    return HashEmbeddingModel()


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    return build_embedding_model(get_settings())


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]
