"""Vector store helpers backed by pluggable backends."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence

from ..ingest.models import DocumentChunk, DocumentMetadata
from ..telemetry import log_event
from .errors import VectorStoreUnavailableError
from .mock_store import MockQueryResult, MockVectorStore

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from ..config import Settings
    from ..embeddings import EmbeddingModel

LOGGER = logging.getLogger(__name__)

DEFAULT_COLLECTION_NAME = "documents"
DEFAULT_DISTANCE_METRIC = "cosine"
TAG_KEY_PREFIX = "tag:"


class VectorBackend(Protocol):
    def create_collection(self, name: str, *, metadata: Optional[Dict[str, Any]] = None) -> Any:
        ...

    def add(self, name: str, *, ids, embeddings, documents, metadatas=None) -> None:
        ...

    def delete(self, name: str, *, where=None) -> int:
        ...

    def query(self, name: str, query_embedding: Sequence[float], k: int = 5, *, where=None) -> List[Any]:
        ...

    def count(self, name: str) -> int:
        ...

    def heartbeat(self) -> int:
        ...


@dataclass(slots=True)
class ChunkSearchResult:
    """Structured response returned from similarity search queries."""

    id: str
    content: str
    distance: float
    metadata: Dict[str, object]

    @property
    def title(self) -> str:
        return str(self.metadata.get("title", ""))

    @property
    def page(self) -> int:
        return int(self.metadata.get("page", 0))

    @property
    def sequence(self) -> int:
        return int(self.metadata.get("sequence", 0))

    @property
    def tags(self) -> List[str]:
        raw = str(self.metadata.get("tags", ""))
        return [tag for tag in raw.split(",") if tag]


def chunk_id(title: str, chunk: DocumentChunk) -> str:
    """Stable id so re-ingesting a document overwrites instead of duplicating."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"{title}:{chunk.sequence}:{chunk.page}").hex


def chunk_metadata(metadata: DocumentMetadata, chunk: DocumentChunk) -> Dict[str, object]:
    # Chroma metadata values must be scalars and never None.
    payload: Dict[str, object] = {
        "title": metadata.title,
        "file_path": metadata.file_path,
        "sequence": chunk.sequence,
        "page": chunk.page,
        "tags": ",".join(metadata.tags),
        "content_length": len(chunk.content),
    }
    if metadata.language:
        payload["language"] = metadata.language
    for tag in metadata.tags:
        payload[f"{TAG_KEY_PREFIX}{tag}"] = True
    return payload


def build_where(title: str | None = None, tags: Sequence[str] | None = None) -> Optional[Dict[str, Any]]:
    clauses: List[Dict[str, Any]] = []
    if title:
        clauses.append({"title": title})
    for tag in tags or ():
        clauses.append({f"{TAG_KEY_PREFIX}{tag}": True})
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChunkVectorStore:
    """Persist document chunks, keyed by document title, in a vector backend."""

    def __init__(
        self,
        backend: VectorBackend,
        embedding_model: "EmbeddingModel",
        *,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        distance_metric: str = DEFAULT_DISTANCE_METRIC,
    ) -> None:
        self.collection_name = collection_name
        self.embedding_model = embedding_model
        self._store = backend
        try:
            self._store.create_collection(
                self.collection_name,
                metadata={"hnsw:space": distance_metric},
            )
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError(
                "Failed to initialise vector store collection",
                cause=exc,
            ) from exc

    def save_chunks(self, metadata: DocumentMetadata, chunks: Sequence[DocumentChunk]) -> List[str]:
        """Write every chunk of a document in a single batch."""

        if not chunks:
            return []

        started = time.perf_counter()
        ids = [chunk_id(metadata.title, chunk) for chunk in chunks]
        documents = [chunk.content for chunk in chunks]
        metadatas = [chunk_metadata(metadata, chunk) for chunk in chunks]

        try:
            embeddings = self.embedding_model.embed_texts(documents)
            self._store.add(
                self.collection_name,
                ids=ids,
                embeddings=embeddings,
                documents=documents,
                metadatas=metadatas,
            )
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError("Failed to save chunks into vector store", cause=exc) from exc

        log_event(
            LOGGER,
            "vectorstore.save",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            collection=self.collection_name,
            title=metadata.title,
            count=len(ids),
        )
        return ids

    def remove_documents(self, metadata: DocumentMetadata) -> int:
        """Delete every chunk previously stored under ``metadata.title``."""

        try:
            removed = self._store.delete(self.collection_name, where={"title": metadata.title})
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError("Failed to remove document chunks", cause=exc) from exc
        LOGGER.info("Removed %s chunks of %s", removed, metadata.title)
        return removed

    def query_by_text(
        self,
        text: str,
        k: int = 5,
        *,
        title: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> List[ChunkSearchResult]:
        if not text.strip() or k <= 0:
            return []

        try:
            query_embeddings = self.embedding_model.embed_texts([text])
            if not query_embeddings:
                return []
            neighbours = self._store.query(
                self.collection_name,
                query_embeddings[0],
                k=k,
                where=build_where(title, tags),
            )
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store query failed", cause=exc) from exc

        results: List[ChunkSearchResult] = []
        for neighbour in neighbours:
            if isinstance(neighbour, MockQueryResult):
                results.append(
                    ChunkSearchResult(
                        id=neighbour.id,
                        content=neighbour.document,
                        distance=float(neighbour.distance),
                        metadata=dict(neighbour.metadata),
                    )
                )
                continue

            results.append(
                ChunkSearchResult(
                    id=str(neighbour.get("id", "")),
                    content=str(neighbour.get("document", "")),
                    distance=float(neighbour.get("distance", 0.0)),
                    metadata=dict(neighbour.get("metadata", {})),
                )
            )
        return results

    def count(self) -> int:
        return self._store.count(self.collection_name)

    def ping(self) -> None:
        """Raise :class:`VectorStoreUnavailableError` if the backend is unreachable."""

        try:
            self._store.heartbeat()
            self._store.count(self.collection_name)
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store is not reachable", cause=exc) from exc


def build_vector_store(settings: "Settings", embedding_model: Optional["EmbeddingModel"] = None) -> ChunkVectorStore:
    """Create the vector store selected by ``settings.vector_store_backend``."""

    if embedding_model is None:
        from ..embeddings import get_embedding_model

        embedding_model = get_embedding_model()

    if settings.vector_store_backend == "chroma":
        from .chroma_store import ChromaStore

        backend: VectorBackend = ChromaStore(settings.chroma_persist_dir)
    else:
        backend = MockVectorStore()
    LOGGER.info(
        "Using %s vector store with collection %s", settings.vector_store_backend, settings.collection_name
    )
    return ChunkVectorStore(backend, embedding_model, collection_name=settings.collection_name)


@lru_cache()
def get_vector_store() -> ChunkVectorStore:
    """Return a lazily initialised vector store instance based on configuration."""

    from ..config import get_settings

    return build_vector_store(get_settings())


def reset_vector_store_cache() -> None:
    """Clear the cached vector store (primarily for testing)."""

    get_vector_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "ChunkSearchResult",
    "ChunkVectorStore",
    "MockVectorStore",
    "VectorStoreUnavailableError",
    "build_vector_store",
    "build_where",
    "chunk_id",
    "get_vector_store",
    "reset_vector_store_cache",
]
