"""Simple in-memory vector store mirroring the subset of the Chroma API we use."""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MockQueryResult:
    """Container for similarity search results."""

    id: str
    document: str
    metadata: dict
    distance: float


@dataclass(slots=True)
class _MockStoredItem:
    id: str
    embedding: List[float]
    document: str
    metadata: dict


def matches_where(metadata: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    """Evaluate a Chroma-style ``where`` filter (equality, ``$eq`` and ``$and``)."""

    if not where:
        return True
    for key, condition in where.items():
        if key == "$and":
            if not all(matches_where(metadata, clause) for clause in condition):
                return False
            continue
        if isinstance(condition, Mapping):
            if "$eq" not in condition:
                raise ValueError(f"Unsupported filter operator in {condition!r}")
            condition = condition["$eq"]
        if metadata.get(key) != condition:
            return False
    return True


class MockVectorStore:
    """A minimal in-memory vector store implementation."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, _MockStoredItem]] = {}
        self._lock = threading.Lock()

    def create_collection(self, name: str, *, metadata: Optional[Dict[str, object]] = None) -> None:
        """Create a new collection if it does not exist yet."""

        with self._lock:
            self._collections.setdefault(name, {})

    def _collection(self, name: str) -> Dict[str, _MockStoredItem]:
        if name not in self._collections:
            raise KeyError(f"Collection '{name}' does not exist")
        return self._collections[name]

    def add(
        self,
        name: str,
        *,
        ids: Iterable[str],
        embeddings: Iterable[Sequence[float]],
        documents: Iterable[str],
        metadatas: Iterable[dict | None] | None = None,
    ) -> None:
        """Upsert documents into a collection."""

        id_list = list(ids)
        embedding_list = [list(map(float, embedding)) for embedding in embeddings]
        document_list = list(documents)
        metadata_list = list(metadatas) if metadatas is not None else [None] * len(id_list)

        if not (
            len(id_list)
            == len(embedding_list)
            == len(document_list)
            == len(metadata_list)
        ):
            raise ValueError("All inputs must be of the same length")

        with self._lock:
            collection = self._collection(name)
            for idx, embedding, document, metadata in zip(
                id_list, embedding_list, document_list, metadata_list
            ):
                collection[idx] = _MockStoredItem(
                    id=idx,
                    embedding=embedding,
                    document=document,
                    metadata=dict(metadata or {}),
                )

    def delete(self, name: str, *, where: Optional[Mapping[str, Any]] = None) -> int:
        """Remove every item matching ``where`` and return how many were removed."""

        with self._lock:
            collection = self._collection(name)
            doomed = [key for key, item in collection.items() if matches_where(item.metadata, where)]
            for key in doomed:
                del collection[key]
        return len(doomed)

    def query(
        self,
        name: str,
        query_embedding: Sequence[float],
        k: int = 5,
        *,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[MockQueryResult]:
        """Return the *k* closest results to the provided embedding."""

        if k <= 0:
            return []
        with self._lock:
            items = [item for item in self._collection(name).values() if matches_where(item.metadata, where)]

        scored = sorted(
            ((_euclidean_distance(query_embedding, item.embedding), item) for item in items),
            key=lambda pair: (pair[0], pair[1].id),
        )
        return [
            MockQueryResult(
                id=item.id,
                document=item.document,
                metadata=dict(item.metadata),
                distance=distance,
            )
            for distance, item in scored[:k]
        ]

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._collection(name))

    def heartbeat(self) -> int:
        return 0


def _euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Embeddings must share the same dimension")
    return math.sqrt(sum((float(x) - float(y)) ** 2 for x, y in zip(a, b)))


__all__ = ["MockQueryResult", "MockVectorStore", "matches_where"]
