"""Chroma vector store adapter."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

import chromadb

from .errors import VectorStoreUnavailableError

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from chromadb.api import ClientAPI
    from chromadb.api.models.Collection import Collection


class ChromaStore:
    """Adapter around a Chroma vector database."""

    def __init__(
        self,
        persist_dir: str | Path | None = None,
        *,
        client: Optional["ClientAPI"] = None,
    ) -> None:
        self.persist_dir = Path(persist_dir) if persist_dir is not None else None
        try:
            if client is not None:
                self._client = client
            else:
                if self.persist_dir is None:
                    raise ValueError("persist_dir is required without an explicit client")
                self.persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(self.persist_dir))
        except Exception as exc:
            raise VectorStoreUnavailableError(
                "Failed to initialise Chroma persistent client",
                cause=exc,
            ) from exc
        self._collections: Dict[str, "Collection"] = {}

    def create_collection(self, name: str, *, metadata: Optional[Dict[str, Any]] = None) -> "Collection":
        """Return an existing collection or create a new one."""

        collection = self._collections.get(name)
        if collection is None:
            collection = self._client.get_or_create_collection(name=name, metadata=metadata)
            self._collections[name] = collection
        return collection

    def add(
        self,
        name: str,
        *,
        ids: Iterable[str],
        embeddings: Iterable[Sequence[float]],
        documents: Iterable[str],
        metadatas: Iterable[Dict[str, Any] | None] | None = None,
    ) -> None:
        """Upsert embeddings and corresponding documents into a collection."""

        collection = self.create_collection(name)

        id_list = list(ids)
        embedding_list = [list(map(float, embedding)) for embedding in embeddings]
        document_list = list(documents)
        metadata_source = list(metadatas) if metadatas is not None else [None] * len(id_list)

        if not (
            len(id_list)
            == len(embedding_list)
            == len(document_list)
            == len(metadata_source)
        ):
            raise ValueError("All inputs must be of the same length")
        if not id_list:
            return

        collection.upsert(
            ids=id_list,
            embeddings=embedding_list,
            documents=document_list,
            metadatas=[metadata or {} for metadata in metadata_source],
        )

    def delete(self, name: str, *, where: Optional[Mapping[str, Any]] = None) -> int:
        """Delete every record matching ``where`` and return how many were removed."""

        collection = self.create_collection(name)
        existing = collection.get(where=dict(where) if where else None, include=[])
        ids = list(existing.get("ids") or [])
        if ids:
            collection.delete(ids=ids)
        return len(ids)

    def query(
        self,
        name: str,
        query_embedding: Sequence[float],
        k: int = 5,
        *,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Query the underlying Chroma collection for the nearest neighbours."""

        if k <= 0:
            return []

        collection = self.create_collection(name)
        available = collection.count()
        if available == 0:
            return []
        result = collection.query(
            query_embeddings=[list(map(float, query_embedding))],
            n_results=min(k, available),
            where=dict(where) if where else None,
        )

        # Chroma answers one list per query embedding; only one is sent.
        columns = [_first_row(result, key) for key in ("ids", "documents", "metadatas", "distances")]
        return [
            {
                "id": record_id,
                "document": document or "",
                "metadata": dict(metadata or {}),
                "distance": 0.0 if distance is None else float(distance),
            }
            for record_id, document, metadata, distance in zip(*columns)
        ]

    def count(self, name: str) -> int:
        return self.create_collection(name).count()

    def heartbeat(self) -> int:
        return self._client.heartbeat()


def _first_row(result: Mapping[str, Any], key: str) -> List[Any]:
    rows = result.get(key) or [[]]
    return list(rows[0] or [])


__all__ = ["ChromaStore"]
