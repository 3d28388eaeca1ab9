from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

import chromadb

from .errors import VectorIndexError
from .log import get_logger
from .schema import SearchResult

logger = get_logger(__name__)

PayloadFilter = Mapping[str, str | int | float | bool]


@dataclass(slots=True)
class IndexPoint:
    """Vector plus payload written to the index under a stable id."""

    id: str
    vector: Sequence[float]
    payload: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    async def upsert(self, collection: str, points: Sequence[IndexPoint]) -> None: ...

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        search_filter: PayloadFilter | None = None,
    ) -> list[SearchResult]: ...


def _where(search_filter: PayloadFilter | None) -> dict[str, Any] | None:
    """Translate equality filters into a Chroma `where` clause."""
    if not search_filter:
        return None
    clauses = [{key: value} for key, value in search_filter.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _stored_order(result: SearchResult) -> tuple[int, str, int]:
    section = result.section_id or ""
    # Numeric section ids sort by value.
    return (int(section) if section.isdigit() else -1, section, int(result.payload.get("chunk_index", 0)))


class ChromaVectorIndex:
    """`VectorIndex` backed by a persistent Chroma client.

    The payload `text` field is stored as the Chroma document and every other
    non-null payload field as metadata. Collections use cosine distance and
    scores are reported as `1 - distance`.
    """

    def __init__(self, persist_dir: str | Path = "artifacts/chroma", client: Any | None = None) -> None:
        if client is None:
            Path(persist_dir).mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(persist_dir))
        self._client = client

    def _collection(self, name: str):
        return self._client.get_or_create_collection(name=name, metadata={"hnsw:space": "cosine"})

    def reset_collection(self, name: str) -> None:
        """Drop `name` if it exists and create it empty."""
        # Chroma 0.6 lists names, other releases list collection objects.
        existing = {getattr(collection, "name", collection) for collection in self._client.list_collections()}
        if name in existing:
            logger.info("collection_deleted", collection=name)
            self._client.delete_collection(name)
        self._collection(name)

    def count(self, collection: str) -> int:
        return self._collection(collection).count()

    def _upsert(self, collection: str, points: Sequence[IndexPoint]) -> None:
        metadatas = []
        for point in points:
            metadata = {key: value for key, value in point.payload.items() if key != "text" and value is not None}
            if not metadata:
                raise VectorIndexError(f"point {point.id!r} has no payload fields besides text")
            metadatas.append(metadata)
        self._collection(collection).upsert(
            ids=[point.id for point in points],
            embeddings=[list(point.vector) for point in points],
            documents=[str(point.payload.get("text", "")) for point in points],
            metadatas=metadatas,
        )

    def _search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        search_filter: PayloadFilter | None,
    ) -> list[SearchResult]:
        response = self._collection(collection).query(
            query_embeddings=[list(vector)],
            n_results=limit,
            where=_where(search_filter),
            include=["documents", "metadatas", "distances"],
        )
        docs = response["documents"][0]
        metadatas = response["metadatas"][0]
        distances = response["distances"][0]

        results: list[SearchResult] = []
        for text, metadata, distance in zip(docs, metadatas, distances, strict=True):
            payload = dict(metadata or {})
            if text is not None:
                payload["text"] = text
            results.append(SearchResult(score=float(1.0 - distance), payload=payload))
        return results

    def list_points(
        self,
        collection: str,
        search_filter: PayloadFilter | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Stored points matching `search_filter`, in section then chunk order.

        No similarity is involved, so every score is 0.0.
        """
        try:
            response = self._collection(collection).get(
                where=_where(search_filter),
                limit=limit,
                include=["documents", "metadatas"],
            )
        except Exception as exc:
            raise VectorIndexError(f"listing {collection!r} failed: {exc}") from exc

        results: list[SearchResult] = []
        for text, metadata in zip(response["documents"], response["metadatas"], strict=True):
            payload = dict(metadata or {})
            if text is not None:
                payload["text"] = text
            results.append(SearchResult(score=0.0, payload=payload))
        results.sort(key=_stored_order)
        return results

    async def upsert(self, collection: str, points: Sequence[IndexPoint]) -> None:
        if not points:
            return
        try:
            await asyncio.to_thread(self._upsert, collection, points)
        except Exception as exc:
            raise VectorIndexError(f"upsert into {collection!r} failed: {exc}") from exc

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        search_filter: PayloadFilter | None = None,
    ) -> list[SearchResult]:
        try:
            return await asyncio.to_thread(self._search, collection, vector, limit, search_filter)
        except Exception as exc:
            raise VectorIndexError(f"search in {collection!r} failed: {exc}") from exc
