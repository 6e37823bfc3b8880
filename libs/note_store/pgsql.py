"""PostgreSQL implementation of the note store.

Runs the same two searches the hosted RPCs provide, directly against the
``notes`` table:

- full-text search with ``ts_rank`` ordering and ``ts_headline`` snippets
- pgvector cosine search, converted to a ``similarity`` in ``[0, 1]``

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

from typing import Any, List, Optional, Sequence

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector
from pydantic import ValidationError

from .base import (
    LexicalHit,
    NoteStore,
    NoteStoreConnectionError,
    NoteStoreQueryError,
    SemanticHit,
)

logger = structlog.get_logger("note_store.pgsql")

DOCUMENT_SQL = "to_tsvector('english', coalesce(n.title, '') || ' ' || coalesce(n.content, ''))"


class PgNoteStore(NoteStore):
    """Note store reading the ``notes`` table through asyncpg."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 5,
        command_timeout: float = 30.0,
        page_size: int = 20,
        user_id: Optional[str] = None,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PostgreSQL-backed note store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - page_size: Lexical results per query
        - user_id: When set, every query is scoped to this owner
        - vector_dimension: Expected query embedding length
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.page_size = page_size
        self.user_id = user_id
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register the pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create the connection pool lazily."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created note store connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create note store connection pool", error=str(e))
                raise NoteStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(self, query: str, *args: Any) -> List[asyncpg.Record]:
        """Run a SELECT; failures are wrapped in ``NoteStoreQueryError``."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except Exception as e:
            logger.error("Query execution failed", error=str(e))
            raise NoteStoreQueryError(f"Query failed: {e}") from e

    def build_lexical_query(
        self,
        query: str,
        folder_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> tuple:
        """Build the full-text SQL and its positional parameters."""
        sql = f"""
            SELECT n.id::text AS note_id,
                   n.folder_id::text AS folder_id,
                   n.title,
                   n.content,
                   ts_rank({DOCUMENT_SQL}, plainto_tsquery('english', $1)) AS rank,
                   ts_headline('english', n.title, plainto_tsquery('english', $1)) AS snippet_title,
                   ts_headline('english', coalesce(n.content, ''), plainto_tsquery('english', $1),
                               'MaxWords=30, MinWords=10') AS snippet_content,
                   n.created_at,
                   n.updated_at
            FROM notes n
            WHERE {DOCUMENT_SQL} @@ plainto_tsquery('english', $1)
        """
        params: List[Any] = [query]

        if folder_id:
            params.append(folder_id)
            sql += f" AND n.folder_id::text = ${len(params)}"
        if tags:
            params.append(list(tags))
            sql += f" AND n.tags @> ${len(params)}::text[]"
        if self.user_id:
            params.append(self.user_id)
            sql += f" AND n.user_id::text = ${len(params)}"

        params.append(self.page_size)
        sql += f" ORDER BY rank DESC, n.created_at DESC LIMIT ${len(params)}"
        return sql, params

    async def search_notes(
        self,
        query: str,
        folder_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> List[LexicalHit]:
        if not query.strip():
            return []

        sql, params = self.build_lexical_query(query, folder_id, tags)
        rows = await self._execute_query(sql, *params)
        try:
            hits = [
                LexicalHit(
                    note_id=row["note_id"],
                    folder_id=row["folder_id"],
                    title=row["title"],
                    content=row["content"],
                    rank=float(row["rank"]),
                    highlighted_title=row["snippet_title"],
                    highlighted_snippet=row["snippet_content"],
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                )
                for row in rows
            ]
        except (KeyError, ValidationError) as e:
            raise NoteStoreQueryError(f"Unexpected lexical row: {e}") from e

        logger.info("Lexical search completed", results_count=len(hits))
        return hits

    def build_semantic_query(self, similarity_threshold: float, max_results: int) -> tuple:
        """Build the pgvector SQL; ``$1`` is the query embedding."""
        sql = """
            SELECT n.id::text AS note_id,
                   n.folder_id::text AS folder_id,
                   n.title,
                   n.content,
                   1 - (n.embedding <=> $1) AS similarity
            FROM notes n
            WHERE n.embedding IS NOT NULL
              AND 1 - (n.embedding <=> $1) >= $2
        """
        params: List[Any] = [similarity_threshold]
        if self.user_id:
            params.append(self.user_id)
            sql += f" AND n.user_id::text = ${len(params) + 1}"
        params.append(max_results)
        sql += f" ORDER BY n.embedding <=> $1 LIMIT ${len(params) + 1}"
        return sql, params

    def _ensure_vector_dimension(self, embedding: Sequence[float]) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32)
        if self.vector_dimension and vector.shape != (self.vector_dimension,):
            raise NoteStoreQueryError(
                f"Embedding has shape {vector.shape}, expected ({self.vector_dimension},)"
            )
        return vector

    async def match_notes(
        self,
        embedding: Sequence[float],
        similarity_threshold: float,
        max_results: int,
    ) -> List[SemanticHit]:
        vector = self._ensure_vector_dimension(embedding)
        sql, params = self.build_semantic_query(similarity_threshold, max_results)
        rows = await self._execute_query(sql, vector, *params)
        try:
            hits = [
                SemanticHit(
                    note_id=row["note_id"],
                    folder_id=row["folder_id"],
                    title=row["title"],
                    content=row["content"],
                    similarity=float(row["similarity"]),
                )
                for row in rows
            ]
        except (KeyError, ValidationError) as e:
            raise NoteStoreQueryError(f"Unexpected semantic row: {e}") from e

        logger.info(
            "Vector similarity search completed",
            query_vector_dim=len(vector),
            limit=max_results,
            results_count=len(hits),
        )
        return hits

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
