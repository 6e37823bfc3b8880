"""Hosted note store client over the backend's REST interface.

Talks to the PostgREST-style API of the hosted backend:

- ``POST /rest/v1/rpc/search_notes`` ranked full-text search with
  highlighted snippets, optionally scoped to a folder
- ``GET /rest/v1/notes_view`` substring fallback, used when a tag filter is
  present (the RPC has no tag parameter) or when the RPC errors or returns
  nothing
- ``POST /rest/v1/rpc/match_notes`` vector similarity search

Requests share one ``httpx.AsyncClient``; every failure is wrapped in a
``NoteStoreError`` subclass so callers handle a single exception family.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic import ValidationError

from .base import (
    LexicalHit,
    NoteStore,
    NoteStoreConnectionError,
    NoteStoreQueryError,
    SemanticHit,
)

logger = structlog.get_logger("note_store.rest")


def _quote_filter_value(value: str) -> str:
    """Quote a value for use inside a PostgREST ``or=(...)`` filter."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class RestNoteStore(NoteStore):
    """Note store backed by the hosted REST/RPC endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: float = 30.0,
        page_size: int = 20,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Configure the REST note store.

        Parameters
        - base_url: Backend root URL (``/rest/v1`` is appended)
        - api_key: Project API key sent as ``apikey``
        - access_token: Signed-in user's JWT; falls back to ``api_key``
        - timeout: Seconds per request
        - page_size: Lexical results per page
        - client: Pre-built client (tests pass one with a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        bearer = access_token or api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body.

        Transport failures become ``NoteStoreConnectionError``; non-2xx
        responses become ``NoteStoreQueryError``.
        """
        url = f"{self.base_url}/rest/v1/{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Note store request failed",
                path=path,
                status_code=e.response.status_code,
                error=e.response.text[:200],
            )
            raise NoteStoreQueryError(f"{path} returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Note store unreachable", path=path, error=str(e))
            raise NoteStoreConnectionError(f"{path} request failed: {e}") from e
        except ValueError as e:
            raise NoteStoreQueryError(f"{path} returned invalid JSON: {e}") from e

    async def search_notes(
        self,
        query: str,
        folder_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        page: int = 1,
    ) -> List[LexicalHit]:
        """Keyword search; ranked RPC first, substring fallback second."""
        if not query.strip():
            return []

        if not tags:
            try:
                rows = await self._request(
                    "POST",
                    "rpc/search_notes",
                    json={"q": query, "folder": folder_id, "page": page, "page_size": self.page_size},
                )
                if rows:
                    return self._parse_ranked_rows(rows)
            except NoteStoreQueryError as e:
                logger.warning("search_notes RPC failed, using substring fallback", error=str(e))

        return await self._substring_search(query, folder_id, tags)

    async def _substring_search(
        self,
        query: str,
        folder_id: Optional[str],
        tags: Optional[Sequence[str]],
    ) -> List[LexicalHit]:
        term = _quote_filter_value(f"%{query}%")
        params: Dict[str, str] = {
            "select": "*",
            "or": f"(title.ilike.{term},content.ilike.{term})",
            "order": "created_at.desc",
            "limit": str(self.page_size),
        }
        if folder_id:
            params["folder_id"] = f"eq.{folder_id}"
        if tags:
            params["tags"] = "cs.{" + ",".join(_quote_filter_value(t) for t in tags) + "}"

        rows = await self._request("GET", "notes_view", params=params)
        try:
            return [
                LexicalHit(
                    note_id=row["id"],
                    folder_id=row["folder_id"],
                    title=row["title"],
                    content=row.get("content"),
                    rank=0.0,
                    created_at=row.get("created_at"),
                    updated_at=row.get("updated_at") or row.get("created_at"),
                )
                for row in rows or []
            ]
        except (KeyError, ValidationError) as e:
            raise NoteStoreQueryError(f"Unexpected notes_view row: {e}") from e

    def _parse_ranked_rows(self, rows: List[Dict[str, Any]]) -> List[LexicalHit]:
        try:
            return [
                LexicalHit(
                    note_id=row["note_id"],
                    folder_id=row["folder_id"],
                    title=row["title"],
                    content=row.get("content"),
                    rank=float(row.get("rank") or 0.0),
                    highlighted_title=row.get("snippet_title"),
                    highlighted_snippet=row.get("snippet_content"),
                    created_at=row.get("created_at"),
                    updated_at=row.get("updated_at"),
                )
                for row in rows
            ]
        except (KeyError, TypeError, ValidationError) as e:
            raise NoteStoreQueryError(f"Unexpected search_notes row: {e}") from e

    async def match_notes(
        self,
        embedding: Sequence[float],
        similarity_threshold: float,
        max_results: int,
    ) -> List[SemanticHit]:
        """Vector similarity search through the ``match_notes`` RPC."""
        rows = await self._request(
            "POST",
            "rpc/match_notes",
            json={
                "query_embedding": [float(v) for v in embedding],
                "match_threshold": similarity_threshold,
                "match_count": max_results,
            },
        )
        try:
            hits = [
                SemanticHit(
                    note_id=row["id"],
                    folder_id=row["folder_id"],
                    title=row["title"],
                    content=row.get("content"),
                    similarity=float(row["similarity"]),
                )
                for row in rows or []
            ]
        except (KeyError, TypeError, ValidationError) as e:
            raise NoteStoreQueryError(f"Unexpected match_notes row: {e}") from e

        logger.info(
            "Vector search completed",
            results_count=len(hits),
            top_similarity=hits[0].similarity if hits else None,
        )
        return hits

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
