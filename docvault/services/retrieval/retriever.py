"""Document search: faceted, semantic and combined.

Three modes share one result shape (:class:`SearchPage`):

* **Faceted** -- relational filters only (title/chunk text LIKE, tags,
  MIME substrings, date range) over ``ready`` documents, newest first.
  Used when the query has no text.
* **Semantic** -- embed the query, take the nearest chunks within the
  caller's workspaces, keep the best chunk per document.
* **Combined** -- semantic retrieval picks and scores the candidates,
  then the facet filters narrow them.  This is what :meth:`Retriever.search`
  runs for a text query.

Ordering follows the *scored-first* policy: results carrying a relevance
score come first by score descending, unscored results follow by
``created_at`` descending.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal
from docvault.models.documents import Document, DocumentStatus
from docvault.models.search import FacetFilter, SearchPage, SearchQuery, SearchResult
from docvault.models.vector import VectorMatch
from docvault.services.access import accessible_workspaces
from docvault.utils.errors import InvalidRequestError

if TYPE_CHECKING:
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.interfaces.vector_index import IVectorIndex
    from docvault.services.ingestion.embedder import Embedder

logger = structlog.get_logger(logger_name=__name__)

SNIPPET_CHARS = 200

# Over-fetch factors: several chunks of one document can occupy the top-K.
_SEMANTIC_OVERFETCH = 2
_COMBINED_OVERFETCH = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def order_scored_first(results: list[SearchResult]) -> list[SearchResult]:
    """Scored results by score descending, then unscored by recency."""
    scored = [r for r in results if r.relevance_score is not None]
    unscored = [r for r in results if r.relevance_score is None]
    scored.sort(key=lambda r: r.relevance_score or 0.0, reverse=True)
    unscored.sort(key=lambda r: _sortable_time(r.created_at), reverse=True)
    return scored + unscored


def _sortable_time(moment: datetime | None) -> datetime:
    if moment is None:
        return _EPOCH
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def best_match_per_document(matches: list[VectorMatch]) -> dict[str, VectorMatch]:
    """Collapse chunk hits to the highest-scoring one per document.

    The returned dict preserves first-seen order of the (score-sorted)
    input, so iteration order is best document first.
    """
    best: dict[str, VectorMatch] = {}
    for match in matches:
        document_id = match.document_id
        if not document_id:
            continue
        current = best.get(document_id)
        if current is None or match.score > current.score:
            best[document_id] = match
    return best


class Retriever:
    """Searches the documents a principal can see.

    Parameters
    ----------
    metadata_store:
        Facet filtering, document rows, tags and first-chunk snippets.
    vector_index:
        Nearest-neighbour chunk lookup.
    embedder:
        Embeds query text.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        vector_index: IVectorIndex,
        embedder: Embedder,
    ) -> None:
        self._store = metadata_store
        self._vectors = vector_index
        self._embedder = embedder

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(self, principal: Principal, query: SearchQuery) -> SearchPage:
        """Faceted search without query text, combined search with it."""
        if query.query is None:
            return await self.faceted_search(principal, query)
        return await self.combined_search(principal, query)

    async def faceted_search(self, principal: Principal, query: SearchQuery) -> SearchPage:
        workspace_ids = accessible_workspaces(principal, query.workspace_id)
        if not workspace_ids:
            return SearchPage()

        facets = self._facets(query, workspace_ids, text=query.query)
        documents = await self._store.faceted_search(facets, limit=query.limit + 1, offset=query.offset)
        total = await self._store.count_faceted(facets)

        page_docs = documents[: query.limit]
        results = await self._build_results(page_docs, matches={})
        logger.debug("faceted_search", results=len(results), total=total)
        return SearchPage(
            results=order_scored_first(results),
            total=total,
            has_more=len(documents) > query.limit,
        )

    async def semantic_search(self, principal: Principal, query: SearchQuery) -> SearchPage:
        if query.query is None:
            raise InvalidRequestError(message="Query is required")
        workspace_ids = accessible_workspaces(principal, query.workspace_id)
        if not workspace_ids:
            return SearchPage()

        best = await self._semantic_candidates(
            query.query,
            workspace_ids,
            top_k=(query.offset + query.limit) * _SEMANTIC_OVERFETCH,
        )
        if not best:
            return SearchPage()

        documents = await self._store.get_documents(list(best))
        visible = [
            d for d in documents
            if d.status is DocumentStatus.READY and d.workspace_id in workspace_ids
        ]
        results = order_scored_first(await self._build_results(visible, matches=best))
        page = results[query.offset : query.offset + query.limit]
        logger.debug("semantic_search", candidates=len(best), results=len(page))
        return SearchPage(
            results=page,
            total=len(results),
            has_more=len(results) > query.offset + query.limit,
        )

    async def combined_search(self, principal: Principal, query: SearchQuery) -> SearchPage:
        if query.query is None:
            return await self.faceted_search(principal, query)
        workspace_ids = accessible_workspaces(principal, query.workspace_id)
        if not workspace_ids:
            return SearchPage()

        best = await self._semantic_candidates(
            query.query,
            workspace_ids,
            top_k=(query.offset + query.limit) * _COMBINED_OVERFETCH,
        )
        if not best:
            logger.debug("combined_search_no_semantic_hits", query=query.query[:80])
            return SearchPage()

        facets = self._facets(query, workspace_ids, text=None, candidate_ids=list(best))
        documents = await self._store.faceted_search(facets, limit=None)

        fused = order_scored_first(await self._build_results(documents, matches=best))
        page = fused[query.offset : query.offset + query.limit]
        logger.info(
            "combined_search",
            candidates=len(best),
            after_filters=len(fused),
            returned=len(page),
        )
        return SearchPage(
            results=page,
            total=len(fused),
            has_more=len(fused) > query.offset + query.limit,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _semantic_candidates(
        self,
        text: str,
        workspace_ids: list[str],
        top_k: int,
    ) -> dict[str, VectorMatch]:
        vector = await self._embedder.embed(text)
        matches = await self._vectors.query(
            vector,
            top_k=top_k,
            filters={"workspace_id": {"$in": list(workspace_ids)}},
        )
        return best_match_per_document(matches)

    @staticmethod
    def _facets(
        query: SearchQuery,
        workspace_ids: list[str],
        text: str | None,
        candidate_ids: list[str] | None = None,
    ) -> FacetFilter:
        return FacetFilter(
            workspace_ids=workspace_ids,
            text=text,
            tags=query.tags,
            document_types=query.document_types,
            date_from=query.date_from,
            date_to=query.date_to,
            candidate_ids=candidate_ids,
        )

    async def _build_results(
        self,
        documents: list[Document],
        matches: dict[str, VectorMatch],
    ) -> list[SearchResult]:
        """Attach tags, snippets and scores to *documents*."""
        if not documents:
            return []
        ids = [d.id for d in documents]
        tags = await self._store.get_tags_for_documents(ids)
        unscored_ids = [d.id for d in documents if d.id not in matches]
        first_chunks = await self._store.get_first_chunk_texts(unscored_ids) if unscored_ids else {}

        results: list[SearchResult] = []
        for document in documents:
            match = matches.get(document.id)
            if match is not None:
                snippet = match.text
                score: float | None = match.score
            else:
                snippet = first_chunks.get(document.id, "")[:SNIPPET_CHARS]
                score = None
            results.append(
                SearchResult(
                    id=document.id,
                    title=document.title,
                    snippet=snippet,
                    tags=tags.get(document.id, []),
                    relevance_score=score,
                    mime_type=document.mime_type,
                    created_at=document.created_at,
                )
            )
        return results
