"""Unit tests for the Retriever: faceted, semantic and combined search."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from docvault.models.documents import DocumentStatus
from docvault.models.ingestion import UploadFile
from docvault.models.search import SearchQuery, SearchResult
from docvault.models.vector import VectorMatch
from docvault.services.ingestion.chunker import TextChunker
from docvault.services.retrieval.retriever import best_match_per_document, order_scored_first
from docvault.utils.errors import InvalidRequestError, NotFoundError
from tests.conftest import OTHER_WORKSPACE, WORKSPACE, build_harness


async def _upload(harness, principal, filename: str, text: str) -> str:
    [result] = await harness.uploads.upload(principal, [UploadFile(filename=filename, content=text.encode())])
    return result.id


async def _tag(harness, principal, document_id: str, name: str, category: str | None = None) -> None:
    existing = [t for t in await harness.tags.list_tags(principal) if t.name == name]
    tag = existing[0] if existing else await harness.tags.create_tag(principal, name, category)
    await harness.tags.add_tags_to_document(principal, document_id, [tag.id])


@pytest.fixture
async def library(harness, owner):
    """Three ready documents in WORKSPACE, one tagged vendor ``acme``."""
    ids = {
        "acme": await _upload(harness, owner, "acme.txt", "invoice from acme for consulting services total due"),
        "globex": await _upload(harness, owner, "globex.txt", "invoice from globex for hardware total due"),
        "notes": await _upload(harness, owner, "notes.txt", "meeting notes about the quarterly roadmap"),
    }
    await _tag(harness, owner, ids["acme"], "acme", "vendor")
    return ids


# ======================================================================
# Pure helpers
# ======================================================================


class TestOrdering:
    def test_scored_first_then_recency(self) -> None:
        now = datetime.now(timezone.utc)
        results = [
            SearchResult(id="old", title="old", created_at=now - timedelta(days=2)),
            SearchResult(id="low", title="low", relevance_score=0.2),
            SearchResult(id="new", title="new", created_at=now),
            SearchResult(id="high", title="high", relevance_score=0.9),
            SearchResult(id="undated", title="undated"),
        ]
        ordered = [r.id for r in order_scored_first(results)]
        assert ordered == ["high", "low", "new", "old", "undated"]

    def test_best_match_per_document(self) -> None:
        matches = [
            VectorMatch(id="a_1", score=0.9, metadata={"document_id": "a"}),
            VectorMatch(id="b_0", score=0.8, metadata={"document_id": "b"}),
            VectorMatch(id="a_0", score=0.5, metadata={"document_id": "a"}),
            VectorMatch(id="orphan", score=0.99, metadata={}),
        ]
        best = best_match_per_document(matches)
        assert list(best) == ["a", "b"]
        assert best["a"].id == "a_1"


# ======================================================================
# Faceted search
# ======================================================================


class TestFacetedSearch:
    @pytest.mark.asyncio
    async def test_no_query_lists_newest_first(self, harness, viewer, library) -> None:
        page = await harness.retriever.search(viewer, SearchQuery())

        assert [r.id for r in page.results] == [library["notes"], library["globex"], library["acme"]]
        assert page.total == 3
        assert page.has_more is False
        assert all(r.relevance_score is None for r in page.results)
        assert page.results[0].snippet.startswith("meeting notes")

    @pytest.mark.asyncio
    async def test_pagination(self, harness, viewer, library) -> None:
        page = await harness.retriever.search(viewer, SearchQuery(limit=2))
        assert len(page.results) == 2
        assert page.total == 3
        assert page.has_more is True

        rest = await harness.retriever.search(viewer, SearchQuery(limit=2, offset=2))
        assert [r.id for r in rest.results] == [library["acme"]]
        assert rest.has_more is False

    @pytest.mark.asyncio
    async def test_tag_filter_and_tag_views(self, harness, viewer, library) -> None:
        page = await harness.retriever.search(viewer, SearchQuery(tags=["vendor:acme"]))

        assert [r.id for r in page.results] == [library["acme"]]
        assert [t.name for t in page.results[0].tags] == ["acme"]

    @pytest.mark.asyncio
    async def test_excludes_documents_not_ready(self, harness, owner, viewer, library) -> None:
        await harness.store.mark_error(library["notes"], "boom")
        page = await harness.retriever.search(viewer, SearchQuery())
        assert library["notes"] not in [r.id for r in page.results]

    @pytest.mark.asyncio
    async def test_text_filter_when_called_directly(self, harness, viewer, library) -> None:
        page = await harness.retriever.faceted_search(viewer, SearchQuery(query="roadmap"))
        assert [r.id for r in page.results] == [library["notes"]]

    @pytest.mark.asyncio
    async def test_outsider_sees_nothing(self, harness, outsider, library) -> None:
        page = await harness.retriever.search(outsider, SearchQuery())
        assert page.results == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_unknown_workspace_is_not_found(self, harness, viewer) -> None:
        with pytest.raises(NotFoundError):
            await harness.retriever.search(viewer, SearchQuery(workspace_id=OTHER_WORKSPACE))


# ======================================================================
# Semantic search
# ======================================================================


class TestSemanticSearch:
    @pytest.mark.asyncio
    async def test_query_is_required(self, harness, viewer) -> None:
        with pytest.raises(InvalidRequestError, match="Query is required"):
            await harness.retriever.semantic_search(viewer, SearchQuery(query="   "))

    @pytest.mark.asyncio
    async def test_ranks_by_similarity(self, harness, viewer, library) -> None:
        page = await harness.retriever.semantic_search(
            viewer, SearchQuery(query="meeting notes about the quarterly roadmap")
        )

        assert page.results[0].id == library["notes"]
        assert page.results[0].relevance_score == pytest.approx(1.0)
        scores = [r.relevance_score for r in page.results]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    @pytest.mark.asyncio
    async def test_overfetch_and_workspace_filter(self, harness, viewer, library) -> None:
        await harness.retriever.semantic_search(viewer, SearchQuery(query="invoice", limit=5, offset=1))

        last = harness.vectors.queries[-1]
        assert last["top_k"] == 12
        assert last["filters"] == {"workspace_id": {"$in": [WORKSPACE]}}

    @pytest.mark.asyncio
    async def test_one_result_per_document(self, metadata_store, owner, viewer) -> None:
        harness = build_harness(metadata_store, chunker=TextChunker(8, 0))
        doc_id = await _upload(
            harness,
            owner,
            "long.txt",
            "alpha beta gamma delta epsilon zeta "
            "alpha beta iota kappa lambda mu "
            "nu xi omicron pi rho sigma",
        )

        page = await harness.retriever.semantic_search(viewer, SearchQuery(query="alpha beta gamma delta"))

        assert [r.id for r in page.results] == [doc_id]
        assert page.total == 1
        assert page.results[0].snippet.startswith("alpha beta gamma delta")

    @pytest.mark.asyncio
    async def test_skips_documents_no_longer_ready(self, harness, viewer, library) -> None:
        await harness.store.mark_error(library["notes"], "boom")
        page = await harness.retriever.semantic_search(viewer, SearchQuery(query="quarterly roadmap"))
        assert library["notes"] not in [r.id for r in page.results]

    @pytest.mark.asyncio
    async def test_empty_index_gives_empty_page(self, harness, viewer) -> None:
        page = await harness.retriever.semantic_search(viewer, SearchQuery(query="anything"))
        assert page.results == []
        assert page.total == 0
        assert page.has_more is False


# ======================================================================
# Combined search
# ======================================================================


class TestCombinedSearch:
    @pytest.mark.asyncio
    async def test_tag_filter_narrows_semantic_candidates(self, harness, viewer, library) -> None:
        page = await harness.retriever.search(viewer, SearchQuery(query="invoice", tags=["vendor:acme"]))

        assert [r.id for r in page.results] == [library["acme"]]
        result = page.results[0]
        assert result.relevance_score is not None and result.relevance_score > 0
        assert "invoice" in result.snippet
        assert harness.vectors.queries[-1]["top_k"] == 60

    @pytest.mark.asyncio
    async def test_document_type_filter(self, harness, owner, viewer, library) -> None:
        page = await harness.retriever.search(viewer, SearchQuery(query="invoice", document_types=["pdf"]))
        assert page.results == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_no_semantic_hits_is_empty(self, harness, viewer) -> None:
        page = await harness.retriever.combined_search(viewer, SearchQuery(query="invoice"))
        assert page.results == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_paginates_fused_results(self, harness, viewer, library) -> None:
        first = await harness.retriever.search(viewer, SearchQuery(query="invoice total due", limit=1))
        assert len(first.results) == 1
        assert first.total == 3
        assert first.has_more is True
        assert first.results[0].id in {library["acme"], library["globex"]}

    @pytest.mark.asyncio
    async def test_status_filter_applies(self, harness, viewer, library) -> None:
        await harness.store.mark_error(library["acme"], "boom")
        page = await harness.retriever.search(viewer, SearchQuery(query="invoice", tags=["acme"]))
        assert page.results == []
        doc = await harness.store.get_document(library["acme"])
        assert doc.status is DocumentStatus.ERROR
