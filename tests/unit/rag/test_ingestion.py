"""
DocumentIngestionService 단위 테스트
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from notebook_rag.domain.entities import Document, DocumentStatus
from notebook_rag.domain.exceptions import (
    DocumentNotFoundError,
    ExternalServiceUnavailableError,
    ValidationError,
)
from notebook_rag.rag.chunker import SectionAwareChunker
from notebook_rag.rag.ingestion import DocumentIngestionService
from notebook_rag.rag.markdown_parser import parse_markdown
from notebook_rag.rag.metadata_extractor import DocumentMetadataExtractor

MARKDOWN = """# Plan

Intro text about the project.

## Schedule

Deadline is March 15.
"""


@pytest.fixture
def service(repository, index_store, embedder, no_wait_retry):
    return DocumentIngestionService(
        repository,
        index_store,
        embedder,
        SectionAwareChunker(),
        DocumentMetadataExtractor(),
        retry_policy=no_wait_retry,
    )


@pytest.fixture
async def document(repository, session):
    return await repository.save_document(
        Document(id="doc-1", session_id=session.id, file_name="plan.md")
    )


# =============================================================================
# 수집
# =============================================================================


class TestIngest:
    @pytest.mark.asyncio
    async def test_ready_with_chunks(self, service, repository, index_store, document):
        result = await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        assert result.status == DocumentStatus.READY
        assert result.chunk_count == 2
        assert (await repository.get_document("doc-1")).status == DocumentStatus.READY
        assert index_store.count("session-1") == 2

    @pytest.mark.asyncio
    async def test_chunk_metadata(self, service, index_store, document):
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        hits = await index_store.keyword_search("session-1", "deadline", 5)
        chunk = hits[0]
        assert chunk.id == "doc-1_1"
        assert chunk.document_title == "Plan"
        assert chunk.section_title == "Plan > Schedule"
        assert chunk.section_breadcrumb == ["Plan", "Schedule"]
        assert chunk.content == "Deadline is March 15."
        assert chunk.enriched_content.startswith("[Document: Plan]\n[Section: Plan > Schedule]")
        assert chunk.embedding is not None

    @pytest.mark.asyncio
    async def test_reingest_overwrites_same_ids(self, service, index_store, document):
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        assert index_store.count("session-1") == 2

    @pytest.mark.asyncio
    async def test_reingest_with_fewer_chunks_drops_stale(self, service, index_store, document):
        """재처리 결과 청크가 줄면 이전 실행의 남은 청크는 검색되지 않음"""
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))
        result = await service.ingest(
            "session-1", "doc-1", parse_markdown("# Plan\n\nOnly the intro remains.\n")
        )

        assert result.chunk_count == 1
        assert index_store.count("session-1") == 1
        assert await index_store.keyword_search("session-1", "deadline", 5) == []

    @pytest.mark.asyncio
    async def test_empty_document_fails(self, service, repository, document):
        with pytest.raises(ValidationError):
            await service.ingest("session-1", "doc-1", parse_markdown("   \n\n"))

        stored = await repository.get_document("doc-1")
        assert stored.status == DocumentStatus.FAILED
        assert "No content extracted" in stored.error_message

    @pytest.mark.asyncio
    async def test_embedding_failure_marks_failed(self, service, repository, index_store, document):
        service.embedder = MagicMock()
        service.embedder.embed_batch = AsyncMock(side_effect=RuntimeError("embedding down"))

        with pytest.raises(RuntimeError):
            await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        assert (await repository.get_document("doc-1")).status == DocumentStatus.FAILED
        assert index_store.count("session-1") == 0

    @pytest.mark.asyncio
    async def test_index_failure_retried_then_unavailable(self, service, repository, document):
        service.index_store = MagicMock()
        service.index_store.delete_by = AsyncMock(return_value=0)
        service.index_store.index_chunks = AsyncMock(side_effect=ConnectionError("refused"))
        service.index_store.refresh = AsyncMock()

        with pytest.raises(ExternalServiceUnavailableError):
            await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        assert service.index_store.index_chunks.await_count == 2
        assert (await repository.get_document("doc-1")).status == DocumentStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_document(self, service, session):
        with pytest.raises(DocumentNotFoundError):
            await service.ingest("session-1", "missing", parse_markdown(MARKDOWN))

    @pytest.mark.asyncio
    async def test_document_of_other_session(self, service, document):
        with pytest.raises(DocumentNotFoundError):
            await service.ingest("other-session", "doc-1", parse_markdown(MARKDOWN))

    def test_build_chunks_plain_text(self, service):
        document = Document(id="doc-2", session_id="session-1", file_name="notes_final.txt")
        chunks = service.build_chunks(document, parse_markdown("Just some words. Nothing else."))

        assert len(chunks) == 1
        assert chunks[0].id == "doc-2_0"
        assert chunks[0].section_title is None
        assert chunks[0].token_count > 0


# =============================================================================
# 백그라운드 / 삭제
# =============================================================================


class TestBackgroundAndDelete:
    def test_background_requires_pool(self, service):
        with pytest.raises(RuntimeError):
            service.ingest_in_background("session-1", "doc-1", parse_markdown(MARKDOWN))

    def test_background_submits_to_pool(self, service):
        pool = MagicMock()
        pool.submit.return_value = True
        service.worker_pool = pool
        parsed = parse_markdown(MARKDOWN)

        assert service.ingest_in_background("session-1", "doc-1", parsed) is True
        pool.submit.assert_called_once_with(
            "ingest:doc-1", service.ingest, "session-1", "doc-1", parsed, None
        )

    @pytest.mark.asyncio
    async def test_delete_document(self, service, repository, index_store, document):
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        removed = await service.delete_document("session-1", "doc-1")

        assert removed == 2
        assert index_store.count("session-1") == 0
        assert await repository.get_document("doc-1") is None

    @pytest.mark.asyncio
    async def test_delete_session(self, service, repository, index_store, document):
        await service.ingest("session-1", "doc-1", parse_markdown(MARKDOWN))

        removed = await service.delete_session("session-1")

        assert removed == 2
        assert await repository.get_session("session-1") is None
        assert await repository.list_documents("session-1") == []

    @pytest.mark.asyncio
    async def test_delete_session_clears_chat_history_index(self, service, document):
        service.history_search = MagicMock()
        service.history_search.delete_session = AsyncMock(return_value=4)

        await service.delete_session("session-1")

        service.history_search.delete_session.assert_awaited_once_with("session-1")
