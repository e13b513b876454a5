"""
Document Ingestion
==================
파싱된 문서를 청크 → 메타데이터 보강 → 임베딩 → 색인 순으로 처리합니다.

상태 전이: PENDING → PROCESSING → READY | FAILED

- 청크 ID는 "{document_id}_{chunk_index}" (재처리 시 같은 ID로 덮어씀)
- section_title은 breadcrumb을 " > "로 이은 문자열
- 청크별 키워드 5개, 문서 제목은 전체 텍스트 기준
- 임베딩/색인 실패 시 문서를 FAILED로 표시하고 예외를 다시 던짐
"""

import logging
from typing import TYPE_CHECKING

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import INDEX_RETRY, RetryPolicy, call_with_resilience
from notebook_rag.domain.entities import Chunk, Document, DocumentStatus
from notebook_rag.domain.exceptions import DocumentNotFoundError, ValidationError
from notebook_rag.domain.interfaces import DocumentRepository, EmbeddingProvider, IndexStore
from notebook_rag.domain.interfaces.repository import NotebookRepository
from notebook_rag.domain.value_objects import ParsedDocument, RawChunk
from notebook_rag.monitoring.logger import timed
from notebook_rag.rag.chunker import SectionAwareChunker
from notebook_rag.rag.metadata_extractor import DocumentMetadataExtractor
from notebook_rag.shared.constants import estimate_tokens

if TYPE_CHECKING:
    from notebook_rag.application.workers import BackgroundWorkerPool
    from notebook_rag.rag.chat_history_search import ChatHistorySearch

logger = logging.getLogger(__name__)

CHUNK_KEYWORDS = 5


class DocumentIngestionService:
    """
    문서 수집 서비스

    사용 예:
        service = DocumentIngestionService(repository, index_store, embedder, chunker, extractor)
        document = await service.ingest(session_id, document_id, parse_markdown(text))
    """

    def __init__(
        self,
        repository: NotebookRepository | DocumentRepository,
        index_store: IndexStore[Chunk],
        embedder: EmbeddingProvider,
        chunker: SectionAwareChunker,
        metadata_extractor: DocumentMetadataExtractor,
        worker_pool: "BackgroundWorkerPool | None" = None,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = INDEX_RETRY,
        history_search: "ChatHistorySearch | None" = None,
    ):
        self.repository = repository
        self.index_store = index_store
        self.embedder = embedder
        self.chunker = chunker
        self.metadata_extractor = metadata_extractor
        self.worker_pool = worker_pool
        self.breaker = breaker or CircuitBreaker(name="index")
        self.retry_policy = retry_policy
        self.history_search = history_search

    async def _get_document(self, session_id: str, document_id: str) -> Document:
        document = await self.repository.get_document(document_id)
        if document is None or document.session_id != session_id:
            raise DocumentNotFoundError(document_id)
        return document

    async def _update_status(
        self,
        document: Document,
        status: DocumentStatus,
        chunk_count: int | None = None,
        error: str | None = None,
    ) -> Document:
        update: dict = {"status": status}
        if chunk_count is not None:
            update["chunk_count"] = chunk_count
        if error is not None:
            update["error_message"] = error
        return await self.repository.save_document(document.model_copy(update=update))

    @timed("document_ingestion")
    async def ingest(
        self,
        session_id: str,
        document_id: str,
        parsed: ParsedDocument,
        file_name: str | None = None,
    ) -> Document:
        """
        문서 처리 후 색인

        Raises:
            DocumentNotFoundError: 문서가 없거나 다른 세션 소속
            ValidationError: 추출된 내용이 없음
            ExternalServiceUnavailableError: 임베딩/색인 실패
        """
        document = await self._get_document(session_id, document_id)
        document = await self._update_status(document, DocumentStatus.PROCESSING)
        file_name = file_name or document.file_name

        try:
            chunks = self.build_chunks(document, parsed, file_name)
            if not chunks:
                raise ValidationError(
                    "No content extracted from document", field="content", value=document_id
                )
            logger.info(f"Document {document_id} split into {len(chunks)} chunks")

            vectors = await self.embedder.embed_batch([c.enriched_content for c in chunks])
            indexed = [
                chunk.model_copy(update={"embedding": vector})
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]
            # 재처리 시 청크 수가 줄면 이전 실행의 상위 인덱스 청크가 남으므로 먼저 제거
            stale = await call_with_resilience(
                self.breaker,
                self.retry_policy,
                self.index_store.delete_by,
                session_id,
                document_id=document_id,
            )
            if stale:
                logger.info(f"Removed {stale} previously indexed chunks of {document_id}")
            await call_with_resilience(
                self.breaker, self.retry_policy, self.index_store.index_chunks, indexed
            )
            await self.index_store.refresh()
        except Exception as e:
            logger.error(f"Failed to process document {document_id}: {e}")
            await self._update_status(document, DocumentStatus.FAILED, error=str(e))
            raise

        document = await self._update_status(
            document, DocumentStatus.READY, chunk_count=len(indexed)
        )
        logger.info(f"Successfully processed document {document_id} ({len(indexed)} chunks)")
        return document

    def build_chunks(
        self, document: Document, parsed: ParsedDocument, file_name: str | None = None
    ) -> list[Chunk]:
        """청크 분할 + 메타데이터 보강 (임베딩 전)"""
        raw_chunks = self.chunker.chunk(parsed)
        if not raw_chunks:
            return []

        extractor = self.metadata_extractor
        title = extractor.extract_title(parsed.full_text, file_name or document.file_name)
        image_ids = {image.index: image.image_id for image in parsed.images if image.image_id}

        return [self._to_chunk(document, raw, title, image_ids) for raw in raw_chunks]

    def _to_chunk(
        self, document: Document, raw: RawChunk, title: str, image_ids: dict[int, str]
    ) -> Chunk:
        section_title = " > ".join(raw.section_breadcrumb) or None
        keywords = self.metadata_extractor.extract_keywords(raw.content, CHUNK_KEYWORDS)
        return Chunk(
            id=f"{document.id}_{raw.chunk_index}",
            document_id=document.id,
            session_id=document.session_id,
            ordinal_index=raw.chunk_index,
            content=raw.content,
            enriched_content=DocumentMetadataExtractor.build_enriched_content(
                raw.content, title, section_title, keywords
            ),
            token_count=estimate_tokens(raw.content),
            document_title=title,
            section_title=section_title,
            section_breadcrumb=list(raw.section_breadcrumb),
            keywords=keywords,
            associated_image_ids=[
                image_ids[i] for i in raw.associated_image_indices if i in image_ids
            ],
        )

    def ingest_in_background(
        self,
        session_id: str,
        document_id: str,
        parsed: ParsedDocument,
        file_name: str | None = None,
    ) -> bool:
        """수집 작업을 워커 풀에 제출. 큐가 가득 차면 False"""
        if self.worker_pool is None:
            raise RuntimeError("No worker pool configured for background ingestion")
        return self.worker_pool.submit(
            f"ingest:{document_id}", self.ingest, session_id, document_id, parsed, file_name
        )

    async def delete_document(self, session_id: str, document_id: str) -> int:
        """문서와 해당 청크 삭제. 삭제된 청크 수 반환"""
        await self._get_document(session_id, document_id)
        removed = await call_with_resilience(
            self.breaker,
            self.retry_policy,
            self.index_store.delete_by,
            session_id,
            document_id=document_id,
        )
        await self.repository.delete_document(document_id)
        logger.info(f"Deleted document {document_id} ({removed} chunks)")
        return removed

    async def delete_session(self, session_id: str) -> int:
        """세션의 모든 청크, 대화 기록 색인, 세션 데이터 삭제"""
        removed = await call_with_resilience(
            self.breaker, self.retry_policy, self.index_store.delete_by, session_id
        )
        if self.history_search is not None:
            await self.history_search.delete_session(session_id)
        await self.repository.delete_session_data(session_id)
        await self.repository.delete_session(session_id)
        logger.info(f"Deleted session {session_id} ({removed} chunks)")
        return removed
