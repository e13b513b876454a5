"""
Section-Aware Chunker
=====================
파싱된 문서를 섹션 경계에 맞춘 검색 단위로 분할합니다.

알고리즘:
1. 섹션 트리를 깊이 우선으로 순회
2. 토큰 예산(기본 512, len/4 추정) 안에 들어오는 섹션은 통째로 하나의 청크
3. 큰 섹션은 Markdown 표 경계 → 문단 → 문장 → 문자 윈도우 순으로 분할
   - 표는 절대 행 중간에서 자르지 않음 (하드 문자 상한을 넘을 때만 잘라냄)
   - 다음 청크에 마지막 N개 단어를 겹쳐 넣음 (기본 50)
4. 섹션이 없거나 모두 비어 있으면 전체 텍스트에 같은 슬라이딩 윈도우 적용 (빈 breadcrumb)
5. 이미지 그룹화 후 각 그룹(또는 개별 이미지)을 오프셋이 가장 가까운 청크에 연결
"""

import logging
import re

from notebook_rag.domain.value_objects import DocumentSection, ParsedDocument, RawChunk
from notebook_rag.rag.image_grouping import ImageGroupingStrategy, SpatialClusteringStrategy
from notebook_rag.shared.constants import estimate_tokens

logger = logging.getLogger(__name__)

PARAGRAPH_SPLIT = re.compile(r"\n\n+")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
WORD_SPLIT = re.compile(r"\s+")


class SectionAwareChunker:
    """
    섹션 인식 청커

    사용 예:
        chunker = SectionAwareChunker(chunk_size=512, overlap=50)
        raw_chunks = chunker.chunk(parsed_document)
    """

    def __init__(
        self,
        chunk_size: int = 512,
        overlap: int = 50,
        max_chars: int = 3500,
        grouping_strategy: ImageGroupingStrategy | None = None,
    ):
        """
        Args:
            chunk_size: 청크 토큰 예산
            overlap: 다음 청크로 넘기는 꼬리 단어 수
            max_chars: 청크 하드 문자 상한 (임베딩 입력 한도 보호)
            grouping_strategy: 이미지 그룹화 전략
        """
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.max_chars = max_chars
        self.grouping_strategy = grouping_strategy or SpatialClusteringStrategy()

    def chunk(self, document: ParsedDocument) -> list[RawChunk]:
        result: list[RawChunk] = []

        if document.sections:
            self._walk_sections(document.sections, result)
            if not result and document.full_text.strip():
                logger.warning(
                    f"All {len(document.sections)} sections produced 0 chunks, "
                    "falling back to full-text sliding window"
                )

        if not result:
            offset = 0
            for text in self.sliding_window(document.full_text):
                result.append(RawChunk(text, [], len(result), [], offset))
                offset += len(text)

        self._associate_images(result, document)
        logger.debug(f"SectionAwareChunker produced {len(result)} chunks")
        return result

    # =========================================================================
    # 섹션 순회
    # =========================================================================

    def _walk_sections(self, sections: list[DocumentSection], result: list[RawChunk]) -> None:
        for section in sections:
            content = section.content.strip()
            if content:
                relative_offset = 0
                for text in self.chunk_section_content(content):
                    result.append(
                        RawChunk(
                            content=text,
                            section_breadcrumb=list(section.breadcrumb),
                            chunk_index=len(result),
                            associated_image_indices=[],
                            document_offset=section.start_offset + relative_offset,
                        )
                    )
                    relative_offset += len(text)
            if section.children:
                self._walk_sections(section.children, result)

    def chunk_section_content(self, content: str) -> list[str]:
        """섹션 본문 분할 (표는 통째로 유지)"""
        if len(content) <= self.max_chars and estimate_tokens(content) <= self.chunk_size:
            return [content]

        chunks: list[str] = []
        for segment, is_table in self._split_around_tables(content):
            if is_table:
                table = segment.rstrip()
                if len(table) > self.max_chars:
                    logger.warning(f"Truncating oversized table ({len(table)} chars)")
                    table = table[: self.max_chars]
                chunks.append(table)
            elif segment.strip():
                chunks.extend(self.sliding_window(segment))
        return chunks

    @staticmethod
    def _split_around_tables(content: str) -> list[tuple[str, bool]]:
        """표 구간(| 로 시작하는 연속 줄)과 일반 구간을 번갈아 분리"""
        segments: list[tuple[str, bool]] = []
        current: list[str] = []
        in_table = False

        for line in content.split("\n"):
            is_table_row = line.strip().startswith("|")
            if is_table_row != in_table:
                if current:
                    segments.append(("\n".join(current) + "\n", in_table))
                    current = []
                in_table = is_table_row
            current.append(line)

        if current:
            segments.append(("\n".join(current) + "\n", in_table))
        return segments

    # =========================================================================
    # 슬라이딩 윈도우
    # =========================================================================

    def sliding_window(self, text: str) -> list[str]:
        """문단 단위 누적 + 꼬리 단어 겹침"""
        chunks: list[str] = []
        current = ""
        current_tokens = 0

        for paragraph in PARAGRAPH_SPLIT.split(text or ""):
            if not paragraph.strip():
                continue

            if len(paragraph) > self.max_chars:
                if current.strip():
                    chunks.append(current.strip())
                current, current_tokens = "", 0
                chunks.extend(self.split_by_char_limit(paragraph))
                continue

            paragraph_tokens = estimate_tokens(paragraph)
            over_budget = current_tokens + paragraph_tokens > self.chunk_size
            over_chars = len(current) + len(paragraph) > self.max_chars
            if current.strip() and (over_budget or over_chars):
                chunks.append(current.strip())
                current = self.overlap_tail(current)
                # 겹침을 넣으면 상한을 넘는 경우 겹침 없이 시작
                if len(current) + len(paragraph) > self.max_chars:
                    current = ""
                current_tokens = estimate_tokens(current)

            current += paragraph + "\n\n"
            current_tokens += paragraph_tokens

        if current.strip():
            chunks.append(current.strip())
        return chunks

    def split_by_char_limit(self, text: str) -> list[str]:
        """문장 단위 분할, 한 문장이 상한을 넘으면 (max_chars - 100) 문자 윈도우로 자름"""
        chunks: list[str] = []
        current = ""
        window = self.max_chars - 100

        for sentence in SENTENCE_SPLIT.split(text):
            if len(sentence) > self.max_chars:
                if current.strip():
                    chunks.append(current.strip())
                current = ""
                chunks.extend(sentence[i : i + window] for i in range(0, len(sentence), window))
                continue

            if current.strip() and len(current) + len(sentence) > self.max_chars:
                chunks.append(current.strip())
                current = self.overlap_tail(current)

            current += sentence + " "

        if current.strip():
            chunks.append(current.strip())
        return chunks

    def overlap_tail(self, text: str) -> str:
        """마지막 overlap개 단어 (뒤에 공백 포함)"""
        if self.overlap <= 0:
            return ""
        words = WORD_SPLIT.split(text.strip())
        tail = words[-self.overlap :] if words != [""] else []
        return " ".join(tail) + " " if tail else ""

    # =========================================================================
    # 이미지 연결
    # =========================================================================

    def _associate_images(self, chunks: list[RawChunk], document: ParsedDocument) -> None:
        if not document.images or not chunks:
            return

        grouped = self.grouping_strategy.group_images(document.images)
        chunk_starts = [c.document_offset for c in chunks]

        groups: dict[int, list] = {}
        ungrouped = []
        for image in grouped:
            if image.spatial_group_id >= 0:
                groups.setdefault(image.spatial_group_id, []).append(image)
            else:
                ungrouped.append(image)

        # 그룹은 대표 이미지(첫 이미지) 하나만 연결
        for members in groups.values():
            representative = members[0]
            target = _nearest_chunk(representative.approximate_offset, chunk_starts)
            chunks[target].associated_image_indices.append(representative.index)

        for image in ungrouped:
            target = _nearest_chunk(image.approximate_offset, chunk_starts)
            chunks[target].associated_image_indices.append(image.index)

        logger.debug(
            f"Associated {len(grouped)} images ({len(groups)} groups, "
            f"{len(ungrouped)} ungrouped) with {len(chunks)} chunks"
        )


def _nearest_chunk(offset: int, chunk_starts: list[int]) -> int:
    """시작 오프셋이 가장 가까운 청크 인덱스 (동률이면 앞 청크)"""
    best, best_distance = 0, None
    for i, start in enumerate(chunk_starts):
        distance = abs(start - offset)
        if best_distance is None or distance < best_distance:
            best, best_distance = i, distance
    return best
