"""
Parsed Document Value Objects
=============================
수집(ingestion) 단계에서만 쓰이는 일시 구조체.

청커가 소비한 뒤 버려지며 저장되지 않습니다.
"""

from dataclasses import dataclass, field


@dataclass
class DocumentSection:
    """
    문서 구조를 반영하는 섹션 트리 노드

    Attributes:
        title: 섹션 제목 (서문은 빈 문자열)
        level: 헤딩 레벨 (서문은 0)
        breadcrumb: 루트부터 이 섹션까지의 제목 경로
        content: 자식 섹션을 제외한 본문
        start_offset / end_offset: 전체 텍스트 기준 오프셋
    """

    title: str
    level: int
    breadcrumb: list[str] = field(default_factory=list)
    content: str = ""
    children: list["DocumentSection"] = field(default_factory=list)
    start_offset: int = 0
    end_offset: int = 0


@dataclass
class ExtractedImage:
    """문서에서 추출된 이미지와 위치 정보"""

    index: int
    image_id: str | None = None
    mime_type: str = "image/png"
    width: int = 0
    height: int = 0
    alt_text: str = ""
    approximate_offset: int = 0
    page_number: int = -1
    x: float = 0.0
    y: float = 0.0
    spatial_group_id: int = -1


@dataclass
class ParsedDocument:
    full_text: str
    sections: list[DocumentSection] = field(default_factory=list)
    images: list[ExtractedImage] = field(default_factory=list)


@dataclass
class RawChunk:
    """청커 출력 단위 (메타데이터 보강 전)"""

    content: str
    section_breadcrumb: list[str]
    chunk_index: int
    associated_image_indices: list[int] = field(default_factory=list)
    document_offset: int = 0

    @property
    def section_title(self) -> str | None:
        return self.section_breadcrumb[-1] if self.section_breadcrumb else None
