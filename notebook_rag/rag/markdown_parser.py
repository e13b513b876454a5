"""
Markdown Section Parser
=======================
Markdown 텍스트를 ATX 헤딩(# ~ ######) 기준 섹션 트리로 변환합니다.

- 섹션 본문은 자식 섹션을 제외한 원문 Markdown (표/코드 블록 그대로 유지)
- breadcrumb는 상위 헤딩 경로 + 자기 제목
- 펜스 코드 블록(```) 안의 # 줄은 헤딩으로 보지 않음
- 첫 헤딩 이전 텍스트는 제목 없는 레벨 0 섹션
- 헤딩이 전혀 없으면 섹션 없이 반환 (청커가 전체 텍스트 슬라이딩 윈도우로 처리)
"""

import re

from notebook_rag.domain.value_objects import DocumentSection, ParsedDocument

HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE = re.compile(r"^\s*(```|~~~)")


def parse_markdown(text: str) -> ParsedDocument:
    """Markdown → ParsedDocument (이미지 없음)"""
    roots: list[DocumentSection] = []
    stack: list[DocumentSection] = []  # 현재 경로 (레벨 오름차순)
    current: DocumentSection | None = None
    body: list[str] = []
    in_fence = False
    offset = 0

    def close(end: int) -> None:
        if current is not None:
            current.content = "".join(body).strip("\n")
            current.end_offset = end

    for line in text.splitlines(keepends=True):
        if FENCE.match(line):
            in_fence = not in_fence

        match = None if in_fence else HEADING.match(line.rstrip("\n"))
        if match is None:
            if current is None and line.strip():
                current = DocumentSection(title="", level=0, breadcrumb=[], start_offset=offset)
                roots.append(current)
            body.append(line)
            offset += len(line)
            continue

        close(offset)
        body = []

        level = len(match.group(1))
        title = match.group(2).strip()
        while stack and stack[-1].level >= level:
            stack.pop()
        section = DocumentSection(
            title=title,
            level=level,
            breadcrumb=[s.title for s in stack] + [title],
            start_offset=offset,
        )
        if stack:
            stack[-1].children.append(section)
        else:
            roots.append(section)
        stack.append(section)
        current = section
        offset += len(line)

    close(offset)

    has_headings = any(section.level > 0 for section in roots)
    return ParsedDocument(full_text=text, sections=roots if has_headings else [])
