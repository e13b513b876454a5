"""
Document Metadata Extractor
===========================
청크 보강용 메타데이터 추출

추출 항목:
- 문서 제목 (헤딩 → 첫 짧은 줄 → 정리된 파일명 → 고정 플레이스홀더)
- 섹션 헤딩 목록 (순서 유지, 대소문자 무시 중복 제거)
- 키워드 (로그 정규화 빈도 × 길이 보너스 × 과빈도 페널티, 불용어 제외)
- 보강 텍스트: [Document: …] [Section: …] [Keywords: …] 접두 태그 + 원문
  (임베딩/색인 전용, 사용자에게는 노출하지 않음)

토큰화는 유니코드 인식이므로 한글/CJK 단어가 글자 단위로 쪼개지지 않습니다.
"""

import logging
import math
import re

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Document"

MARKDOWN_HEADER = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
UNDERLINE_HEADER = re.compile(r"^(.+)\n[=\-]{3,}$", re.MULTILINE)
NUMBERED_HEADER = re.compile(r"^\d+\.\s+([A-Z].+)$", re.MULTILINE)
CAPS_HEADER = re.compile(r"^([A-Z][A-Z\s]{5,})$", re.MULTILINE)

HEADER_PATTERNS = (MARKDOWN_HEADER, UNDERLINE_HEADER, NUMBERED_HEADER, CAPS_HEADER)

TOKEN_SPLIT = re.compile(r"[^\w']+")
# 가나, CJK 통합 한자(확장 A 포함), 한글 음절
CJK_CHAR = re.compile(r"[぀-ヿ㐀-䶿一-鿿가-힯]")

STOP_WORDS = frozenset(
    """
    a an and are as at be by for from has he in is it its of on or that the to was were will
    with this but they have had what when where who which why how all each every both few more
    most other some such no nor not only own same so than too very just can should now been
    being do does did doing would could might must shall may about above after again against
    before below between down during into over through under until up while am i me my we our
    you your him her them their if then also here there these those else any many much even
    """.split()
)


class DocumentMetadataExtractor:
    """
    문서 메타데이터 추출기

    Args:
        max_keywords: extract_keywords 기본 반환 개수
    """

    def __init__(self, max_keywords: int = 10):
        self.max_keywords = max_keywords

    def extract_title(self, content: str | None, file_name: str | None) -> str:
        if not content:
            return clean_file_name(file_name)

        for pattern in (MARKDOWN_HEADER, UNDERLINE_HEADER, NUMBERED_HEADER):
            match = pattern.search(content)
            if match:
                return match.group(1).strip()

        for line in content.split("\n"):
            line = line.strip()
            if line and len(line) < 200 and ". " not in line:
                return line

        return clean_file_name(file_name)

    def extract_sections(self, content: str | None) -> list[str]:
        """헤딩 목록 (Markdown → underline → numbered → ALL-CAPS 순, 중복 제거)"""
        if not content:
            return []

        sections: list[str] = []
        seen: set[str] = set()
        for pattern in HEADER_PATTERNS:
            for match in pattern.finditer(content):
                header = match.group(1).strip()
                if pattern is CAPS_HEADER and len(header) <= 3:
                    continue
                if header.lower() not in seen:
                    seen.add(header.lower())
                    sections.append(header)
        return sections

    def find_chunk_section(self, content: str | None, chunk_start: int) -> str | None:
        """chunk_start 이전에 나온 마지막 헤딩 (패턴 우선순위상 뒤쪽 패턴이 이김)"""
        if not content or chunk_start < 0:
            return None

        preceding = content[: min(chunk_start, len(content))]
        last_section = None
        for pattern in HEADER_PATTERNS:
            for match in pattern.finditer(preceding):
                last_section = match.group(1).strip()
        return last_section

    def extract_keywords(self, content: str | None, top_n: int | None = None) -> list[str]:
        """
        빈도 기반 키워드 추출

        score = (1 + ln(freq)) × 길이 보너스(1.2) × 과빈도 페널티(0.5, 전체 토큰의 10% 초과)
        동점은 처음 등장한 순서를 유지합니다.
        """
        if not content:
            return []
        limit = self.max_keywords if top_n is None else top_n

        tokens = [t for t in _tokenize(content.lower()) if t not in STOP_WORDS]
        if not tokens:
            return []

        frequencies: dict[str, int] = {}
        for token in tokens:
            frequencies[token] = frequencies.get(token, 0) + 1

        total = len(tokens)
        scores: dict[str, float] = {}
        for term, freq in frequencies.items():
            is_cjk = bool(CJK_CHAR.search(term))
            if len(term) < (2 if is_cjk else 3):
                continue
            tf_score = 1 + math.log(freq)
            length_bonus = 1.2 if len(term) >= (3 if is_cjk else 6) else 1.0
            frequency_penalty = 0.5 if freq / total > 0.1 else 1.0
            scores[term] = tf_score * length_bonus * frequency_penalty

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        return [term for term, _ in ranked[:limit]]

    @staticmethod
    def build_enriched_content(
        content: str,
        document_title: str | None,
        section_title: str | None,
        keywords: list[str] | None,
    ) -> str:
        tags = []
        if document_title:
            tags.append(f"[Document: {document_title}]")
        if section_title:
            tags.append(f"[Section: {section_title}]")
        if keywords:
            tags.append(f"[Keywords: {', '.join(keywords)}]")

        if not tags:
            return content
        return "\n".join(tags) + "\n\n" + content


def clean_file_name(file_name: str | None) -> str:
    """확장자 제거, _- 를 공백으로, 첫 글자 대문자"""
    if file_name is None:
        return UNKNOWN_TITLE
    name = re.sub(r"\.[^.]+$", "", file_name)
    name = re.sub(r"[_-]", " ", name)
    if not name:
        return UNKNOWN_TITLE
    return name[0].upper() + name[1:]


def _tokenize(text: str) -> list[str]:
    words = (w.strip("'") for w in TOKEN_SPLIT.split(text))
    return [w for w in words if len(w) >= 2]
