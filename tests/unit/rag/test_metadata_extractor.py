"""
DocumentMetadataExtractor 단위 테스트
"""

import pytest

from notebook_rag.rag.metadata_extractor import (
    UNKNOWN_TITLE,
    DocumentMetadataExtractor,
    clean_file_name,
)


@pytest.fixture
def extractor():
    return DocumentMetadataExtractor(max_keywords=5)


class TestExtractTitle:
    @pytest.mark.parametrize(
        "content,expected",
        [
            ("# Annual Report\nbody", "Annual Report"),
            ("Quarterly Review\n=====\ntext", "Quarterly Review"),
            ("1. Introduction to Systems\ntext", "Introduction to Systems"),
            ("This is a sentence. Another.\nShort Title\n", "Short Title"),
        ],
    )
    def test_title_sources(self, extractor, content, expected):
        assert extractor.extract_title(content, "file.pdf") == expected

    def test_falls_back_to_file_name(self, extractor):
        assert extractor.extract_title("", "my_report-v2.pdf") == "My report v2"
        assert extractor.extract_title(None, None) == UNKNOWN_TITLE

    def test_long_lines_skipped(self, extractor):
        content = "x" * 250
        assert extractor.extract_title(content, "notes.txt") == "Notes"


class TestCleanFileName:
    @pytest.mark.parametrize(
        "file_name,expected",
        [
            ("my_report-v2.pdf", "My report v2"),
            ("summary.docx", "Summary"),
            (None, UNKNOWN_TITLE),
            (".pdf", UNKNOWN_TITLE),
        ],
    )
    def test_clean(self, file_name, expected):
        assert clean_file_name(file_name) == expected


class TestSections:
    def test_extract_sections_dedup(self, extractor):
        content = "# Overview\ntext\n## Details\nmore\n# overview\n"
        assert extractor.extract_sections(content) == ["Overview", "Details"]

    def test_find_chunk_section(self, extractor):
        content = "# A\ntext\n# B\nmore text"
        assert extractor.find_chunk_section(content, content.index("more")) == "B"
        assert extractor.find_chunk_section(content, 0) is None


class TestKeywords:
    def test_frequency_ranking(self, extractor):
        content = (
            "Budget planning: the budget covers marketing. "
            "Budget review happens quarterly."
        )
        keywords = extractor.extract_keywords(content)

        assert keywords[0] == "budget"
        assert "the" not in keywords
        assert len(keywords) <= 5

    def test_top_n_override(self, extractor):
        content = "alpha beta gamma delta epsilon zeta theta"
        assert len(extractor.extract_keywords(content, top_n=2)) == 2

    def test_korean_words_kept_whole(self, extractor):
        keywords = extractor.extract_keywords("마감일 마감일 프로젝트 일정")
        assert keywords[0] == "마감일"
        assert "프로젝트" in keywords

    def test_empty(self, extractor):
        assert extractor.extract_keywords("") == []
        assert extractor.extract_keywords("the and of") == []


class TestEnrichedContent:
    def test_tags_prefixed(self):
        enriched = DocumentMetadataExtractor.build_enriched_content(
            "body", "Title", "Scope", ["alpha", "beta"]
        )
        assert enriched == (
            "[Document: Title]\n[Section: Scope]\n[Keywords: alpha, beta]\n\nbody"
        )

    def test_no_tags(self):
        assert DocumentMetadataExtractor.build_enriched_content("body", None, None, []) == "body"
