"""
Markdown 섹션 파서 단위 테스트
"""

from notebook_rag.rag.markdown_parser import parse_markdown

DOCUMENT = """Intro text

# Guide
Guide body
## Setup
Setup body
```
# not a heading
```
## Usage
Usage body
# Appendix
End
"""


class TestParseMarkdown:
    def test_section_tree(self):
        parsed = parse_markdown(DOCUMENT)

        assert [s.title for s in parsed.sections] == ["", "Guide", "Appendix"]
        guide = parsed.sections[1]
        assert [c.title for c in guide.children] == ["Setup", "Usage"]

    def test_preamble_is_level_zero(self):
        preamble = parse_markdown(DOCUMENT).sections[0]
        assert preamble.level == 0
        assert preamble.breadcrumb == []
        assert preamble.content == "Intro text"

    def test_breadcrumbs(self):
        guide = parse_markdown(DOCUMENT).sections[1]
        assert guide.breadcrumb == ["Guide"]
        assert guide.children[0].breadcrumb == ["Guide", "Setup"]

    def test_fenced_heading_ignored(self):
        """코드 블록 안의 # 줄은 섹션 본문으로 남음"""
        setup = parse_markdown(DOCUMENT).sections[1].children[0]
        assert "# not a heading" in setup.content
        assert setup.content.startswith("Setup body")

    def test_content_excludes_children(self):
        guide = parse_markdown(DOCUMENT).sections[1]
        assert guide.content == "Guide body"

    def test_offsets(self):
        parsed = parse_markdown(DOCUMENT)
        guide = parsed.sections[1]
        assert guide.start_offset == len("Intro text\n\n")
        assert DOCUMENT[guide.start_offset :].startswith("# Guide")
        assert parsed.sections[-1].end_offset == len(DOCUMENT)

    def test_no_headings(self):
        parsed = parse_markdown("just text\n\nmore text\n")
        assert parsed.sections == []
        assert parsed.full_text == "just text\n\nmore text\n"

    def test_closing_hashes_stripped(self):
        parsed = parse_markdown("## Title ##\nbody\n")
        assert parsed.sections[0].title == "Title"
        assert parsed.sections[0].level == 2

    def test_skipped_levels(self):
        parsed = parse_markdown("# A\n### C\ntext\n## B\n")
        a = parsed.sections[0]
        assert [c.title for c in a.children] == ["C", "B"]
        assert a.children[0].breadcrumb == ["A", "C"]
