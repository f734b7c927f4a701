"""Tests for segmentation: exact tiling, structure tags, modes."""

import pytest

from context_optimizer.compression.segmenter import (
    BOILERPLATE,
    CODE,
    HEADING,
    LIST,
    PROSE,
    Segmenter,
    classify,
    reassemble,
)

DOCUMENT = """# Setup guide

Install the package first. Then configure the database path! Does it work?

- first item
- second item
  continued here
- third item

```python
def main():

    return 1
```

Copyright 2024 Example Corp. All rights reserved.
"""


def assert_tiles(text, segments):
    assert "".join(s.text for s in segments) == text
    position = 0
    for expected_index, segment in enumerate(segments):
        assert segment.index == expected_index
        assert segment.start == position
        assert segment.end > segment.start
        assert text[segment.start : segment.end] == segment.text
        position = segment.end
    assert position == len(text)


class TestTiling:
    """Segments cover the input exactly once."""

    @pytest.mark.parametrize("mode", ["auto", "block", "line"])
    @pytest.mark.parametrize(
        "text",
        [
            DOCUMENT,
            "\n\n  leading blank lines. Then text.",
            "no trailing newline",
            "   \n\n  ",
            "a.\n\n\n\nb.\n",
            "```\nunterminated fence\nstill code",
        ],
    )
    def test_join_reproduces_input(self, mode, text):
        assert_tiles(text, Segmenter(mode).segment(text))

    def test_empty_text(self):
        assert Segmenter().segment("") == []

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            Segmenter("paragraph")


class TestAutoMode:
    """Structure-aware splitting."""

    def setup_method(self):
        self.segments = Segmenter().segment(DOCUMENT)

    def test_heading_is_own_segment(self):
        assert self.segments[0].tag == HEADING
        assert self.segments[0].body == "# Setup guide"

    def test_prose_split_into_sentences(self):
        prose = [s.body for s in self.segments if s.tag == PROSE]
        assert prose == [
            "Install the package first.",
            "Then configure the database path!",
            "Does it work?",
        ]

    def test_list_split_into_items(self):
        items = [s.body for s in self.segments if s.tag == LIST]
        assert items == ["- first item", "- second item\n  continued here", "- third item"]

    def test_fenced_code_kept_whole(self):
        code = [s for s in self.segments if s.tag == CODE]
        assert len(code) == 1
        assert code[0].body.startswith("```python")
        assert code[0].body.endswith("```")
        # The blank line inside the fence does not split it
        assert "\n\n    return 1" in code[0].text

    def test_boilerplate_detected(self):
        assert self.segments[-1].tag == BOILERPLATE

    def test_tokens_counted(self):
        assert all(s.tokens >= 1 for s in self.segments)

    def test_trailing_whitespace_belongs_to_segment(self):
        heading = self.segments[0]
        assert heading.trailing == "\n\n"
        assert heading.separator == "\n\n"


class TestOtherModes:
    """block and line granularity."""

    def test_block_mode_keeps_paragraphs(self):
        segments = Segmenter("block").segment(DOCUMENT)
        prose = [s for s in segments if s.tag == PROSE]
        assert len(prose) == 1
        assert prose[0].body.count(".") == 1

    def test_line_mode(self):
        text = "first line\nsecond line\n\nthird line\n"
        segments = Segmenter("line").segment(text)
        assert [s.body for s in segments] == ["first line", "second line", "third line"]
        assert segments[1].text == "second line\n\n"


class TestClassify:
    """Structural tags."""

    @pytest.mark.parametrize(
        "text, tag",
        [
            ("## Title", HEADING),
            ("-----", BOILERPLATE),
            ("Licensed under the MIT license", BOILERPLATE),
            ("    indented = code\n    more()", CODE),
            ("x = call(a[1]); y = {k: v};", CODE),
            ("1. one\n2. two", LIST),
            ("Plain words in a sentence", PROSE),
        ],
    )
    def test_tags(self, text, tag):
        assert classify(text) == tag

    def test_fenced_wins(self):
        assert classify("just words", fenced=True) == CODE


class TestReassemble:
    """Rebuilding text from surviving segments."""

    def test_all_kept_is_identity(self):
        segments = Segmenter().segment(DOCUMENT)
        assert reassemble(segments, {s.index: s for s in segments}) == DOCUMENT

    def test_removed_paragraph_keeps_line_breaks(self):
        text = "First paragraph.\n\nSecond paragraph.\n\nThird paragraph.\n"
        segments = Segmenter().segment(text)
        kept = {s.index: s for s in segments if s.index != 1}
        assert reassemble(segments, kept) == "First paragraph.\n\nThird paragraph.\n"

    def test_removed_sentence_leaves_no_gap(self):
        text = "One sentence. Two sentence. Three sentence."
        segments = Segmenter().segment(text)
        kept = {s.index: s for s in segments if s.index != 1}
        assert reassemble(segments, kept) == "One sentence. Three sentence."
