"""
Segmenter: splits raw context into addressable segments.

Segments tile the input exactly: every character belongs to one segment,
segments never overlap, and "".join(s.text for s in segments) == text.
Each segment carries its trailing whitespace (blank lines after a block
belong to the block), so an uncompressed fallback is always a plain join.

Segmentation modes:
- auto: blank-line blocks; fenced code kept whole; prose split into
  sentences, lists into items
- block: blank-line blocks only
- line: one segment per line (fenced code still kept whole)
"""

import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Tuple

from context_optimizer.core.logging import logger
from context_optimizer.core.token_counter import SmartTokenCounter

# Structural tags
CODE = "code"
HEADING = "heading"
LIST = "list"
PROSE = "prose"
BOILERPLATE = "boilerplate"

# Higher wins when two near-duplicates compete
TAG_PRIORITY: Dict[str, int] = {
    CODE: 4,
    HEADING: 3,
    LIST: 2,
    PROSE: 1,
    BOILERPLATE: 0,
}

SEGMENT_MODES = ("auto", "block", "line")

_FENCE = re.compile(r"^\s*(```|~~~)")
_HEADING = re.compile(r"^#{1,6}\s+\S")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+")
_SEPARATOR = re.compile(r"^\s*([-=*_#~])\1{2,}\s*$")
_BOILERPLATE = re.compile(
    r"copyright\b|\(c\)\s*\d{4}|all rights reserved|licensed under|"
    r"\blicense\b|auto-?generated|generated by|do not edit",
    re.IGNORECASE,
)
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_CODE_DELIMITERS = set("{}()[];=<>")


@dataclass(frozen=True)
class Segment:
    """
    Contiguous span [start, end) of the original text.

    text is original[start:end] for segments produced by the segmenter;
    strategies that condense a segment keep the offsets and replace text.
    """

    index: int
    start: int
    end: int
    text: str
    tag: str
    tokens: int = 0
    condensed: bool = field(default=False, compare=False)

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def body(self) -> str:
        """Text without trailing whitespace."""
        return self.text.rstrip()

    @property
    def trailing(self) -> str:
        return self.text[len(self.body):]

    @property
    def separator(self) -> str:
        """What survives of this segment when it is removed: line breaks only."""
        trailing = self.trailing
        return trailing if "\n" in trailing else ""

    @property
    def priority(self) -> int:
        return TAG_PRIORITY.get(self.tag, 0)

    def with_text(self, text: str, tokens: int) -> "Segment":
        """Same span, condensed content."""
        return replace(self, text=text, tokens=tokens, condensed=True)


def reassemble(source: List[Segment], kept: Mapping[int, Segment]) -> str:
    """
    Rebuild text from the original segment order.

    Removed segments contribute their line breaks, unless the output
    already ends a line, so paragraphs stay apart without piling up blank
    lines.
    """
    parts: List[str] = []
    ends_line = True
    for segment in source:
        survivor = kept.get(segment.index)
        if survivor is not None:
            piece = survivor.text
        else:
            piece = "" if ends_line else segment.separator
        if piece:
            parts.append(piece)
            ends_line = piece.endswith("\n")
    return "".join(parts)


def _is_code_block(lines: List[str]) -> bool:
    content = [line for line in lines if line.strip()]
    if not content:
        return False
    if all(line.startswith(("    ", "\t")) for line in content):
        return True
    chars = "".join(line.strip() for line in content)
    delimiters = sum(1 for c in chars if c in _CODE_DELIMITERS)
    return delimiters > len(chars) * 0.1


def classify(text: str, fenced: bool = False) -> str:
    """Structural tag for a block or piece of text."""
    if fenced:
        return CODE

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return PROSE

    if len(lines) == 1 and _HEADING.match(lines[0]):
        return HEADING
    if all(_SEPARATOR.match(line) for line in lines):
        return BOILERPLATE
    if _BOILERPLATE.search(text) and len(text) < 400:
        return BOILERPLATE
    if _is_code_block(lines):
        return CODE
    if _LIST_ITEM.match(lines[0]) and all(
        _LIST_ITEM.match(line) or line.startswith((" ", "\t")) for line in lines
    ):
        return LIST
    return PROSE


class Segmenter:
    """
    Splits text into Segment objects with token counts.

    Pure and stateless apart from the token counter cache, so one instance
    can serve concurrent requests.
    """

    def __init__(self, mode: str = "auto", counter: Optional[SmartTokenCounter] = None):
        if mode not in SEGMENT_MODES:
            raise ValueError(f"Unknown segment mode '{mode}'. Allowed: {SEGMENT_MODES}")
        self.mode = mode
        self.counter = counter or SmartTokenCounter()

    def segment(self, text: str) -> List[Segment]:
        """Split text; an empty string gives no segments."""
        if not text:
            return []

        spans: List[Tuple[int, int, str]] = []
        for start, end, fenced in self._blocks(text):
            block = text[start:end]
            tag = classify(block, fenced)
            if fenced or self.mode == "block":
                spans.append((start, end, tag))
            elif self.mode == "line":
                spans.extend(self._split_lines(text, start, end))
            else:
                spans.extend(self._split_block(text, start, end, tag))

        segments = [
            Segment(
                index=i,
                start=start,
                end=end,
                text=text[start:end],
                tag=tag,
                tokens=self.counter.count_tokens(text[start:end]),
            )
            for i, (start, end, tag) in enumerate(spans)
        ]

        logger.debug(
            "Text segmented",
            mode=self.mode,
            chars=len(text),
            segments=len(segments),
        )
        return segments

    def _blocks(self, text: str) -> List[Tuple[int, int, bool]]:
        """
        Blank-line separated blocks as (start, end, fenced).

        Blank lines extend the previous block. Leading blank lines belong to
        the first block. A heading line is always a block of its own.
        """
        blocks: List[List] = []
        open_block = False
        in_fence = False
        pos = 0

        for line in text.splitlines(keepends=True):
            line_end = pos + len(line)

            if in_fence:
                blocks[-1][1] = line_end
                if _FENCE.match(line):
                    in_fence = False
                    open_block = False
            elif not line.strip():
                if blocks:
                    blocks[-1][1] = line_end
                open_block = False
            elif _FENCE.match(line):
                blocks.append([pos, line_end, True])
                in_fence = True
            elif _HEADING.match(line):
                blocks.append([pos, line_end, False])
                open_block = False
            elif open_block:
                blocks[-1][1] = line_end
            else:
                blocks.append([pos, line_end, False])
                open_block = True

            pos = line_end

        if not blocks:
            # Whitespace only
            return [(0, len(text), False)]

        blocks[0][0] = 0
        return [(start, end, fenced) for start, end, fenced in blocks]

    def _split_block(self, text: str, start: int, end: int, tag: str) -> List[Tuple[int, int, str]]:
        if tag == LIST:
            return self._split_list(text, start, end)
        if tag == PROSE:
            return self._split_sentences(text, start, end)
        return [(start, end, tag)]

    def _split_sentences(self, text: str, start: int, end: int) -> List[Tuple[int, int, str]]:
        block = text[start:end]
        pieces: List[Tuple[int, int, str]] = []
        piece_start = 0
        for match in _SENTENCE_END.finditer(block):
            if match.end() == len(block):
                break
            piece = block[piece_start : match.end()]
            pieces.append((start + piece_start, start + match.end(), _sentence_tag(piece)))
            piece_start = match.end()
        pieces.append((start + piece_start, end, _sentence_tag(block[piece_start:])))
        return pieces

    def _split_list(self, text: str, start: int, end: int) -> List[Tuple[int, int, str]]:
        items: List[Tuple[int, int, str]] = []
        pos = start
        item_start = start
        for line in text[start:end].splitlines(keepends=True):
            if _LIST_ITEM.match(line) and text[item_start:pos].strip():
                items.append((item_start, pos, LIST))
                item_start = pos
            pos += len(line)
        items.append((item_start, end, LIST))
        return items

    def _split_lines(self, text: str, start: int, end: int) -> List[Tuple[int, int, str]]:
        lines: List[Tuple[int, int, str]] = []
        pos = start
        for line in text[start:end].splitlines(keepends=True):
            if line.strip() or not lines:
                lines.append((pos, pos + len(line), classify(line)))
            else:
                # Blank lines stay with the previous line
                prev_start, _, prev_tag = lines[-1]
                lines[-1] = (prev_start, pos + len(line), prev_tag)
            pos += len(line)
        return lines


def _sentence_tag(sentence: str) -> str:
    return BOILERPLATE if _BOILERPLATE.search(sentence) else PROSE
