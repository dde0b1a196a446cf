"""Incremental markdown segmentation for streamed narration.

Tokens are buffered until a line is complete, then split into segments
carrying a block type and inline styles. Rendering is left to the client.

One parser serves one message. Lifecycle::

    parser = MarkdownStreamParser()
    unsubscribe = parser.subscribe(callback)
    parser.start()
    parser.feed(token) ...
    parser.stop()
    unsubscribe(); parser.dispose()

``markdown_segments`` wraps that sequence so disposal happens on every
exit path.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from actionflow.channel import SegmentStatus

logger = logging.getLogger(__name__)

_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*)$")
_BLOCKQUOTE = re.compile(r"^>\s?(.*)$")
_FENCE = re.compile(r"^\s*```")
_INLINE = re.compile(r"\*\*(.+?)\*\*|__(.+?)__|`(.+?)`|\*(.+?)\*|_(.+?)_")


@dataclass
class MarkdownSegment:
    segment: str
    type: str = "text"  # text | heading | list_item | blockquote | code_block
    styles: list[str] = field(default_factory=list)


@dataclass
class ParsedSegment:
    status: SegmentStatus
    segment: Optional[MarkdownSegment] = None


SegmentCallback = Callable[[ParsedSegment], None]


def split_inline(text: str, block_type: str = "text") -> list[MarkdownSegment]:
    """Split one line into plain and styled runs."""
    segments = []
    cursor = 0
    for match in _INLINE.finditer(text):
        if match.start() > cursor:
            segments.append(MarkdownSegment(text[cursor:match.start()], block_type))
        bold, bold_alt, code, italic, italic_alt = match.groups()
        if bold or bold_alt:
            segments.append(MarkdownSegment(bold or bold_alt, block_type, ["bold"]))
        elif code:
            segments.append(MarkdownSegment(code, block_type, ["code"]))
        else:
            segments.append(MarkdownSegment(italic or italic_alt, block_type, ["italic"]))
        cursor = match.end()
    if cursor < len(text):
        segments.append(MarkdownSegment(text[cursor:], block_type))
    return segments


class MarkdownStreamParser:
    def __init__(self):
        self._subscriber: Optional[SegmentCallback] = None
        self._buffer = ""
        self._in_code = False
        self.parsing = False
        self.disposed = False

    def subscribe(self, callback: SegmentCallback) -> Callable[[], None]:
        """Attach the single consumer. Returns the matching unsubscribe."""
        if self._subscriber is not None:
            raise RuntimeError("MarkdownStreamParser already has a subscriber")
        self._subscriber = callback

        def unsubscribe() -> None:
            if self._subscriber is callback:
                self._subscriber = None

        return unsubscribe

    def _emit(self, parsed: ParsedSegment) -> None:
        if self.disposed or self._subscriber is None:
            return
        self._subscriber(parsed)

    def start(self) -> None:
        if self.disposed:
            raise RuntimeError("MarkdownStreamParser was disposed")
        self._buffer = ""
        self._in_code = False
        self.parsing = True
        self._emit(ParsedSegment(SegmentStatus.START_STREAM))

    def feed(self, token: str) -> None:
        if not self.parsing or self.disposed or not token:
            return
        self._buffer += token
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._parse_line(line, newline=True)

    def stop(self) -> None:
        if not self.parsing or self.disposed:
            return
        if self._buffer:
            self._parse_line(self._buffer, newline=False)
            self._buffer = ""
        self.parsing = False
        self._emit(ParsedSegment(SegmentStatus.END_STREAM))

    def abort(self) -> None:
        """End the stream without flushing buffered text."""
        if not self.parsing or self.disposed:
            return
        self._buffer = ""
        self.parsing = False
        self._emit(ParsedSegment(SegmentStatus.END_STREAM))

    def dispose(self) -> None:
        self._subscriber = None
        self._buffer = ""
        self.parsing = False
        self.disposed = True

    def _parse_line(self, line: str, newline: bool) -> None:
        if _FENCE.match(line):
            self._in_code = not self._in_code
            return

        if self._in_code:
            segments = [MarkdownSegment(line, "code_block")]
        elif match := _HEADING.match(line):
            segments = split_inline(match.group(2), "heading")
        elif match := _LIST_ITEM.match(line):
            segments = split_inline(match.group(1), "list_item")
        elif match := _BLOCKQUOTE.match(line):
            segments = split_inline(match.group(1), "blockquote")
        else:
            segments = split_inline(line)

        for segment in segments:
            self._emit(ParsedSegment(SegmentStatus.STREAMING, segment))
        if newline:
            block_type = "code_block" if self._in_code else "text"
            self._emit(ParsedSegment(SegmentStatus.STREAMING, MarkdownSegment("\n", block_type)))


@contextmanager
def markdown_segments(callback: SegmentCallback) -> Iterator[MarkdownStreamParser]:
    """Yield a started parser that is always ended and disposed.

    On success buffered text is flushed; on error it is dropped.
    """
    parser = MarkdownStreamParser()
    unsubscribe = parser.subscribe(callback)
    parser.start()
    try:
        yield parser
    except BaseException:
        parser.abort()
        raise
    else:
        parser.stop()
    finally:
        unsubscribe()
        parser.dispose()
