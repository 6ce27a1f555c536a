"""Line framing for streamed chat replies.

Every text fragment travels as one line: ``0:`` followed by the fragment
encoded as a JSON string, then ``\\n``. JSON encoding keeps newlines inside a
fragment from breaking the framing. Readers must buffer partial lines, since
a network read can end anywhere.
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator, List

TEXT_PREFIX = "0:"


def encode_fragment(fragment: str) -> str:
    return f"{TEXT_PREFIX}{json.dumps(fragment, ensure_ascii=False)}\n"


def encode_stream(fragments: Iterable[str]) -> Iterator[str]:
    for fragment in fragments:
        if fragment:
            yield encode_fragment(fragment)


class StreamDecoder:
    """Incremental decoder; feed raw chunks, collect text fragments."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> List[str]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return [text for text in (self._decode_line(line) for line in lines) if text is not None]

    def close(self) -> List[str]:
        """Flush a trailing line that arrived without its newline."""
        rest, self._buffer = self._buffer, ""
        text = self._decode_line(rest)
        return [text] if text is not None else []

    @staticmethod
    def _decode_line(line: str) -> str | None:
        line = line.rstrip("\r")
        if not line.startswith(TEXT_PREFIX):
            return None
        body = line[len(TEXT_PREFIX):]
        try:
            value = json.loads(body)
        except ValueError:
            value = None
        # Plain-text producers: take the remainder verbatim
        return value if isinstance(value, str) else body


def decode_stream(chunks: Iterable[str]) -> Iterator[str]:
    decoder = StreamDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.close()


__all__ = ["TEXT_PREFIX", "encode_fragment", "encode_stream", "StreamDecoder", "decode_stream"]
