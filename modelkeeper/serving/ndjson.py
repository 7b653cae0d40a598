# serving/ndjson.py
from __future__ import annotations

import json
from typing import Any, Iterable, Iterator

from modelkeeper.core.errors import ProtocolError


class NDJSONDecoder:
    """
    Incremental decoder for newline-delimited JSON streams.

    Chunks may split records anywhere (including inside a multi-byte UTF-8
    sequence). Each complete line is decoded exactly once; the trailing partial
    line stays buffered until the next chunk or :meth:`flush`.

    Examples
    --------
    >>> dec = NDJSONDecoder()
    >>> list(dec.feed(b'{"status": "pulling"}\\n{"sta'))
    [{'status': 'pulling'}]
    >>> list(dec.feed(b'tus": "success"}\\n'))
    [{'status': 'success'}]
    """

    def __init__(self) -> None:
        self._buffer = b""

    @property
    def pending(self) -> bytes:
        """Bytes received after the last newline."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> Iterator[dict[str, Any]]:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            record = self._decode(line)
            if record is not None:
                yield record

    def flush(self) -> Iterator[dict[str, Any]]:
        """Decode whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, b""
        record = self._decode(rest)
        if record is not None:
            yield record

    @staticmethod
    def _decode(line: bytes) -> dict[str, Any] | None:
        text = line.strip()
        if not text:
            return None
        try:
            record = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProtocolError(f"Malformed stream record {text[:120]!r}: {e}") from e
        if not isinstance(record, dict):
            raise ProtocolError(f"Stream record is not a JSON object: {text[:120]!r}")
        return record


def iter_records(chunks: Iterable[bytes]) -> Iterator[dict[str, Any]]:
    """Decode every record of a chunked stream, including a final unterminated line."""
    decoder = NDJSONDecoder()
    for chunk in chunks:
        if chunk:
            yield from decoder.feed(chunk)
    yield from decoder.flush()
