#!/usr/bin/env python3
"""Pull-based JSON token source over a byte stream, backed by ijson."""
import inspect, logging
from typing import Any, NamedTuple, Optional

import ijson

logger = logging.getLogger(__name__)

DEFAULT_BUF_SIZE = 64 * 1024
CONTAINER_END = {"start_map": "end_map", "start_array": "end_array"}


class Token(NamedTuple):
    event: str
    value: Any


class StreamReader:
    """Async ``read`` over a sync or async binary stream that remembers reaching EOF."""

    def __init__(self, stream):
        self.stream = stream
        self.eof = False
        self.bytes_read = 0

    async def read(self, size: int = -1) -> bytes:
        data = self.stream.read(size)
        if inspect.isawaitable(data):
            data = await data
        # ijson probes the stream type with read(0)
        if size and not data:
            self.eof = True
        self.bytes_read += len(data)
        return data

    async def close(self) -> None:
        result = self.stream.close()
        if inspect.isawaitable(result):
            await result


class TokenSource:
    """Hands out one ijson event at a time and skips whole values on request.

    Running out of input in the middle of the document ends the token stream
    quietly; any other tokenizer error propagates. Either way the source is
    exhausted afterwards.
    """

    def __init__(self, stream, buf_size: int = DEFAULT_BUF_SIZE):
        self._reader = StreamReader(stream)
        self._events = aiter(ijson.parse_async(self._reader, buf_size=buf_size))
        self.exhausted = False

    @property
    def bytes_read(self) -> int:
        return self._reader.bytes_read

    async def next(self) -> Optional[Token]:
        if self.exhausted:
            return None
        try:
            _, event, value = await anext(self._events)
        except StopAsyncIteration:
            self.exhausted = True
            return None
        except ijson.JSONError as e:
            self.exhausted = True
            if isinstance(e, ijson.IncompleteJSONError) and self._reader.eof:
                logger.debug(f"input ended early after {self.bytes_read} bytes: {e}")
                return None
            raise
        return Token(event, value)

    async def skip(self, token: Token) -> None:
        """Consume the rest of the value ``token`` opens. Scalars are already complete."""
        if token.event not in CONTAINER_END:
            return
        depth = 1
        while depth:
            nested = await self.next()
            if nested is None:
                return
            if nested.event in CONTAINER_END:
                depth += 1
            elif nested.event in ("end_map", "end_array"):
                depth -= 1

    async def aclose(self) -> None:
        self.exhausted = True
        closer = getattr(self._events, "aclose", None)
        if closer is not None:
            await closer()
        await self._reader.close()
