#!/usr/bin/env python3
"""Constant-memory reader for Copilot Chat session files."""
import asyncio, logging, os
from collections import deque
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Deque, List, Optional

import aiofiles

from chatlite.messages import ChatMessage, RequestUnit
from chatlite.token_source import DEFAULT_BUF_SIZE, Token, TokenSource

logger = logging.getLogger(__name__)

REQUESTS_KEY = "requests"

Visitor = Callable[[str, Token], Awaitable[bool]]


class ScanPhase(Enum):
    SEEKING = "seeking"
    IN_REQUESTS_ARRAY = "in-requests-array"
    FINISHED = "finished"


def capture_string(name: str, found: List[str]) -> Visitor:
    """Visitor that collects string members called ``name`` into ``found``."""
    async def visit(key: str, token: Token) -> bool:
        if key == name and token.event == "string":
            found.append(token.value)
            return True
        return False
    return visit


class ChatHistoryParser:
    """Reads user prompts and assistant replies from a session file one message at a time.

    Only the ``requests`` array is interpreted. Every other value, however
    large, is skipped token by token, so memory follows the largest field that
    is actually extracted rather than the size of the document. One request
    object can produce several messages; those wait in a queue and are handed
    out by later ``read`` calls without touching the stream.
    """

    def __init__(self, stream=None, path=None, buf_size: int = DEFAULT_BUF_SIZE):
        self._path = path
        self._buf_size = buf_size
        self._source: Optional[TokenSource] = None
        if stream is not None:
            self._source = TokenSource(stream, buf_size)
        self._queue: Deque[ChatMessage] = deque()
        self._lock = asyncio.Lock()
        self._closed = False
        self.phase = ScanPhase.SEEKING

    @classmethod
    def create(cls, path, buf_size: int = DEFAULT_BUF_SIZE) -> "ChatHistoryParser":
        """Parser over a file on disk. The file is opened on the first read."""
        if path is None or not str(path).strip():
            raise ValueError("a chat history file path is required")
        if not os.path.isfile(path):
            raise FileNotFoundError(f"chat history file not found: {path}")
        return cls(path=path, buf_size=buf_size)

    @classmethod
    def from_stream(cls, stream, buf_size: int = DEFAULT_BUF_SIZE) -> "ChatHistoryParser":
        """Parser over an open binary stream with a sync or async ``read``. Takes ownership."""
        return cls(stream=stream, buf_size=buf_size)

    @property
    def bytes_read(self) -> int:
        return self._source.bytes_read if self._source is not None else 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> Optional[ChatMessage]:
        """Next message in transcript order, or None once the transcript is exhausted."""
        async with self._lock:
            if self._closed:
                raise ValueError("I/O operation on closed chat history parser")
            if self._queue:
                return self._queue.popleft()
            while self.phase is not ScanPhase.FINISHED:
                await self._advance()
                if self._queue:
                    return self._queue.popleft()
            return None

    async def read_all(self) -> AsyncIterator[ChatMessage]:
        while True:
            message = await self.read()
            if message is None:
                return
            yield message

    async def aclose(self) -> None:
        """Wait for an in-flight read, then release the tokenizer and the stream."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.clear()
            self.phase = ScanPhase.FINISHED
            if self._source is not None:
                await self._source.aclose()

    async def __aenter__(self) -> "ChatHistoryParser":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _open_source(self) -> TokenSource:
        if self._source is None:
            stream = await aiofiles.open(self._path, "rb")
            self._source = TokenSource(stream, self._buf_size)
        return self._source

    async def _advance(self) -> None:
        """One scan step: a skipped value, a phase change, or one whole request object."""
        source = await self._open_source()
        token = await source.next()
        if token is None:
            logger.debug(f"end of input in phase {self.phase.value} after {source.bytes_read} bytes")
            self.phase = ScanPhase.FINISHED
        elif self.phase is ScanPhase.SEEKING:
            await self._seek(source, token)
        elif token.event == "start_map":
            unit = await self._extract_request(source)
            self._queue.extend(unit.to_messages())
        elif token.event == "end_array":
            self.phase = ScanPhase.FINISHED
        else:
            await source.skip(token)

    async def _seek(self, source: TokenSource, token: Token) -> None:
        if token.event in ("start_map", "end_map"):
            # root object boundaries
            return
        if token.event != "map_key":
            await source.skip(token)
            return
        value = await source.next()
        if value is None:
            return
        if token.value == REQUESTS_KEY and value.event == "start_array":
            self.phase = ScanPhase.IN_REQUESTS_ARRAY
        else:
            await source.skip(value)

    async def _consume_object(self, source: TokenSource, visit: Visitor) -> None:
        """Walk the members of an object whose ``start_map`` was just read, up to its ``end_map``.

        ``visit(key, token)`` gets each member's first value token and returns
        True when it consumed the value itself; otherwise the value is skipped.
        """
        while True:
            token = await source.next()
            if token is None or token.event == "end_map":
                return
            value = await source.next()
            if value is None:
                return
            if not await visit(token.value, value):
                await source.skip(value)

    async def _extract_request(self, source: TokenSource) -> RequestUnit:
        unit = RequestUnit()

        async def visit(key: str, token: Token) -> bool:
            if key == "message" and token.event == "start_map":
                texts: List[str] = []
                await self._consume_object(source, capture_string("text", texts))
                if texts:
                    unit.user_text = texts[-1]
            elif key == "response" and token.event == "start_array":
                await self._read_responses(source, unit)
            elif key == "timestamp" and token.event == "number" and isinstance(token.value, int):
                unit.timestamp_millis = token.value
            else:
                return False
            return True

        await self._consume_object(source, visit)
        return unit

    async def _read_responses(self, source: TokenSource, unit: RequestUnit) -> None:
        while True:
            item = await source.next()
            if item is None or item.event == "end_array":
                return
            if item.event != "start_map":
                await source.skip(item)
                continue
            values: List[str] = []
            await self._consume_object(source, capture_string("value", values))
            if values:
                unit.add_response(values[-1])
