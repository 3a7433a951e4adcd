#!/usr/bin/env python3
"""History listing, keyword search and paged message loading over ChatHistoryParser."""
import asyncio, logging, os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from chatlite.history_parser import ChatHistoryParser
from chatlite.locator import enumerate_history_files
from chatlite.messages import ChatMessage, MessageKind

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_OPEN_FILES = 16
DISPLAY_TZ = timezone(timedelta(hours=9))


@dataclass
class HistorySummary:
    """One line of the history list: a session file and its opening message."""

    file_path: str
    first_message: str
    timestamp: Optional[datetime] = None

    @property
    def first_message_display(self) -> str:
        return self.first_message.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")

    @property
    def timestamp_display(self) -> str:
        if self.timestamp is None:
            return ""
        return self.timestamp.astimezone(DISPLAY_TZ).strftime("%Y/%m/%d %H:%M:%S")

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "first_message": self.first_message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def newest_first(summaries: Iterable[HistorySummary]) -> List[HistorySummary]:
    """Sort by timestamp, newest first; summaries without one go last."""
    return sorted(
        summaries,
        key=lambda s: (s.timestamp is not None, s.timestamp or datetime.min.replace(tzinfo=timezone.utc)),
        reverse=True,
    )


async def try_read_message(parser: ChatHistoryParser) -> Optional[ChatMessage]:
    """``parser.read()``, with a failure turned into an ERROR message in place of a chat message."""
    try:
        return await parser.read()
    except Exception as e:
        logger.error(f"history read failed: {type(e).__name__}: {e}")
        return ChatMessage(MessageKind.ERROR, f"Could not load history: {type(e).__name__}, {e}")


class ChatHistoryService:
    def __init__(self, user_dir=None, page_size: int = DEFAULT_PAGE_SIZE):
        self.user_dir = user_dir
        self.page_size = page_size
        self.current_path: Optional[str] = None
        self._parser: Optional[ChatHistoryParser] = None
        self._lock = asyncio.Lock()
        self._closed = False

    def history_files(self) -> List[str]:
        return list(enumerate_history_files(self.user_dir))

    def is_history_file(self, path: str) -> bool:
        """True when ``path`` resolves to one of ``history_files()``."""
        target = os.path.realpath(path)
        return any(os.path.realpath(p) == target for p in self.history_files())

    async def get_histories(self) -> List[HistorySummary]:
        summaries = []
        for path in self.history_files():
            summary = await self._summarize(path)
            if summary is not None:
                summaries.append(summary)
        logger.info(f"Found {len(summaries)} chat histories")
        return newest_first(summaries)

    async def search_histories(self, keyword: str) -> List[HistorySummary]:
        """Histories with a message containing ``keyword``, ignoring case. Files are scanned concurrently."""
        if not keyword or not keyword.strip():
            return await self.get_histories()
        needle = keyword.casefold()
        gate = asyncio.Semaphore(MAX_OPEN_FILES)

        async def scan(path: str) -> Optional[HistorySummary]:
            async with gate:
                return await self._match(path, needle)

        results = await asyncio.gather(*(scan(path) for path in self.history_files()))
        matches = [r for r in results if r is not None]
        logger.info(f"{len(matches)} chat histories match {keyword!r}")
        return newest_first(matches)

    async def get_messages(self, path: str, count: Optional[int] = None) -> List[ChatMessage]:
        """Switch to the history at ``path`` and return its first page."""
        async with self._lock:
            if self._closed:
                raise ValueError("chat history service is closed")
            parser = ChatHistoryParser.create(path)
            if self._parser is not None:
                await self._parser.aclose()
            self._parser = parser
            self.current_path = path
            return await self._read_page(count)

    async def load_next_messages(self, count: Optional[int] = None) -> List[ChatMessage]:
        async with self._lock:
            if self._closed or self._parser is None:
                return []
            return await self._read_page(count)

    async def aclose(self) -> None:
        async with self._lock:
            self._closed = True
            if self._parser is not None:
                await self._parser.aclose()
                self._parser = None

    async def _read_page(self, count: Optional[int]) -> List[ChatMessage]:
        limit = self.page_size if count is None else count
        page = []
        while len(page) < limit:
            message = await try_read_message(self._parser)
            if message is None:
                break
            page.append(message)
            if message.kind is MessageKind.ERROR:
                break
        return page

    async def _summarize(self, path: str) -> Optional[HistorySummary]:
        try:
            parser = ChatHistoryParser.create(path)
        except FileNotFoundError:
            logger.warning(f"history file vanished: {path}")
            return None
        async with parser:
            message = await try_read_message(parser)
        if message is None:
            return None
        return HistorySummary(path, message.content, message.timestamp)

    async def _match(self, path: str, needle: str) -> Optional[HistorySummary]:
        try:
            parser = ChatHistoryParser.create(path)
        except FileNotFoundError:
            logger.warning(f"history file vanished: {path}")
            return None
        first = None
        async with parser:
            async for message in _read_until_error(parser):
                if first is None:
                    first = message
                if needle in message.content.casefold():
                    return HistorySummary(path, first.content, first.timestamp)
        return None


async def _read_until_error(parser: ChatHistoryParser):
    while True:
        message = await try_read_message(parser)
        if message is None or message.kind is MessageKind.ERROR:
            return
        yield message
