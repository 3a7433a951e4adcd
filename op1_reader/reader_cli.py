#!/usr/bin/env python3
"""Print Copilot Chat transcripts of any size with constant RAM."""

import argparse, asyncio, logging, os, pathlib, sys, time
from typing import List, Optional, TextIO

import ijson

from chatlite.history_parser import ChatHistoryParser
from chatlite.history_service import ChatHistoryService, HistorySummary
from chatlite.messages import ChatMessage, MessageKind

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 40
PROGRESS_EVERY = 1000
LABELS = {MessageKind.USER: "USER", MessageKind.ASSISTANT: "ASSISTANT", MessageKind.ERROR: "ERROR"}


def format_message(msg: ChatMessage) -> str:
    stamp = f" {msg.timestamp.isoformat()}" if msg.timestamp else ""
    return f"[{LABELS[msg.kind]}]{stamp}\n{SEPARATOR}\n{msg.content}\n"


def format_summary(summary: HistorySummary) -> str:
    return f"{summary.timestamp_display or '-':19}  {summary.first_message_display}\n    {summary.file_path}"


async def dump(path: pathlib.Path, out: TextIO, limit: Optional[int] = None) -> int:
    """Write the transcript at ``path`` to ``out``; returns the number of messages written."""
    start = time.time()
    count = 0
    async with ChatHistoryParser.create(path) as parser:
        async for msg in parser.read_all():
            out.write(format_message(msg) + "\n")
            count += 1
            if count % PROGRESS_EVERY == 0:
                logger.info("%s messages | %s bytes read", count, parser.bytes_read)
            if limit is not None and count >= limit:
                break
    logger.info("Done %s messages in %.2fs", count, time.time() - start)
    return count


async def list_histories(service: ChatHistoryService, out: TextIO, keyword: Optional[str] = None) -> int:
    if keyword is None:
        summaries = await service.get_histories()
    else:
        summaries = await service.search_histories(keyword)
    for summary in summaries:
        out.write(format_summary(summary) + "\n")
    return len(summaries)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def cli(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description=__doc__)
    ap.add_argument("file", type=pathlib.Path, nargs="?", help="chat session JSON file")
    ap.add_argument("--limit", type=int, help="stop after this many messages")
    ap.add_argument("--list", action="store_true", help="list chat histories, newest first")
    ap.add_argument("--search", metavar="KEYWORD", help="list histories containing KEYWORD")
    ap.add_argument("--user-dir", type=pathlib.Path, help="VS Code user directory to scan")
    ap.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    args = ap.parse_args(argv)
    configure_logging(args.log_level)

    if args.list or args.search is not None:
        service = ChatHistoryService(user_dir=args.user_dir)
        asyncio.run(list_histories(service, sys.stdout, args.search))
        return 0
    if args.file is None:
        ap.error("a FILE or --list/--search is required")

    try:
        asyncio.run(dump(args.file, sys.stdout, args.limit))
    except ijson.JSONError as e:
        logger.error(f"malformed chat history {args.file}: {e}")
        return 1
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"cannot open {args.file}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
