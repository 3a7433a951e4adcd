#!/usr/bin/env python3
from contextlib import asynccontextmanager
from fastapi import FastAPI, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import logging, tempfile, os
from collections import Counter as Tally
from pathlib import Path
from typing import Optional
from chatlite.history_parser import ChatHistoryParser
from chatlite.history_service import ChatHistoryService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.history_service = ChatHistoryService(user_dir=os.environ.get("VSCODE_USER_DIR") or None)
    yield
    await app.state.history_service.aclose()


app = FastAPI(title="chat-lite", lifespan=lifespan)

upload_counter = Counter("chat_uploads_total", "Total chat history uploads")
process_duration = Histogram("chat_process_seconds", "Time spent parsing uploaded chat histories")
message_counter = Counter("chat_messages_total", "Messages extracted from uploads", ["kind"])


@app.get("/health", tags=["ops"])
def health():
    return {"status": "healthy"}

@app.get("/metrics", tags=["ops"])
def metrics():
    return StreamingResponse(iter([generate_latest()]), media_type=CONTENT_TYPE_LATEST)

@app.post("/process/file", tags=["process"])
async def process_file(file: UploadFile = File(...)):
    upload_counter.inc()
    chunk_size = 8*1024*1024  # 8 MB
    with tempfile.NamedTemporaryFile(delete=False, suffix=".json") as tmp:
        total = 0
        while True:
            chunk = await file.read(chunk_size)
            if not chunk:
                break
            tmp.write(chunk)
            total += len(chunk)
        tmp_path = tmp.name
    try:
        counts = Tally()
        with process_duration.time():
            async with ChatHistoryParser.create(tmp_path) as parser:
                async for msg in parser.read_all():
                    counts[msg.kind.value] += 1
        for kind, n in counts.items():
            message_counter.labels(kind=kind).inc(n)
        return JSONResponse({
            "filename": file.filename,
            "bytes": total,
            "messages": sum(counts.values()),
            "counts": dict(counts),
        })
    except Exception as e:
        logger.error(f"upload parse failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        Path(tmp_path).unlink()

@app.get("/histories", tags=["histories"])
async def histories(request: Request):
    service = request.app.state.history_service
    return [s.to_dict() for s in await service.get_histories()]

@app.get("/histories/search", tags=["histories"])
async def search_histories(request: Request, keyword: str = ""):
    service = request.app.state.history_service
    return [s.to_dict() for s in await service.search_histories(keyword)]

@app.get("/messages", tags=["histories"])
async def messages(request: Request, path: str, count: Optional[int] = None):
    service = request.app.state.history_service
    # only files the locator lists
    if path.strip() and not service.is_history_file(path):
        raise HTTPException(status_code=404, detail=f"not a chat history: {path}")
    try:
        page = await service.get_messages(path, count)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [msg.to_dict() for msg in page]

@app.get("/messages/next", tags=["histories"])
async def next_messages(request: Request, count: Optional[int] = None):
    service = request.app.state.history_service
    return [msg.to_dict() for msg in await service.load_next_messages(count)]

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
