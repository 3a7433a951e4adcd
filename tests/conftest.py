#!/usr/bin/env python3
"""Shared pytest fixtures for chat-lite test suite."""

import pytest
import io
import json
import pathlib
import sys
from typing import Any, Dict, List

# Add parent directory to path for imports
sys.path.insert(0, str(pathlib.Path(__file__).parent.parent))

from chatlite.history_parser import ChatHistoryParser
from tests.fixtures.generate_test_data import (
    BASE_TIMESTAMP_MS,
    build_request,
    build_session,
    generate_chat_json,
    generate_corrupted_chat,
    generate_metadata_heavy_chat,
    generate_unicode_chat,
    write_history_tree,
)


# ============================================================================
# Parser Fixtures
# ============================================================================

@pytest.fixture
def make_parser():
    """Build a parser over an in-memory document (dict, str or bytes)."""
    def factory(document, buf_size: int = 64 * 1024) -> ChatHistoryParser:
        if isinstance(document, dict):
            document = json.dumps(document, ensure_ascii=False)
        if isinstance(document, str):
            document = document.encode("utf-8")
        return ChatHistoryParser.from_stream(io.BytesIO(document), buf_size=buf_size)
    return factory


@pytest.fixture
def read_messages():
    """Drain a parser into a list."""
    async def drain(parser: ChatHistoryParser) -> List:
        return [msg async for msg in parser.read_all()]
    return drain


# ============================================================================
# File Fixtures
# ============================================================================

@pytest.fixture
def chat_json_file(tmp_path) -> pathlib.Path:
    """Session file with 10 requests, two replies each."""
    json_file = tmp_path / "chat.json"
    generate_chat_json(10, 2, 0, str(json_file))
    return json_file


@pytest.fixture
def padded_chat_file(tmp_path) -> pathlib.Path:
    """Session file of ~400KB where each request carries 2KB of unrelated data."""
    json_file = tmp_path / "padded.json"
    generate_chat_json(200, 1, 2, str(json_file))
    return json_file


@pytest.fixture
def metadata_heavy_file(tmp_path) -> pathlib.Path:
    """Session file dominated by skipped metadata."""
    json_file = tmp_path / "metadata_heavy.json"
    generate_metadata_heavy_chat(5, 2000, str(json_file))
    return json_file


@pytest.fixture
def corrupted_chat_file(tmp_path) -> pathlib.Path:
    json_file = tmp_path / "corrupted.json"
    generate_corrupted_chat(0, str(json_file))
    return json_file


@pytest.fixture
def unicode_chat_file(tmp_path) -> pathlib.Path:
    json_file = tmp_path / "unicode.json"
    generate_unicode_chat(20, str(json_file))
    return json_file


@pytest.fixture
def sample_session_file() -> pathlib.Path:
    """A session file in the shape VS Code writes."""
    return pathlib.Path(__file__).parent / "fixtures" / "sample_chat.json"


@pytest.fixture
def history_dir(tmp_path) -> pathlib.Path:
    """A VS Code user directory with workspace and empty-window sessions."""
    def session(text: str, offset_ms: int = None, reply: str = "ok") -> str:
        timestamp = None if offset_ms is None else BASE_TIMESTAMP_MS + offset_ms
        return json.dumps(build_session([build_request(text, [reply], timestamp)]))

    user_dir = tmp_path / "User"
    write_history_tree(
        user_dir,
        {
            "ws_alpha": {
                "older.json": session("Explain asyncio locks", 0, "Locks serialize coroutines."),
                "newer.json": session("How do I parse JSON lazily?", 60_000, "Use ijson."),
            },
            "ws_beta": {
                "empty.json": json.dumps(build_session([])),
                "untimed.json": session("No timestamp here"),
            },
        },
        {"window.json": session("Newest question about FastAPI", 120_000, "Use TestClient.")},
    )
    (user_dir / "workspaceStorage" / "ws_beta" / "chatSessions" / "notes.txt").write_text("not a session")
    return user_dir


# ============================================================================
# FastAPI Test Client
# ============================================================================

@pytest.fixture
def fastapi_client(history_dir, monkeypatch):
    """FastAPI test client whose history service scans ``history_dir``."""
    from fastapi.testclient import TestClient
    from op2_api.app.simple_main import app

    monkeypatch.setenv("VSCODE_USER_DIR", str(history_dir))
    with TestClient(app) as client:
        yield client


# ============================================================================
# Test Data Fixtures
# ============================================================================

@pytest.fixture
def two_turn_session() -> Dict[str, Any]:
    """Two requests, each with a prompt and one reply."""
    return build_session([
        build_request("User1", ["Assistant1"], BASE_TIMESTAMP_MS),
        build_request("User2", ["Assistant2"], BASE_TIMESTAMP_MS + 1000),
    ])


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture
def clean_environment(monkeypatch):
    """Ensure a clean environment for tests."""
    env_vars_to_remove = ['VSCODE_USER_DIR', 'LOG_LEVEL', 'PORT']
    for var in env_vars_to_remove:
        monkeypatch.delenv(var, raising=False)

    yield


# ============================================================================
# Performance Testing Fixtures
# ============================================================================

@pytest.fixture
def memory_profiler():
    """Setup memory profiling for tests."""
    try:
        from memory_profiler import memory_usage

        def profile_memory(func, *args, **kwargs):
            """Profile memory usage of a function."""
            mem_usage = memory_usage((func, args, kwargs), interval=0.01)
            return {
                "min": min(mem_usage),
                "max": max(mem_usage),
                "avg": sum(mem_usage) / len(mem_usage)
            }

        return profile_memory
    except ImportError:
        pytest.skip("memory_profiler not installed")


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "benchmark: marks benchmark tests")
