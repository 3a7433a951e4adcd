#!/usr/bin/env python3
"""Find Copilot Chat session files under a VS Code user directory."""
import logging, os, pathlib, sys
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


def default_user_dir() -> pathlib.Path:
    """``$VSCODE_USER_DIR`` if set, else the platform's VS Code ``User`` directory."""
    override = os.environ.get("VSCODE_USER_DIR")
    if override:
        return pathlib.Path(override)
    if sys.platform.startswith("win"):
        base = pathlib.Path(os.environ.get("APPDATA", pathlib.Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = pathlib.Path.home() / "Library" / "Application Support"
    else:
        base = pathlib.Path(os.environ.get("XDG_CONFIG_HOME") or pathlib.Path.home() / ".config")
    return base / "Code" / "User"


def enumerate_history_files(user_dir: Optional[os.PathLike] = None) -> Iterator[str]:
    """Yield workspace session files, then sessions from windows without a workspace.

    workspaceStorage/<workspace>/chatSessions/<session>.json
    globalStorage/emptyWindowChatSessions/<session>.json
    """
    root = pathlib.Path(user_dir) if user_dir is not None else default_user_dir()
    workspace_storage = root / "workspaceStorage"
    global_sessions = root / "globalStorage" / "emptyWindowChatSessions"

    if workspace_storage.is_dir():
        for ws_dir in sorted(p for p in workspace_storage.iterdir() if p.is_dir()):
            sessions = ws_dir / "chatSessions"
            if sessions.is_dir():
                for path in sorted(sessions.glob("*.json")):
                    if path.is_file():
                        yield str(path)
    else:
        logger.debug(f"no workspace storage at {workspace_storage}")

    if global_sessions.is_dir():
        for path in sorted(global_sessions.glob("*.json")):
            if path.is_file():
                yield str(path)
