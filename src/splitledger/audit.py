"""Append-only command log. Every engine command is recorded after it runs."""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

# Default log location
DEFAULT_LOG_PATH = Path.home() / ".splitledger" / "events.jsonl"

EventStatus = Literal["ok", "rejected", "error"]


def get_log_path() -> Path:
    """Get the log file path, respecting SPLITLEDGER_AUDIT_PATH env var."""
    env_path = os.environ.get("SPLITLEDGER_AUDIT_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_LOG_PATH


def ensure_log_dir(log_path: Path) -> None:
    """Ensure the log directory exists."""
    log_path.parent.mkdir(parents=True, exist_ok=True)


def log_event(
    command: str,
    group_id: str | None,
    status: EventStatus,
    detail: dict[str, Any] | None = None,
    error_msg: str | None = None,
    log_path: Path | None = None,
) -> None:
    """
    Append a command entry to the log file.

    Args:
        command: Engine command name, e.g. "add_expense"
        group_id: Group the command touched (None for personal scope)
        status: "ok", "rejected" (validation or guard) or "error"
        detail: Extra JSON-serializable fields (record ids, amounts)
        error_msg: Rejection reason or error message
        log_path: Optional custom log path (for testing)
    """
    if log_path is None:
        log_path = get_log_path()

    ensure_log_dir(log_path)

    entry: dict[str, Any] = {
        "ts": datetime.now().isoformat(),
        "command": command,
        "group_id": group_id,
        "status": status,
    }

    if detail:
        entry["detail"] = detail
    if error_msg is not None:
        entry["error_msg"] = error_msg

    with open(log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")


def read_log(log_path: Path | None = None, limit: int | None = None) -> list[dict[str, Any]]:
    """
    Read entries from the log file.

    Args:
        log_path: Optional custom log path
        limit: Maximum number of entries to return (from end of file)

    Returns:
        List of log entries as dictionaries
    """
    if log_path is None:
        log_path = get_log_path()

    if not log_path.exists():
        return []

    entries = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(json.loads(line))

    if limit is not None:
        return entries[-limit:]
    return entries
