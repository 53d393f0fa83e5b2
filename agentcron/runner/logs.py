"""
Per-job run logs.

Each job appends to ``<logs_dir>/<slug>.log``, from both scheduled runs
(native scheduler redirection) and manual runs (the supervisor). Files are
never rotated; reads return only the tail.
"""

from __future__ import annotations

import os
from pathlib import Path

import aiofiles
import aiofiles.os

from agentcron.core.config import AgentCronConfig

MAX_TAIL_LINES = 5000


def log_path(config: AgentCronConfig, slug: str) -> Path:
    return config.get_logs_dir() / f"{slug}.log"


def format_marker(title: str, timestamp: str, body: str | None = None) -> str:
    """'\\n=== Manual run 2025-01-31T09:00:00.000Z ===\\n'"""
    marker = f"\n=== {title} {timestamp} ===\n"
    return f"{marker}{body}\n" if body is not None else marker


async def read_log_tail(
    path: Path,
    tail_lines: int | None = None,
    max_chars: int = 5000,
) -> str | None:
    """
    Return the end of a log file, or None if it does not exist.

    With ``tail_lines`` (clamped to 1..5000) only the last N lines are kept.
    The result is always capped to the last ``max_chars`` characters.
    """
    if not await aiofiles.os.path.exists(path):
        return None

    lines = None
    if tail_lines is not None and tail_lines > 0:
        lines = max(1, min(MAX_TAIL_LINES, int(tail_lines)))

    size = (await aiofiles.os.stat(path)).st_size
    window = max_chars * 4  # utf-8 upper bound per character

    async with aiofiles.open(path, mode="rb") as f:
        if size > window:
            await f.seek(size - window, os.SEEK_SET)
        data = await f.read()

    text = data.decode("utf-8", errors="replace")
    if lines is not None:
        text = "\n".join(text.splitlines()[-lines:])
    return text[-max_chars:] if len(text) > max_chars else text
