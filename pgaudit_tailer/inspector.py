"""Debug helper: read the last N JSON entries of a log file."""

import json
import logging
import os

from pgaudit_tailer.classifier import truncate

logger = logging.getLogger(__name__)

# Rough upper bound of a PostgreSQL JSON log line, used to pick a seek point.
BYTES_PER_ENTRY = 1000


def read_last_entries(path: str, n: int, bytes_per_entry: int = BYTES_PER_ENTRY) -> list[dict]:
    """Return up to the last n JSON object entries from path.

    Seeks back n * bytes_per_entry bytes, drops the first (likely partial)
    line when not at the start of the file, and skips undecodable lines.
    """
    if n <= 0:
        return []

    size = os.path.getsize(path)
    seek_pos = max(0, size - n * bytes_per_entry)
    logger.info("Reading last %d entries of %s (file size %d, seeking to %d)", n, path, size, seek_pos)

    with open(path, "rb") as f:
        f.seek(seek_pos)
        data = f.read()

    lines = data.decode("utf-8", errors="replace").split("\n")
    if seek_pos > 0:
        lines = lines[1:]

    entries = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Decode error in %s: %s (truncated_line=%r)", path, e, truncate(line))
            continue
        if isinstance(entry, dict):
            entries.append(entry)

    logger.info("Read %d total entries from position %d", len(entries), seek_pos)
    return entries[-n:]


def format_entries(entries: list[dict]) -> str:
    blocks = [
        f"=== Entry {i} ===\n{json.dumps(entry, indent=2)}"
        for i, entry in enumerate(entries, start=1)
    ]
    return "\n".join(blocks)
