"""JSONL journal of pipeline milestones.

One file per UTC day. Every record carries the run_id of the pipeline run
that produced it, so concurrent runs can be told apart when reading back.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

EVENT_TYPES = frozenset(
    {
        "run_start",
        "market_data",
        "recommendation",
        "validation",
        "signal",
        "trade",
        "run_end",
        "error",
    }
)


class JournalStore:
    """Append-only JSONL event store, safe to share between worker threads."""

    # every instance writing to the same directory shares the same files
    _write_lock = threading.Lock()

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)

    def append(self, event_type: str, payload: dict[str, Any], *, run_id: str | None = None) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        record = {
            "timestamp": now.isoformat(),
            "run_id": run_id,
            "event_type": event_type,
            "payload": payload,
        }
        line = json.dumps(record, ensure_ascii=True, default=str) + "\n"
        with self._write_lock, self._file_for(now.date()).open("a", encoding="utf-8") as fh:
            fh.write(line)

    def load_recent(
        self,
        limit: int,
        *,
        event_type: str | None = None,
        run_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Newest matching records, returned oldest first."""
        if limit <= 0:
            return []
        matched: list[dict[str, Any]] = []
        for record in self._iter_newest_first():
            if event_type is not None and record.get("event_type") != event_type:
                continue
            if run_id is not None and record.get("run_id") != run_id:
                continue
            matched.append(record)
            if len(matched) >= limit:
                break
        matched.reverse()
        return matched

    def _iter_newest_first(self) -> Iterator[dict[str, Any]]:
        for path in sorted(self._journal_dir.glob("*.jsonl"), reverse=True):
            for line in reversed(path.read_text(encoding="utf-8").splitlines()):
                if line.strip():
                    yield json.loads(line)

    def _file_for(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"
