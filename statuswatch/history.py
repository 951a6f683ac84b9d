"""
Checkpoint history store.

Keeps a chronological list of (timestamp, indicator) checkpoints per
source for uptime reporting. Writes to disk are debounced: a burst of
``record`` calls becomes a single flush after ``save_delay`` seconds of
quiet. ``flush()`` writes immediately (shutdown / migration).

On-disk form (pretty-printed JSON):

    {"<source id>": [{"timestamp": "<iso8601>", "indicator": "none"}, ...]}
"""

from __future__ import annotations

import asyncio
import json
import logging
from bisect import bisect_left, bisect_right
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from statuswatch.models import Checkpoint

logger = logging.getLogger(__name__)

DEFAULT_SAVE_DELAY = 5.0
DEFAULT_RETENTION_DAYS = 30


class HistoryStore:
    """
    Append-only, pruned time series of indicator checkpoints.

    All timestamps are timezone-aware. ``path=None`` keeps history in
    memory only.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        save_delay: float = DEFAULT_SAVE_DELAY,
    ) -> None:
        self.path = Path(path).expanduser() if path else None
        self.save_delay = save_delay
        self.data: Dict[str, List[Checkpoint]] = {}
        self._save_handle: Optional[asyncio.TimerHandle] = None

    # ── Recording ─────────────────────────────────────────

    def record(
        self,
        source_id: str,
        indicator: str,
        at: Optional[datetime] = None,
    ) -> Checkpoint:
        """Append a checkpoint for ``source_id`` and schedule a save."""
        checkpoint = Checkpoint(at or datetime.now(timezone.utc), indicator)
        self._insert(source_id, checkpoint)
        self.save()
        return checkpoint

    def _insert(self, source_id: str, checkpoint: Checkpoint) -> None:
        items = self.data.setdefault(source_id, [])
        # Normal case is in-order; a clock step backwards falls back to
        # sorted insert.
        if not items or items[-1].timestamp <= checkpoint.timestamp:
            items.append(checkpoint)
            return
        idx = bisect_right([c.timestamp for c in items], checkpoint.timestamp)
        items.insert(idx, checkpoint)

    # ── Queries ───────────────────────────────────────────

    def checkpoints_since(self, source_id: str, cutoff: datetime) -> List[Checkpoint]:
        """Checkpoints at or after ``cutoff``, oldest first."""
        items = self.data.get(source_id)
        if not items:
            return []
        idx = bisect_left([c.timestamp for c in items], cutoff)
        return items[idx:]

    def uptime_fraction(self, source_id: str, cutoff: datetime) -> float:
        """
        Share of checkpoints since ``cutoff`` whose indicator is "none".

        An empty window reports 1.0: no data means no known downtime.
        """
        window = self.checkpoints_since(source_id, cutoff)
        if not window:
            return 1.0
        operational = sum(1 for c in window if c.indicator == "none")
        return operational / len(window)

    # ── Cleanup ───────────────────────────────────────────

    def prune_older_than(self, cutoff: datetime) -> int:
        """
        Drop checkpoints before ``cutoff``; sources left empty are removed.

        Returns:
            Number of checkpoints removed.
        """
        removed = 0
        for source_id in list(self.data):
            items = self.data[source_id]
            idx = bisect_left([c.timestamp for c in items], cutoff)
            if idx == 0 and items:
                continue
            removed += idx
            if idx >= len(items):
                del self.data[source_id]
            else:
                self.data[source_id] = items[idx:]
        if removed:
            self.save()
        return removed

    def remove_source(self, source_id: str) -> None:
        if self.data.pop(source_id, None) is not None:
            self.save()

    # ── Persistence ───────────────────────────────────────

    def load(self) -> None:
        """
        Replace in-memory history with the file's contents.

        A missing file leaves history empty; a corrupt one is logged and
        ignored. Undecodable checkpoints are dropped individually.
        """
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable history file %s: %s", self.path, exc)
            self.data = {}
            return
        self.data = _decode_history(raw)

    def merge(self, mapping: Dict[str, Iterable[Checkpoint]]) -> None:
        """Fold imported checkpoints into history and write immediately."""
        for source_id, checkpoints in mapping.items():
            for checkpoint in checkpoints:
                self._insert(source_id, checkpoint)
        self.flush()

    def save(self) -> None:
        """Schedule a debounced write, restarting the quiet window."""
        if self.path is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop to defer on; write through.
            self._write()
            return
        self._cancel_pending()
        self._save_handle = loop.call_later(self.save_delay, self._write_scheduled)

    @property
    def save_pending(self) -> bool:
        return self._save_handle is not None

    def flush(self) -> None:
        """Write now, cancelling any pending debounced write."""
        self._cancel_pending()
        if self.path is not None:
            self._write()

    def _cancel_pending(self) -> None:
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None

    def _write_scheduled(self) -> None:
        self._save_handle = None
        self._write()

    def _write(self) -> None:
        """Write-new-then-rename; never truncates the live file."""
        assert self.path is not None
        payload = {
            source_id: [c.to_dict() for c in items]
            for source_id, items in self.data.items()
        }
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(self.path)
        except OSError:
            logger.exception("failed to write history to %s", self.path)


def _decode_history(raw: object) -> Dict[str, List[Checkpoint]]:
    """Best-effort decode; skips anything malformed."""
    if not isinstance(raw, dict):
        return {}

    out: Dict[str, List[Checkpoint]] = {}
    for source_id, items in raw.items():
        if not isinstance(source_id, str) or not isinstance(items, list):
            continue
        checkpoints: List[Checkpoint] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                checkpoints.append(Checkpoint.from_dict(item))
            except ValueError:
                continue
        checkpoints.sort(key=lambda c: c.timestamp)
        if checkpoints:
            out[source_id] = checkpoints
    return out
