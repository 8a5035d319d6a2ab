"""Append-only unit-of-work log used to resume an interrupted harvest.

Each line of the log is one opaque unit id (``1-auth``,
``5-format-react-v4-light``, ``8-kit-spotlight``...). A unit is appended only
after every side effect it produced has been written, so on resume a unit is
either skipped entirely or executed again from the start.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Set, Tuple

logger = logging.getLogger(__name__)


class Checkpoint:
    """Persisted set of completed unit ids with exact-match lookups."""

    def __init__(self, path: Path, *, resume: bool = False) -> None:
        self.path = Path(path)
        self.resume = resume
        self._order: List[str] = []
        self._done: Set[str] = set()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        # A fresh run replaces the previous log only once its first unit completes.
        self._replace_pending = not resume
        if resume:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        for raw in self.path.read_text(encoding="utf-8").splitlines():
            unit = raw.strip()
            if not unit or unit in self._done:
                continue
            self._order.append(unit)
            self._done.add(unit)
        logger.debug("checkpoint: loaded %d completed units from %s", len(self._order), self.path)

    @property
    def completed(self) -> Tuple[str, ...]:
        return tuple(self._order)

    def is_done(self, unit: str) -> bool:
        return unit in self._done

    def skip_if_done(self, unit: str) -> bool:
        if self.resume and unit in self._done:
            logger.info("--- Step %s: SKIPPED (already complete) ---", unit)
            return True
        return False

    def mark_done(self, unit: str) -> None:
        if not unit or any(ch in unit for ch in "\r\n"):
            raise ValueError(f"Invalid checkpoint unit id: {unit!r}")
        if unit in self._done:
            return
        mode = "w" if self._replace_pending else "a"
        with self.path.open(mode, encoding="utf-8") as fh:
            fh.write(unit + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        self._replace_pending = False
        self._order.append(unit)
        self._done.add(unit)
        logger.debug("checkpoint: marked %s", unit)


__all__ = ["Checkpoint"]
