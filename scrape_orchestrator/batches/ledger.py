"""Record of batches already handed to the corpus link endpoint."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class LinkLedger:
    """Batch id -> corpus id (``None`` until a link succeeds).

    Kept in memory, and mirrored to a JSON file when ``path`` is given so a
    restarted client does not link the same batch twice.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._entries: Dict[str, Optional[str]] = {}
        if self.path is not None and self.path.exists():
            self._entries = self._read()

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def batch_ids(self) -> List[str]:
        return list(self._entries)

    def corpus_id(self, batch_id: str) -> Optional[str]:
        return self._entries.get(batch_id)

    def add(self, batch_id: str) -> bool:
        """Claim ``batch_id``; returns False if it was already claimed."""

        if batch_id in self._entries:
            return False
        self._entries[batch_id] = None
        self._write()
        return True

    def record(self, batch_id: str, corpus_id: str) -> None:
        self._entries[batch_id] = corpus_id
        self._write()

    def _read(self) -> Dict[str, Optional[str]]:
        assert self.path is not None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable link ledger %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring link ledger %s with unexpected layout", self.path)
            return {}
        return {str(key): (str(value) if value else None) for key, value in data.items()}

    def _write(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._entries, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)


__all__ = ["LinkLedger"]
