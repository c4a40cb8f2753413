from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List


class JsonlLogger:
    """Append-only structured event log; a no-op sink when no path is given."""

    def __init__(self, path: str | Path | None = None, keep: bool = False) -> None:
        self._path = Path(path) if path else None
        self._fh = None
        self.records: List[Dict[str, Any]] = []
        self._keep = keep
        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self._path.open("w", encoding="utf-8")

    def log(self, event: str, **kwargs: Any) -> None:
        row = {"event": event, **kwargs}
        if self._keep:
            self.records.append(row)
        if not self._fh:
            return
        self._fh.write(json.dumps(row, sort_keys=True) + "\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None
