from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Protocol, Union


class CoachStorage(Protocol):
    """Load/save port for the coach's persisted state blob (JSON text)."""

    def load(self) -> Optional[str]:
        ...

    def save(self, blob: str) -> None:
        ...


class InMemoryStorage:
    def __init__(self, blob: Optional[str] = None):
        self.blob = blob
        self.saves = 0

    def load(self) -> Optional[str]:
        return self.blob

    def save(self, blob: str) -> None:
        self.blob = blob
        self.saves += 1


class JsonFileStorage:
    """Keeps the blob in a single file; a missing file loads as ``None``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read()

    def save(self, blob: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(blob)
        os.replace(tmp_path, self.path)
