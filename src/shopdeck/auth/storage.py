"""Key/value backends for persisted session data.

Learn: The repository reads and writes whole documents (load → modify →
save) so that a single save covers every key alias at once. MemoryStorage
lives as long as the process; FileStorage survives restarts and is what
the CLI uses between invocations.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol


class TokenStorage(Protocol):
    """Anything that can load and save a flat str → str document."""

    def load(self) -> dict[str, str]: ...

    def save(self, data: dict[str, str]) -> None: ...


class MemoryStorage:
    """Process-local storage. Copies on the way in and out."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def load(self) -> dict[str, str]:
        return dict(self._data)

    def save(self, data: dict[str, str]) -> None:
        self._data = dict(data)


class FileStorage:
    """JSON document on disk, replaced atomically on every save.

    Raises OSError / ValueError on failure; the repository decides what
    a failure means.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in raw.items() if v is not None}

    def save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".tokens-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def storage_from_path(path: str) -> TokenStorage:
    """Build the backend for a configured path (empty → memory only)."""
    return FileStorage(path) if path else MemoryStorage()
