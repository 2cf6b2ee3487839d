"""
Workspace - The virtual filesystem an agent reads and writes.

The loop itself never interprets workspace contents. Scripts and native
functions use it. FileSystemWorkspace maps onto a real directory (and is
what a subprocess sandbox runs in); InMemoryWorkspace gives nested agents
an isolated scratch space.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

from scriptagent.errors import WorkspaceError

logger = logging.getLogger(__name__)


class Workspace(Protocol):
    """File read/write by path."""

    @property
    def root(self) -> Path | None: ...

    def read_file(self, path: str) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def rm(self, path: str) -> None: ...

    def mkdir(self, path: str) -> None: ...

    def list_directory(self, path: str = "") -> list[str]: ...


def _normalize(path: str) -> str:
    parts: list[str] = []
    for part in PurePosixPath(path).parts:
        if part in ("/", "."):
            continue
        if part == "..":
            if not parts:
                raise WorkspaceError(f"Path escapes the workspace: {path}")
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


class InMemoryWorkspace:
    """Workspace held in a dict, keyed by normalized path."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self._files: dict[str, str] = {}
        self._dirs: set[str] = set()
        for path, content in (files or {}).items():
            self.write_file(path, content)

    @property
    def root(self) -> Path | None:
        return None

    def read_file(self, path: str) -> str:
        key = _normalize(path)
        if key not in self._files:
            raise WorkspaceError(f"File not found: {path}")
        return self._files[key]

    def write_file(self, path: str, content: str) -> None:
        key = _normalize(path)
        parent = PurePosixPath(key).parent
        while str(parent) not in (".", ""):
            self._dirs.add(str(parent))
            parent = parent.parent
        self._files[key] = content

    def exists(self, path: str) -> bool:
        key = _normalize(path)
        return key in self._files or key in self._dirs or key == ""

    def rm(self, path: str) -> None:
        key = _normalize(path)
        if key not in self._files:
            raise WorkspaceError(f"File not found: {path}")
        del self._files[key]

    def mkdir(self, path: str) -> None:
        key = _normalize(path)
        if key:
            self._dirs.add(key)

    def snapshot(self) -> dict[str, str]:
        """Copy of every file, keyed by normalized path."""
        return dict(self._files)

    def restore(self, files: dict[str, str]) -> None:
        """Replace the file set with the one a script run left behind."""
        self._files = {}
        for path, content in files.items():
            self.write_file(path, content)
        logger.debug(f"Workspace restored with {len(files)} files")

    def list_directory(self, path: str = "") -> list[str]:
        """Immediate children of a directory, sorted."""
        key = _normalize(path)
        prefix = f"{key}/" if key else ""
        entries = set()
        for candidate in [*self._files, *self._dirs]:
            if candidate.startswith(prefix) and candidate != key:
                entries.add(candidate[len(prefix):].split("/", 1)[0])
        return sorted(entries)


class FileSystemWorkspace:
    """Workspace rooted at a real directory. Paths may not escape the root."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        return self._root / _normalize(path)

    def read_file(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise WorkspaceError(f"File not found: {path}")
        return target.read_text()

    def write_file(self, path: str, content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        logger.debug(f"Wrote {len(content)} chars to {target}")

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def rm(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise WorkspaceError(f"File not found: {path}")
        target.unlink()

    def mkdir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def list_directory(self, path: str = "") -> list[str]:
        target = self._resolve(path)
        if not target.is_dir():
            raise WorkspaceError(f"Not a directory: {path}")
        return sorted(p.name for p in target.iterdir())
