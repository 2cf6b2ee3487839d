"""
Script repository.

Maps script names (e.g. "fs.writeFile") to script bodies. Scripts can be
added at runtime (the script writer agent does this) or loaded from a
directory of "<name>.py" files, each with an optional "<name>.json"
sidecar holding its description and argument signature.
"""

import json
import logging
from pathlib import Path

from scriptagent.types import Script

logger = logging.getLogger(__name__)


class Scripts:
    """In-memory script repository keyed by script name."""

    def __init__(self, scripts: list[Script] | None = None) -> None:
        self._scripts: dict[str, Script] = {}
        for script in scripts or []:
            self.add_script(script)

    def add_script(self, script: Script) -> None:
        if script.name in self._scripts:
            logger.info(f"Replacing script: {script.name}")
        self._scripts[script.name] = script

    def get_script_by_name(self, name: str) -> Script | None:
        return self._scripts.get(name)

    def search(self, query: str, limit: int = 10) -> list[Script]:
        """
        Find scripts whose name or description mention any query term.

        Results are ordered by the number of matching terms, then by name.
        """
        terms = [t for t in query.lower().split() if t]
        if not terms:
            return []

        scored: list[tuple[int, str, Script]] = []
        for script in self._scripts.values():
            haystack = f"{script.name} {script.description}".lower()
            score = sum(1 for t in terms if t in haystack)
            if score:
                scored.append((-score, script.name, script))

        scored.sort(key=lambda item: (item[0], item[1]))
        return [script for _, _, script in scored[:limit]]

    @property
    def names(self) -> list[str]:
        return sorted(self._scripts)

    def __len__(self) -> int:
        return len(self._scripts)

    def __contains__(self, name: str) -> bool:
        return name in self._scripts

    @classmethod
    def from_directory(cls, path: str | Path) -> "Scripts":
        """Load every <name>.py file in a directory as a script."""
        directory = Path(path).expanduser()
        repo = cls()
        for code_file in sorted(directory.glob("*.py")):
            name = code_file.stem
            description = ""
            arguments = ""
            sidecar = code_file.with_suffix(".json")
            if sidecar.exists():
                meta = json.loads(sidecar.read_text())
                description = meta.get("description", "")
                arguments = meta.get("arguments", "")
            repo.add_script(Script(
                name=name,
                code=code_file.read_text(),
                description=description,
                arguments=arguments,
            ))
        logger.info(f"Loaded {len(repo)} scripts from {directory}")
        return repo
