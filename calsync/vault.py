from __future__ import annotations

import os
from pathlib import Path

MARKDOWN_SUFFIX = ".md"


class Vault:
    """Read-only access to markdown documents below a root directory.

    Documents are addressed by their POSIX path relative to the root; that path
    is the scope of every sync entry.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def _resolve(self, document_path: str) -> Path:
        candidate = Path(document_path)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    def document_path(self, path: str | os.PathLike[str]) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                return candidate.resolve().relative_to(self.root.resolve()).as_posix()
            except ValueError:
                return candidate.as_posix()
        return candidate.as_posix()

    def read(self, document_path: str) -> str:
        return self._resolve(document_path).read_text(encoding="utf-8")

    def markdown_files(self) -> list[str]:
        documents: list[str] = []
        for path in self.root.rglob(f"*{MARKDOWN_SUFFIX}"):
            relative = path.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.is_file():
                documents.append(relative.as_posix())
        return sorted(documents)
