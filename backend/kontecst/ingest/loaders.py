"""Local file loaders for supported text formats."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from kontecst.core.errors import ValidationError
from kontecst.ingest.types import IncomingFile


class BaseLoader:
    """Common loader interface."""

    suffixes: tuple[str, ...] = ()
    mime_type: str = "text/plain"

    def can_load(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    def load(self, path: Path, relative_path: str) -> IncomingFile:
        raw = path.read_bytes()
        try:
            raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"{relative_path} is not valid UTF-8 text") from exc
        return IncomingFile(path=relative_path, content=raw, mime_type=self.mime_type)


class MarkdownLoader(BaseLoader):
    suffixes = (".md", ".markdown", ".mdx")
    mime_type = "text/markdown"


class TextLoader(BaseLoader):
    suffixes = (".txt", ".text", ".rst")
    mime_type = "text/plain"


class LoaderRegistry:
    """Registry that selects an appropriate loader for a path."""

    def __init__(self) -> None:
        self._loaders: list[BaseLoader] = [
            MarkdownLoader(),
            TextLoader(),
        ]

    def register(self, loader: BaseLoader) -> None:
        self._loaders.append(loader)

    def for_path(self, path: Path) -> BaseLoader | None:
        for loader in self._loaders:
            if loader.can_load(path):
                return loader
        return None

    def load(self, path: Path, root: Path | None = None) -> IncomingFile:
        loader = self.for_path(path)
        if loader is None:
            raise ValidationError(f"No loader registered for suffix {path.suffix!r}")
        relative = path.relative_to(root).as_posix() if root else path.name
        return loader.load(path, relative)

    def iter_files(self, path: Path) -> Iterator[Path]:
        """Yield loadable files under ``path`` (or ``path`` itself) in sorted order."""
        if path.is_file():
            yield path
            return
        for candidate in sorted(path.rglob("*")):
            if candidate.is_file() and self.for_path(candidate) is not None:
                if any(part.startswith(".") for part in candidate.relative_to(path).parts):
                    continue
                yield candidate


__all__ = ["LoaderRegistry", "BaseLoader", "MarkdownLoader", "TextLoader"]
