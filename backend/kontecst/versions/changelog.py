"""Changelog generation from file-set differences.

Files are compared by path and content hash only; a rename shows up as one
removal plus one addition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping

NO_CHANGES = "No changes detected in this version."

ChangeKind = Literal["added", "modified", "removed"]

_ORDER: dict[str, int] = {"added": 0, "modified": 1, "removed": 2}
_HEADINGS: dict[str, str] = {"added": "Add", "modified": "Update", "removed": "Remove"}


@dataclass(frozen=True, slots=True)
class FileChange:
    kind: ChangeKind
    path: str


def diff_file_sets(current: Mapping[str, str], previous: Mapping[str, str] | None) -> list[FileChange]:
    """Compare ``path -> content hash`` maps; no previous set means all added."""
    previous = previous or {}
    changes: list[FileChange] = []
    for path, digest in current.items():
        if path not in previous:
            changes.append(FileChange("added", path))
        elif previous[path] != digest:
            changes.append(FileChange("modified", path))
    for path in previous:
        if path not in current:
            changes.append(FileChange("removed", path))
    changes.sort(key=lambda change: (_ORDER[change.kind], change.path))
    return changes


def render_changelog(changes: list[FileChange], previous_version: str | None = None) -> str:
    """Render changes as a markdown bullet list."""
    if not changes:
        return NO_CHANGES
    lines: list[str] = []
    if previous_version:
        lines.append(f"Changes since {previous_version}:")
        lines.append("")
    for change in changes:
        lines.append(f"- {_HEADINGS[change.kind]} `{change.path}`")
    counts = {kind: sum(1 for change in changes if change.kind == kind) for kind in _ORDER}
    summary = ", ".join(f"{count} {kind}" for kind, count in counts.items() if count)
    lines.append("")
    lines.append(f"{len(changes)} file(s) changed: {summary}.")
    return "\n".join(lines)


__all__ = ["FileChange", "diff_file_sets", "render_changelog", "NO_CHANGES"]
