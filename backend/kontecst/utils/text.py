"""Text processing helpers."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from kontecst.core.errors import ValidationError

_SLUG_RE = re.compile(r"[^a-z0-9-]+")
_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


def slugify(value: str) -> str:
    """Lowercase and replace anything outside ``[a-z0-9-]`` with dashes."""
    slug = _SLUG_RE.sub("-", value.strip().lower()).strip("-")
    if not slug:
        raise ValidationError(f"Cannot derive a slug from {value!r}")
    return slug


def parse_semver(version: str) -> tuple[int, int, int]:
    """Parse ``MAJOR.MINOR.PATCH`` into a sortable tuple."""
    match = _SEMVER_RE.match(version or "")
    if not match:
        raise ValidationError(f"Version {version!r} must be valid semver (e.g. 1.0.0)")
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch)


def normalize_path(path: str) -> str:
    """Normalize a package-relative file path.

    Backslashes become forward slashes, leading slashes and ``.`` segments are
    dropped. Empty paths and ``..`` segments are rejected.
    """
    cleaned = (path or "").replace("\\", "/").strip()
    parts = [part for part in cleaned.split("/") if part not in ("", ".")]
    if not parts:
        raise ValidationError("File path must not be empty")
    if any(part == ".." for part in parts):
        raise ValidationError(f"File path {path!r} must not contain '..'")
    return str(PurePosixPath(*parts))
