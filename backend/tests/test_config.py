"""Settings loading tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from kontecst.core.config import Settings


def test_yaml_sections_map_to_fields_and_env_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        "  max_file_size_bytes: 2048\n"
        "chunking:\n"
        "  max_tokens: 256\n"
        "  overlap_tokens: 32\n"
        "sync:\n"
        "  include_suffixes: ['.md', '.txt']\n"
    )
    monkeypatch.setenv("KTX_CHUNK_OVERLAP_TOKENS", "16")
    monkeypatch.setenv("KTX_SYNC_INCLUDE_SUFFIXES", ".md, .rst")

    settings = Settings.from_yaml(config)

    assert settings.max_file_size_bytes == 2048
    assert settings.chunk_max_tokens == 256
    assert settings.chunk_overlap_tokens == 16
    assert settings.sync_include_suffixes == [".md", ".rst"]


def test_missing_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings = Settings.from_yaml(tmp_path / "absent.yaml")
    assert settings.chunk_max_tokens == 512
    assert settings.chunk_overlap_tokens == 50
    assert settings.embedding_provider == "hashed"


def test_inconsistent_windows_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "x.db", chunk_max_tokens=50, chunk_overlap_tokens=50)
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "x.db", search_default_limit=20, search_max_limit=10)
