"""Version lifecycle tests."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from kontecst.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from kontecst.ingest.types import IncomingFile
from kontecst.versions.changelog import NO_CHANGES, FileChange, diff_file_sets, render_changelog


def _ingest(pipeline, version_id: str, **files: str) -> None:
    pipeline.ingest(
        version_id,
        [IncomingFile(path=f"{name}.md", content=text.encode("utf-8")) for name, text in files.items()],
    )


def test_package_slug_and_validation(lifecycle) -> None:
    package = lifecycle.create_package("My Team Docs!", owner_id="alice")
    assert package.slug == "my-team-docs"
    assert package.visibility == "private"
    with pytest.raises(ConflictError):
        lifecycle.create_package("my team docs", owner_id="bob")
    with pytest.raises(ValidationError):
        lifecycle.create_package("Other", owner_id="alice", visibility="secret")
    with pytest.raises(ValidationError):
        lifecycle.create_package("!!!", owner_id="alice")


def test_version_strings_are_semver_and_unique(lifecycle, package) -> None:
    lifecycle.create_version(package.id, "1.0.0")
    with pytest.raises(ValidationError):
        lifecycle.create_version(package.id, "v1.0")
    with pytest.raises(ConflictError):
        lifecycle.create_version(package.id, "1.0.0")
    with pytest.raises(NotFoundError):
        lifecycle.create_version("pkg_missing", "1.0.0")


def test_versions_list_newest_semver_first(lifecycle, package) -> None:
    for version in ("1.2.0", "1.10.0", "0.9.9"):
        lifecycle.create_version(package.id, version)
    assert [item.version for item in lifecycle.list_versions(package.id)] == ["1.10.0", "1.2.0", "0.9.9"]
    assert lifecycle.next_patch_version(package.id) == "1.10.1"


def test_state_machine_only_moves_forward(lifecycle, pipeline, draft, audit) -> None:
    with pytest.raises(InvalidStateError):
        lifecycle.publish(draft.id, "alice")

    _ingest(pipeline, draft.id, readme="hello")
    locked = lifecycle.lock(draft.id, "alice")
    assert locked.state == "locked"
    assert locked.locked_by == "alice"
    assert locked.locked_at is not None
    assert locked.changelog.startswith("- Add `readme.md`")

    with pytest.raises(InvalidStateError):
        lifecycle.lock(draft.id, "alice")

    published = lifecycle.publish(draft.id, "alice")
    assert published.state == "published"
    assert published.published_by == "alice"
    with pytest.raises(InvalidStateError):
        lifecycle.publish(draft.id, "alice")
    with pytest.raises(InvalidStateError):
        lifecycle.delete_version(draft.id)

    assert [name for name in audit.names() if name.startswith("version.")] == ["version.locked", "version.published"]


def test_identical_content_yields_no_changes(lifecycle, pipeline, package) -> None:
    first = lifecycle.create_version(package.id, "1.0.0")
    _ingest(pipeline, first.id, guide="same text")
    lifecycle.lock(first.id)

    second = lifecycle.create_version(package.id, "1.0.1")
    _ingest(pipeline, second.id, guide="same text")
    locked = lifecycle.lock(second.id)

    assert locked.changelog == NO_CHANGES
    assert locked.file_count == 1


def test_changelog_lists_changes_against_previous_release(lifecycle, pipeline, package) -> None:
    first = lifecycle.create_version(package.id, "1.0.0")
    _ingest(pipeline, first.id, keep="unchanged", edit="old text", gone="to be removed")
    lifecycle.lock(first.id)
    lifecycle.create_version(package.id, "1.0.5")  # unlocked drafts are not a baseline

    second = lifecycle.create_version(package.id, "1.1.0")
    _ingest(pipeline, second.id, keep="unchanged", edit="new text", fresh="brand new")
    changelog = lifecycle.lock(second.id).changelog

    assert changelog.splitlines()[:5] == [
        "Changes since 1.0.0:",
        "",
        "- Add `fresh.md`",
        "- Update `edit.md`",
        "- Remove `gone.md`",
    ]
    assert "keep.md" not in changelog


def test_lock_recount_heals_counter_drift(lifecycle, pipeline, draft, db) -> None:
    _ingest(pipeline, draft.id, a="alpha", b="beta")
    db.execute("UPDATE package_versions SET file_count = 99, total_size_bytes = 1 WHERE id = ?", [draft.id])
    db.commit()

    healed = lifecycle.recalculate_stats(draft.id)
    assert (healed.file_count, healed.total_size_bytes) == (2, 9)

    db.execute("UPDATE package_versions SET file_count = 7 WHERE id = ?", [draft.id])
    db.commit()
    assert lifecycle.lock(draft.id).file_count == 2


def test_lock_holds_the_write_lock_while_counting(lifecycle, pipeline, draft, settings, monkeypatch) -> None:
    _ingest(pipeline, draft.id, a="alpha")
    blocked: list[str] = []
    fingerprints = lifecycle.store.fingerprints

    def writer_from_another_process(version_id: str):
        other = sqlite3.connect(settings.db_path, timeout=0)
        try:
            other.execute("UPDATE packages SET description = 'edited elsewhere'")
            other.commit()
        except sqlite3.OperationalError as exc:
            blocked.append(str(exc))
        finally:
            other.close()
        return fingerprints(version_id)

    monkeypatch.setattr(lifecycle.store, "fingerprints", writer_from_another_process)
    locked = lifecycle.lock(draft.id)

    assert locked.file_count == 1
    assert blocked and "locked" in blocked[0]


def test_concurrent_locks_have_one_winner(lifecycle, draft) -> None:
    outcomes: list[str] = []
    barrier = threading.Barrier(2)

    def attempt() -> None:
        barrier.wait()
        try:
            lifecycle.lock(draft.id)
            outcomes.append("locked")
        except InvalidStateError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["locked", "rejected"]


def test_copy_from_version_seeds_files_and_index(lifecycle, pipeline, package, vector_index, provider) -> None:
    base = lifecycle.create_version(package.id, "1.0.0")
    _ingest(pipeline, base.id, a="alpha text", b="beta text")
    lifecycle.lock(base.id)
    calls = provider.calls

    copy = lifecycle.create_version(package.id, "1.1.0", copy_from_version="1.0.0")

    assert copy.state == "draft"
    assert copy.file_count == 2
    assert vector_index.version_size(copy.id) == vector_index.version_size(base.id) == 2
    assert provider.calls == calls
    with pytest.raises(NotFoundError):
        lifecycle.create_version(package.id, "2.0.0", copy_from_version="9.9.9")


def test_delete_draft_cascades(lifecycle, pipeline, draft, db, vector_index) -> None:
    _ingest(pipeline, draft.id, a="alpha")
    lifecycle.delete_version(draft.id)

    assert db.query_one("SELECT COUNT(*) AS n FROM files WHERE version_id = ?", [draft.id])["n"] == 0
    assert db.query_one("SELECT COUNT(*) AS n FROM chunks WHERE version_id = ?", [draft.id])["n"] == 0
    assert db.query_one("SELECT COUNT(*) AS n FROM embeddings WHERE version_id = ?", [draft.id])["n"] == 0
    assert vector_index.version_size(draft.id) == 0
    with pytest.raises(NotFoundError):
        lifecycle.get_version(draft.id)


def test_archived_package_is_frozen(lifecycle, pipeline, package, draft) -> None:
    lifecycle.archive_package(package.id)
    with pytest.raises(InvalidStateError):
        lifecycle.create_version(package.id, "2.0.0")
    with pytest.raises(InvalidStateError):
        _ingest(pipeline, draft.id, a="alpha")


def test_diff_without_previous_marks_everything_added() -> None:
    changes = diff_file_sets({"b.md": "2", "a.md": "1"}, None)
    assert changes == [FileChange("added", "a.md"), FileChange("added", "b.md")]
    assert render_changelog([]) == NO_CHANGES
    assert render_changelog(changes).endswith("2 file(s) changed: 2 added.")
