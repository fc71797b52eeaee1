"""Remote repository providers used by the sync coordinator."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import requests

from kontecst.core.errors import NotFoundError, ProviderError
from kontecst.core.logging import get_logger
from kontecst.models.entities import Repository

logger = get_logger(__name__)


@dataclass(slots=True)
class RemoteFile:
    """A file listed in a remote tree; ``ref`` is provider-specific."""

    path: str
    ref: str
    size: int | None = None


class RemoteRepositoryProvider(Protocol):
    name: str

    def head_commit(self, repository: Repository) -> str:  # pragma: no cover - interface
        ...

    def list_files(self, repository: Repository, commit: str) -> list[RemoteFile]:  # pragma: no cover - interface
        ...

    def fetch(self, repository: Repository, remote: RemoteFile) -> bytes:  # pragma: no cover - interface
        ...


def path_selected(path: str, sync_path: str, suffixes: Sequence[str]) -> bool:
    """Whether a repository path falls under ``sync_path`` with an allowed suffix."""
    prefix = sync_path.strip("/")
    if prefix and not (path == prefix or path.startswith(prefix + "/")):
        return False
    lowered = path.lower()
    return any(lowered.endswith(suffix.lower()) for suffix in suffixes)


class GitHubProvider:
    """GitHub REST API: branch head, recursive tree and blob contents."""

    name = "github"

    def __init__(
        self,
        token: str | None = None,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def head_commit(self, repository: Repository) -> str:
        payload = self._get(f"{self._repo_url(repository)}/branches/{repository.branch}")
        try:
            return str(payload["commit"]["sha"])
        except (KeyError, TypeError) as exc:
            raise ProviderError("Malformed branch response from GitHub", retryable=False) from exc

    def list_files(self, repository: Repository, commit: str) -> list[RemoteFile]:
        payload = self._get(f"{self._repo_url(repository)}/git/trees/{commit}", params={"recursive": "1"})
        if payload.get("truncated"):
            logger.warning("GitHub tree for %s/%s is truncated", repository.repo_owner, repository.repo_name)
        return [
            RemoteFile(path=item["path"], ref=item["sha"], size=item.get("size"))
            for item in payload.get("tree", [])
            if item.get("type") == "blob"
        ]

    def fetch(self, repository: Repository, remote: RemoteFile) -> bytes:
        payload = self._get(f"{self._repo_url(repository)}/git/blobs/{remote.ref}")
        if payload.get("encoding") != "base64":
            raise ProviderError(f"Unsupported blob encoding for {remote.path}", retryable=False)
        try:
            return base64.b64decode(payload.get("content", ""))
        except ValueError as exc:
            raise ProviderError(f"Could not decode blob for {remote.path}", retryable=False) from exc

    def _repo_url(self, repository: Repository) -> str:
        return f"{self.api_base}/repos/{repository.repo_owner}/{repository.repo_name}"

    def _get(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise ProviderError(f"GitHub request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise ProviderError(f"GitHub request failed: {exc}") from exc
        if resp.status_code in (401, 403):
            raise ProviderError(f"GitHub authentication failed ({resp.status_code})", retryable=False)
        if resp.status_code == 404:
            raise ProviderError(f"GitHub resource not found: {url}", retryable=False)
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderError(f"GitHub returned {resp.status_code}")
        if not resp.ok:
            raise ProviderError(f"GitHub rejected request ({resp.status_code})", retryable=False)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError("Malformed response from GitHub", retryable=False) from exc


class LocalDirectoryProvider:
    """A directory on disk treated as a repository.

    ``repo_name`` holds the directory. The commit id is a digest of every
    file's path, size and modification time, so any edit yields a new one.
    """

    name = "local"

    def head_commit(self, repository: Repository) -> str:
        digest = hashlib.sha256()
        for path in self._walk(repository):
            stat = path.stat()
            digest.update(f"{self._relative(repository, path)}\0{stat.st_size}\0{stat.st_mtime_ns}\n".encode("utf-8"))
        return digest.hexdigest()

    def list_files(self, repository: Repository, commit: str) -> list[RemoteFile]:
        return [
            RemoteFile(path=self._relative(repository, path), ref=str(path), size=path.stat().st_size)
            for path in self._walk(repository)
        ]

    def fetch(self, repository: Repository, remote: RemoteFile) -> bytes:
        try:
            return Path(remote.ref).read_bytes()
        except OSError as exc:
            raise ProviderError(f"Could not read {remote.path}: {exc}", retryable=False) from exc

    def _root(self, repository: Repository) -> Path:
        root = Path(repository.repo_name).expanduser()
        if not root.is_dir():
            raise ProviderError(f"Local repository {root} is not a directory", retryable=False)
        return root

    def _walk(self, repository: Repository) -> list[Path]:
        root = self._root(repository)
        return [
            path
            for path in sorted(root.rglob("*"))
            if path.is_file() and not any(part.startswith(".") for part in path.relative_to(root).parts)
        ]

    def _relative(self, repository: Repository, path: Path) -> str:
        return path.relative_to(self._root(repository)).as_posix()


def provider_for(repository: Repository, providers: dict[str, RemoteRepositoryProvider]) -> RemoteRepositoryProvider:
    try:
        return providers[repository.provider]
    except KeyError as exc:
        raise NotFoundError(f"No provider configured for {repository.provider!r}") from exc


__all__ = [
    "RemoteFile",
    "RemoteRepositoryProvider",
    "GitHubProvider",
    "LocalDirectoryProvider",
    "path_selected",
    "provider_for",
]
