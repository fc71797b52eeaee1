"""CLI entrypoint for Kontecst."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

from kontecst.ingest.loaders import LoaderRegistry

app = typer.Typer(name="ktx", help="Kontecst command-line interface")
packages_app = typer.Typer(name="packages", help="Create and inspect packages")
versions_app = typer.Typer(name="versions", help="Manage package versions")
sync_app = typer.Typer(name="sync", help="Repository sync")
app.add_typer(packages_app, name="packages")
app.add_typer(versions_app, name="versions")
app.add_typer(sync_app, name="sync")

DEFAULT_HOST = "http://127.0.0.1:8000"

HostOption = typer.Option(None, "--host", help="Override backend host")
UserOption = typer.Option(None, "--user", help="Caller user id (defaults to KTX_USER)")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("KTX_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _headers(user: Optional[str]) -> dict[str, str]:
    user_id = user or os.environ.get("KTX_USER")
    return {"X-User-Id": user_id} if user_id else {}


def _request(method: str, path: str, host: Optional[str] = None, user: Optional[str] = None, **kwargs) -> requests.Response:
    url = f"{_resolve_host(host)}{path}"
    try:
        resp = requests.request(method, url, headers=_headers(user), timeout=60, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(resp: requests.Response) -> None:
    if resp.content:
        typer.echo(json.dumps(resp.json(), indent=2))


@packages_app.command("create")
def create_package(
    name: str = typer.Argument(..., help="Package name"),
    slug: Optional[str] = typer.Option(None, "--slug", help="URL slug (derived from the name by default)"),
    visibility: str = typer.Option("private", "--visibility", help="public, private or internal"),
    description: Optional[str] = typer.Option(None, "--description"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Create a package owned by the caller."""
    payload = {"name": name, "slug": slug, "visibility": visibility, "description": description}
    _echo(_request("POST", "/packages", host=host, user=user, json=payload))


@packages_app.command("show")
def show_package(
    package_id: str = typer.Argument(..., help="Package identifier"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Show a package and its versions."""
    _echo(_request("GET", f"/packages/{package_id}", host=host, user=user))
    _echo(_request("GET", f"/packages/{package_id}/versions", host=host, user=user))


@versions_app.command("create")
def create_version(
    package_id: str = typer.Argument(..., help="Package identifier"),
    version: str = typer.Argument(..., help="Semantic version, e.g. 1.0.0"),
    copy_from: Optional[str] = typer.Option(None, "--copy-from", help="Seed with files of this version"),
    description: Optional[str] = typer.Option(None, "--description"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Create a draft version."""
    payload = {"version": version, "description": description, "copy_from_version": copy_from}
    _echo(_request("POST", f"/packages/{package_id}/versions", host=host, user=user, json=payload))


@versions_app.command("lock")
def lock_version(
    version_id: str = typer.Argument(..., help="Version identifier"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Lock a draft and generate its changelog."""
    _echo(_request("POST", f"/versions/{version_id}/lock", host=host, user=user))


@versions_app.command("publish")
def publish_version(
    version_id: str = typer.Argument(..., help="Version identifier"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Publish a locked version."""
    _echo(_request("POST", f"/versions/{version_id}/publish", host=host, user=user))


@app.command()
def ingest(
    version_id: str = typer.Argument(..., help="Draft version identifier"),
    path: Path = typer.Argument(..., help="File or directory to upload"),
    background: bool = typer.Option(False, "--background", help="Queue the upload as a job"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Upload local markdown/text files into a draft version."""
    registry = LoaderRegistry()
    root = path.expanduser().resolve()
    walk_root = root if root.is_dir() else None
    files = []
    for file_path in registry.iter_files(root):
        incoming = registry.load(file_path, walk_root)
        files.append({"path": incoming.path, "content": incoming.content.decode("utf-8"), "mime_type": incoming.mime_type})
    if not files:
        typer.echo(f"No supported files under {path}", err=True)
        raise typer.Exit(code=1)
    payload = {"files": files, "background": background}
    _echo(_request("POST", f"/versions/{version_id}/files", host=host, user=user, json=payload))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    package: Optional[str] = typer.Option(None, "--package", help="Restrict to one package id"),
    limit: int = typer.Option(10, "--limit", help="Number of results to return"),
    keyword: bool = typer.Option(False, "--keyword", help="Use BM25 keyword search"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Search visible package versions."""
    if keyword:
        params: dict[str, object] = {"q": q, "limit": limit}
        if package:
            params["package_id"] = package
        resp = _request("GET", "/search", host=host, user=user, params=params)
    else:
        resp = _request("POST", "/search", host=host, user=user, json={"query": q, "package_id": package, "limit": limit})
    _echo(resp)


@sync_app.command("add")
def add_repository(
    package_id: str = typer.Argument(..., help="Package identifier"),
    repo: str = typer.Argument(..., help="owner/name for GitHub, a directory for --local"),
    branch: str = typer.Option("main", "--branch"),
    sync_path: str = typer.Option("/", "--path", help="Only sync files under this prefix"),
    local: bool = typer.Option(False, "--local", help="Sync from a local directory"),
    auto_publish: bool = typer.Option(False, "--auto-publish"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Link a repository to a package."""
    if local:
        payload = {"provider": "local", "repo_name": str(Path(repo).expanduser().resolve())}
    else:
        owner, _, name = repo.partition("/")
        if not name:
            typer.echo("GitHub repositories are given as owner/name", err=True)
            raise typer.Exit(code=1)
        payload = {"provider": "github", "repo_owner": owner, "repo_name": name}
    payload.update({"branch": branch, "sync_path": sync_path, "auto_publish": auto_publish})
    _echo(_request("POST", f"/packages/{package_id}/repositories", host=host, user=user, json=payload))


@sync_app.command("run")
def trigger_sync(
    repository_id: str = typer.Argument(..., help="Repository identifier"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Trigger a sync; prints the queued job."""
    _echo(_request("POST", f"/repositories/{repository_id}/sync", host=host, user=user))


@sync_app.command("status")
def sync_status(
    job_id: str = typer.Argument(..., help="Sync job identifier"),
    host: Optional[str] = HostOption,
    user: Optional[str] = UserOption,
) -> None:
    """Show a sync job."""
    _echo(_request("GET", f"/sync-jobs/{job_id}", host=host, user=user))


if __name__ == "__main__":
    app()
