"""Ownership and visibility checks for route handlers.

Callers that may not see a resource get ``NotFoundError`` so that private
packages do not leak their existence.
"""

from __future__ import annotations

from kontecst.core.errors import NotFoundError
from kontecst.models.entities import Package, PackageVersion
from kontecst.versions.lifecycle import VersionLifecycle


def owned_package(lifecycle: VersionLifecycle, package_id: str, user_id: str) -> Package:
    package = lifecycle.get_package(package_id)
    if package.owner_id != user_id:
        raise NotFoundError(f"Package {package_id} not found")
    return package


def owned_version(lifecycle: VersionLifecycle, version_id: str, user_id: str) -> PackageVersion:
    version = lifecycle.get_version(version_id)
    owned_package(lifecycle, version.package_id, user_id)
    return version


def readable_package(lifecycle: VersionLifecycle, package_id: str, user_id: str | None) -> Package:
    package = lifecycle.get_package(package_id)
    if package.owner_id != user_id and (package.visibility != "public" or package.is_archived):
        raise NotFoundError(f"Package {package_id} not found")
    return package


def readable_version(lifecycle: VersionLifecycle, version_id: str, user_id: str | None) -> PackageVersion:
    version = lifecycle.get_version(version_id)
    package = readable_package(lifecycle, version.package_id, user_id)
    if package.owner_id != user_id and version.state != "published":
        raise NotFoundError(f"Version {version_id} not found")
    return version


__all__ = ["owned_package", "owned_version", "readable_package", "readable_version"]
