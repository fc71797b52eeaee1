"""Package and version lifecycle routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kontecst.api.access import owned_package, owned_version, readable_package, readable_version
from kontecst.api.dependencies import get_lifecycle, get_user_id, require_user_id
from kontecst.models.dto import (
    PackageCreateRequest,
    PackageResponse,
    VersionCreateRequest,
    VersionResponse,
)
from kontecst.versions.lifecycle import VersionLifecycle

router = APIRouter()


@router.post("/packages", response_model=PackageResponse, status_code=201, summary="Create a package")
async def create_package(
    request: PackageCreateRequest,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> PackageResponse:
    package = lifecycle.create_package(
        name=request.name,
        owner_id=user_id,
        visibility=request.visibility,
        slug=request.slug,
        description=request.description,
    )
    return PackageResponse.model_validate(package)


@router.get("/packages/{package_id}", response_model=PackageResponse, summary="Get a package")
async def get_package(
    package_id: str,
    user_id: str | None = Depends(get_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> PackageResponse:
    return PackageResponse.model_validate(readable_package(lifecycle, package_id, user_id))


@router.post("/packages/{package_id}/archive", response_model=PackageResponse, summary="Archive a package")
async def archive_package(
    package_id: str,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> PackageResponse:
    owned_package(lifecycle, package_id, user_id)
    return PackageResponse.model_validate(lifecycle.archive_package(package_id))


@router.post(
    "/packages/{package_id}/versions",
    response_model=VersionResponse,
    status_code=201,
    summary="Create a draft version",
)
async def create_version(
    package_id: str,
    request: VersionCreateRequest,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> VersionResponse:
    owned_package(lifecycle, package_id, user_id)
    version = lifecycle.create_version(
        package_id,
        request.version,
        description=request.description,
        copy_from_version=request.copy_from_version,
    )
    return VersionResponse.model_validate(version)


@router.get("/packages/{package_id}/versions", response_model=list[VersionResponse], summary="List versions")
async def list_versions(
    package_id: str,
    user_id: str | None = Depends(get_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> list[VersionResponse]:
    package = readable_package(lifecycle, package_id, user_id)
    versions = lifecycle.list_versions(package_id)
    if package.owner_id != user_id:
        versions = [version for version in versions if version.state == "published"]
    return [VersionResponse.model_validate(version) for version in versions]


@router.get("/versions/{version_id}", response_model=VersionResponse, summary="Get a version")
async def get_version(
    version_id: str,
    user_id: str | None = Depends(get_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> VersionResponse:
    return VersionResponse.model_validate(readable_version(lifecycle, version_id, user_id))


@router.post("/versions/{version_id}/lock", response_model=VersionResponse, summary="Lock a draft")
async def lock_version(
    version_id: str,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> VersionResponse:
    owned_version(lifecycle, version_id, user_id)
    return VersionResponse.model_validate(lifecycle.lock(version_id, user_id))


@router.post("/versions/{version_id}/publish", response_model=VersionResponse, summary="Publish a locked version")
async def publish_version(
    version_id: str,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> VersionResponse:
    owned_version(lifecycle, version_id, user_id)
    return VersionResponse.model_validate(lifecycle.publish(version_id, user_id))


@router.post(
    "/versions/{version_id}/recalculate",
    response_model=VersionResponse,
    summary="Recount file statistics",
)
async def recalculate_version(
    version_id: str,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> VersionResponse:
    owned_version(lifecycle, version_id, user_id)
    return VersionResponse.model_validate(lifecycle.recalculate_stats(version_id))


@router.delete("/versions/{version_id}", status_code=204, summary="Delete a draft version")
async def delete_version(
    version_id: str,
    user_id: str = Depends(require_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> None:
    owned_version(lifecycle, version_id, user_id)
    lifecycle.delete_version(version_id)


__all__ = ["router"]
