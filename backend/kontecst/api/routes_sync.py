"""Repository sync routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kontecst.api.access import owned_package
from kontecst.api.dependencies import get_lifecycle, get_sync_coordinator, require_user_id
from kontecst.models.dto import RepositoryCreateRequest, RepositoryResponse, SyncJobResponse
from kontecst.sync.coordinator import SyncCoordinator
from kontecst.versions.lifecycle import VersionLifecycle

router = APIRouter()


@router.post(
    "/packages/{package_id}/repositories",
    response_model=RepositoryResponse,
    status_code=201,
    summary="Link a repository to a package",
)
async def register_repository(
    package_id: str,
    request: RepositoryCreateRequest,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> RepositoryResponse:
    owned_package(lifecycle, package_id, user_id)
    repository = coordinator.register_repository(
        package_id=package_id,
        owner_id=user_id,
        provider=request.provider,
        repo_name=request.repo_name,
        repo_owner=request.repo_owner,
        branch=request.branch,
        sync_path=request.sync_path,
        auto_publish=request.auto_publish,
    )
    return RepositoryResponse.model_validate(repository)


@router.get(
    "/packages/{package_id}/repositories",
    response_model=list[RepositoryResponse],
    summary="List linked repositories",
)
async def list_repositories(
    package_id: str,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> list[RepositoryResponse]:
    owned_package(lifecycle, package_id, user_id)
    return [RepositoryResponse.model_validate(item) for item in coordinator.list_repositories(package_id)]


@router.get("/repositories/{repository_id}", response_model=RepositoryResponse, summary="Get a repository")
async def get_repository(
    repository_id: str,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> RepositoryResponse:
    repository = coordinator.get_repository(repository_id)
    owned_package(lifecycle, repository.package_id, user_id)
    return RepositoryResponse.model_validate(repository)


@router.post(
    "/repositories/{repository_id}/sync",
    response_model=SyncJobResponse,
    status_code=202,
    summary="Trigger a sync",
)
async def trigger_sync(
    repository_id: str,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> SyncJobResponse:
    repository = coordinator.get_repository(repository_id)
    owned_package(lifecycle, repository.package_id, user_id)
    return SyncJobResponse.model_validate(coordinator.trigger(repository_id, user_id))


@router.get(
    "/repositories/{repository_id}/jobs",
    response_model=list[SyncJobResponse],
    summary="Recent sync jobs of a repository",
)
async def list_sync_jobs(
    repository_id: str,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> list[SyncJobResponse]:
    repository = coordinator.get_repository(repository_id)
    owned_package(lifecycle, repository.package_id, user_id)
    return [SyncJobResponse.model_validate(job) for job in coordinator.list_jobs(repository_id)]


@router.get("/sync-jobs/{job_id}", response_model=SyncJobResponse, summary="Poll a sync job")
async def get_sync_job(
    job_id: str,
    user_id: str = Depends(require_user_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> SyncJobResponse:
    job = coordinator.get_job(job_id)
    repository = coordinator.get_repository(job.repository_id)
    owned_package(lifecycle, repository.package_id, user_id)
    return SyncJobResponse.model_validate(job)


__all__ = ["router"]
