"""Ingest API routes."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path

from fastapi import APIRouter, Depends, Query

from kontecst.api.access import owned_version, readable_version
from kontecst.api.dependencies import (
    get_content_store,
    get_ingest_pipeline,
    get_lifecycle,
    get_user_id,
    require_user_id,
)
from kontecst.content.store import ContentStore
from kontecst.core.errors import NotFoundError, ValidationError
from kontecst.ingest.pipeline import IngestPipeline
from kontecst.ingest.types import IncomingFile
from kontecst.models.dto import FileResponse, IngestJobResponse, IngestRequest, IngestResponse, UploadFile
from kontecst.versions.lifecycle import VersionLifecycle

router = APIRouter()


@router.post("/versions/{version_id}/files", response_model=IngestResponse, summary="Ingest files into a draft")
async def ingest_files(
    version_id: str,
    request: IngestRequest,
    user_id: str = Depends(require_user_id),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> IngestResponse:
    owned_version(lifecycle, version_id, user_id)
    if request.paths and request.files:
        raise ValidationError("Send either files or paths, not both")
    if request.paths:
        if request.background:
            raise ValidationError("Local paths cannot be ingested in the background")
        report = pipeline.ingest_paths(version_id, [Path(path).expanduser() for path in request.paths])
        return IngestResponse(**report.to_dict())
    files = [_decode(upload) for upload in request.files]
    if request.background:
        job_id = pipeline.submit(version_id, files)
        return IngestResponse(version_id=version_id, job_id=job_id)
    report = pipeline.ingest(version_id, files)
    return IngestResponse(**report.to_dict())


@router.get("/versions/{version_id}/files", response_model=list[FileResponse], summary="List files of a version")
async def list_files(
    version_id: str,
    user_id: str | None = Depends(get_user_id),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
    store: ContentStore = Depends(get_content_store),
) -> list[FileResponse]:
    readable_version(lifecycle, version_id, user_id)
    return [FileResponse.model_validate(record) for record in store.list_files(version_id)]


@router.delete("/versions/{version_id}/files", status_code=204, summary="Remove a file from a draft")
async def delete_file(
    version_id: str,
    path: str = Query(..., description="Package-relative file path"),
    user_id: str = Depends(require_user_id),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> None:
    owned_version(lifecycle, version_id, user_id)
    if not pipeline.remove_file(version_id, path):
        raise NotFoundError(f"File {path} not found in version {version_id}")


@router.get("/ingest-jobs/{job_id}", response_model=IngestJobResponse, summary="Poll an ingest job")
async def get_ingest_job(
    job_id: str,
    user_id: str = Depends(require_user_id),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
    lifecycle: VersionLifecycle = Depends(get_lifecycle),
) -> IngestJobResponse:
    job = pipeline.get_job(job_id)
    owned_version(lifecycle, job.version_id, user_id)
    return IngestJobResponse.model_validate(job)


def _decode(upload: UploadFile) -> IncomingFile:
    if upload.encoding == "base64":
        try:
            content = base64.b64decode(upload.content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"{upload.path} is not valid base64") from exc
    else:
        content = upload.content.encode("utf-8")
    return IncomingFile(path=upload.path, content=content, mime_type=upload.mime_type)


__all__ = ["router"]
