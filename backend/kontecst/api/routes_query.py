"""Search API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from kontecst.api.dependencies import get_search_service, get_user_id
from kontecst.models.dto import SearchRequest, SearchResponse, SearchResultResponse
from kontecst.retrieval.search import SearchScope, SearchService

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Semantic search over visible versions")
async def semantic_search(
    request: SearchRequest,
    user_id: str | None = Depends(get_user_id),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    results = service.search(
        request.query,
        user_id=user_id,
        scope=SearchScope(package_id=request.package_id, version_ids=request.version_ids),
        limit=request.limit,
        min_score=request.min_score,
    )
    return SearchResponse(
        query=request.query,
        mode="semantic",
        results=[SearchResultResponse.model_validate(item) for item in results],
    )


@router.get("/search", response_model=SearchResponse, summary="Keyword search over visible versions")
async def keyword_search(
    q: str = Query(..., description="Query text"),
    package_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    user_id: str | None = Depends(get_user_id),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    results = service.keyword_search(q, user_id=user_id, scope=SearchScope(package_id=package_id), limit=limit)
    return SearchResponse(
        query=q,
        mode="keyword",
        results=[SearchResultResponse.model_validate(item) for item in results],
    )


__all__ = ["router"]
