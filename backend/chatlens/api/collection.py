from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from chatlens.repos.member_repo import parse_aliases
from chatlens.schemas.collection import (
    CollectionImportRequest,
    CollectionImportResponse,
    CollectionOut,
    MemberOut,
)
from chatlens.services.collection_service import (
    CollectionError,
    CollectionService,
    get_collection_service,
)

router = APIRouter(prefix="/api/collections", tags=["collections"])


@router.post("", response_model=CollectionImportResponse, status_code=status.HTTP_201_CREATED)
async def import_collection(
    payload: CollectionImportRequest,
    service: CollectionService = Depends(get_collection_service),
) -> CollectionImportResponse:
    """Import an already-normalized chat log as a new collection."""

    try:
        result = await service.import_collection(
            payload.name, payload.platform, payload.members, payload.messages
        )
    except CollectionError as exc:
        raise HTTPException(status_code=collection_status(exc.code), detail=exc.message) from exc

    return CollectionImportResponse(
        collection=CollectionOut.model_validate(result.collection),
        member_count=result.member_count,
        message_count=result.message_count,
    )


@router.get("", response_model=list[CollectionOut])
async def list_collections(
    limit: int = Query(default=50, ge=1, le=500),
    service: CollectionService = Depends(get_collection_service),
) -> list[CollectionOut]:
    collections = await service.list_collections(limit)
    return [CollectionOut.model_validate(item) for item in collections]


@router.get("/{collection_id}", response_model=CollectionOut)
async def get_collection(
    collection_id: str,
    service: CollectionService = Depends(get_collection_service),
) -> CollectionOut:
    try:
        collection = await service.get_collection(collection_id)
    except CollectionError as exc:
        raise HTTPException(status_code=collection_status(exc.code), detail=exc.message) from exc
    return CollectionOut.model_validate(collection)


@router.get("/{collection_id}/members", response_model=list[MemberOut])
async def list_members(
    collection_id: str,
    service: CollectionService = Depends(get_collection_service),
) -> list[MemberOut]:
    """List members with name history and message counts."""

    try:
        rows = await service.list_members(collection_id)
    except CollectionError as exc:
        raise HTTPException(status_code=collection_status(exc.code), detail=exc.message) from exc

    return [
        MemberOut(
            id=member.id,
            platform_id=member.platform_id,
            display_name=member.display_name,
            account_name=member.account_name,
            aliases=parse_aliases(member.aliases_json),
            history_names=history,
            is_system=member.is_system,
            message_count=count,
        )
        for member, history, count in rows
    ]


def collection_status(code: str) -> int:
    if code == "COLLECTION_NOT_FOUND":
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST
