from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from chatlens.analysis.types import TimeRange
from chatlens.schemas.session_index import (
    ChatSessionOut,
    GapThresholdResponse,
    GapThresholdUpdate,
    GenerateSessionsRequest,
    GenerateSessionsResponse,
    SessionMessagesOut,
    SessionSearchItemOut,
    SessionStatsOut,
    SummaryPayload,
    TaskSubmittedResponse,
)
from chatlens.services.session_index_service import (
    SessionIndexError,
    SessionIndexService,
    get_session_index_service,
)
from chatlens.services.task_manager import (
    TASK_KIND_SESSIONS,
    CancelToken,
    ProgressReporter,
    TaskManager,
    get_task_manager,
)

router = APIRouter(prefix="/api/collections/{collection_id}/sessions", tags=["sessions"])


@router.post("/generate", response_model=GenerateSessionsResponse)
async def generate_sessions(
    collection_id: str,
    payload: Optional[GenerateSessionsRequest] = None,
    service: SessionIndexService = Depends(get_session_index_service),
) -> GenerateSessionsResponse:
    """Rebuild the session index and return the number of sessions."""

    gap = payload.gap_threshold if payload else None
    try:
        count = await service.generate_sessions(collection_id, gap)
    except SessionIndexError as exc:
        raise HTTPException(status_code=session_status(exc.code), detail=exc.message) from exc
    return GenerateSessionsResponse(session_count=count)


@router.post(
    "/generate-async",
    response_model=TaskSubmittedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def generate_sessions_async(
    collection_id: str,
    payload: Optional[GenerateSessionsRequest] = None,
    service: SessionIndexService = Depends(get_session_index_service),
    tasks: TaskManager = Depends(get_task_manager),
) -> TaskSubmittedResponse:
    """Rebuild the session index in the background; progress goes to the WebSocket."""

    gap = payload.gap_threshold if payload else None

    async def job(report: ProgressReporter, token: CancelToken) -> dict:
        async def on_progress(processed: int, total: int) -> None:
            percentage = processed / total * 100 if total else 100.0
            await report({"current": processed, "total": total, "percentage": percentage})

        count = await service.generate_sessions(collection_id, gap, on_progress, token)
        return {"session_count": count}

    generation = await tasks.submit(collection_id, TASK_KIND_SESSIONS, job)
    return TaskSubmittedResponse(kind=TASK_KIND_SESSIONS, generation=generation)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_sessions(
    collection_id: str,
    service: SessionIndexService = Depends(get_session_index_service),
) -> None:
    await service.clear_sessions(collection_id)


@router.get("", response_model=list[ChatSessionOut])
async def list_sessions(
    collection_id: str,
    service: SessionIndexService = Depends(get_session_index_service),
) -> list[ChatSessionOut]:
    sessions = await service.get_sessions(collection_id)
    return [ChatSessionOut.model_validate(item) for item in sessions]


@router.get("/stats", response_model=SessionStatsOut)
async def session_stats(
    collection_id: str,
    service: SessionIndexService = Depends(get_session_index_service),
) -> SessionStatsOut:
    return SessionStatsOut.model_validate(await service.get_session_stats(collection_id))


@router.put("/gap-threshold", response_model=GapThresholdResponse)
async def update_gap_threshold(
    collection_id: str,
    payload: GapThresholdUpdate,
    service: SessionIndexService = Depends(get_session_index_service),
) -> GapThresholdResponse:
    """Set the per-collection gap; null resets to the default."""

    try:
        gap = await service.update_gap_threshold(collection_id, payload.gap_threshold)
    except SessionIndexError as exc:
        raise HTTPException(status_code=session_status(exc.code), detail=exc.message) from exc
    return GapThresholdResponse(gap_threshold=gap)


@router.get("/search", response_model=list[SessionSearchItemOut])
async def search_sessions(
    collection_id: str,
    keywords: Optional[List[str]] = Query(default=None),
    start_ts: Optional[int] = Query(default=None, ge=0),
    end_ts: Optional[int] = Query(default=None, ge=0),
    limit: int = Query(default=20, ge=1, le=200),
    preview_count: int = Query(default=5, ge=1, le=100),
    service: SessionIndexService = Depends(get_session_index_service),
) -> list[SessionSearchItemOut]:
    time_range = TimeRange(start_ts, end_ts) if start_ts is not None or end_ts is not None else None
    items = await service.search_sessions(
        collection_id, keywords, time_range, limit=limit, preview_count=preview_count
    )
    return [SessionSearchItemOut.model_validate(item) for item in items]


@router.get("/{session_id}/messages", response_model=SessionMessagesOut)
async def session_messages(
    collection_id: str,
    session_id: int,
    limit: int = Query(default=500, ge=1, le=5000),
    service: SessionIndexService = Depends(get_session_index_service),
) -> SessionMessagesOut:
    try:
        result = await service.get_session_messages(collection_id, session_id, limit)
    except SessionIndexError as exc:
        raise HTTPException(status_code=session_status(exc.code), detail=exc.message) from exc
    return SessionMessagesOut.model_validate(result)


@router.put("/{session_id}/summary", response_model=SummaryPayload)
async def save_summary(
    collection_id: str,
    session_id: int,
    payload: SummaryPayload,
    service: SessionIndexService = Depends(get_session_index_service),
) -> SummaryPayload:
    try:
        await service.save_summary(collection_id, session_id, payload.summary)
        summary = await service.get_summary(collection_id, session_id)
    except SessionIndexError as exc:
        raise HTTPException(status_code=session_status(exc.code), detail=exc.message) from exc
    return SummaryPayload(summary=summary)


@router.get("/{session_id}/summary", response_model=SummaryPayload)
async def get_summary(
    collection_id: str,
    session_id: int,
    service: SessionIndexService = Depends(get_session_index_service),
) -> SummaryPayload:
    try:
        summary = await service.get_summary(collection_id, session_id)
    except SessionIndexError as exc:
        raise HTTPException(status_code=session_status(exc.code), detail=exc.message) from exc
    return SummaryPayload(summary=summary)


def session_status(code: str) -> int:
    if code in {"COLLECTION_NOT_FOUND", "SESSION_NOT_FOUND"}:
        return status.HTTP_404_NOT_FOUND
    if code == "TASK_SUPERSEDED":
        return status.HTTP_409_CONFLICT
    if code == "INDEX_WRITE_FAILED":
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST
