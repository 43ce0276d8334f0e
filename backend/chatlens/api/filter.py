from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status

from chatlens.analysis.types import TimeRange
from chatlens.schemas.filter import (
    ExportRequest,
    FilterRequest,
    FilterResultOut,
    SessionsFilterRequest,
)
from chatlens.schemas.session_index import TaskSubmittedResponse
from chatlens.services.export_service import (
    ExportParams,
    ExportService,
    get_export_service,
)
from chatlens.services.filter_service import FilterService, get_filter_service
from chatlens.services.task_manager import (
    TASK_KIND_EXPORT,
    CancelToken,
    ProgressReporter,
    TaskManager,
    get_task_manager,
)

router = APIRouter(prefix="/api/collections/{collection_id}", tags=["filter"])


def _time_range(start_ts: Optional[int], end_ts: Optional[int]) -> Optional[TimeRange]:
    if start_ts is None and end_ts is None:
        return None
    return TimeRange(start_ts=start_ts, end_ts=end_ts)


@router.post("/filter", response_model=FilterResultOut)
async def filter_messages(
    collection_id: str,
    payload: FilterRequest,
    service: FilterService = Depends(get_filter_service),
) -> FilterResultOut:
    """Matching messages expanded with surrounding context, one page of blocks."""

    result = await service.filter_with_context(
        collection_id,
        keywords=payload.keywords,
        time_range=_time_range(payload.start_ts, payload.end_ts),
        sender_ids=payload.sender_ids,
        context_size=payload.context_size,
        page=payload.page,
        page_size=payload.page_size,
    )
    return FilterResultOut.model_validate(result)


@router.post("/filter/sessions", response_model=FilterResultOut)
async def filter_sessions(
    collection_id: str,
    payload: SessionsFilterRequest,
    service: FilterService = Depends(get_filter_service),
) -> FilterResultOut:
    result = await service.get_sessions_context(
        collection_id, payload.session_ids, page=payload.page, page_size=payload.page_size
    )
    return FilterResultOut.model_validate(result)


@router.post("/export", response_model=TaskSubmittedResponse, status_code=status.HTTP_202_ACCEPTED)
async def export_filtered(
    collection_id: str,
    payload: ExportRequest,
    service: ExportService = Depends(get_export_service),
    tasks: TaskManager = Depends(get_task_manager),
) -> TaskSubmittedResponse:
    """Write the filtered blocks to a Markdown file in the background."""

    params = ExportParams(
        keywords=tuple(payload.keywords),
        time_range=_time_range(payload.start_ts, payload.end_ts),
        sender_ids=tuple(payload.sender_ids),
        context_size=payload.context_size,
        session_ids=payload.session_ids,
    )

    async def job(report: ProgressReporter, token: CancelToken) -> dict:
        result = await service.export(collection_id, params, report, token)
        return {
            "file_path": result.file_path,
            "total_blocks": result.total_blocks,
            "total_hits": result.total_hits,
            "total_messages": result.total_messages,
            "total_chars": result.total_chars,
            "warnings": result.warnings,
        }

    generation = await tasks.submit(collection_id, TASK_KIND_EXPORT, job)
    return TaskSubmittedResponse(kind=TASK_KIND_EXPORT, generation=generation)
