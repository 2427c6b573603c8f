"""Overtime request endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from payroll_backoffice.api.dependencies import Context, DbSession, Emitter, commit_result
from payroll_backoffice.api.schemas import (
    ErrorResponse,
    OvertimeActionResponse,
    OvertimeRequestCreate,
    OvertimeRequestResponse,
    RejectRequest,
)
from payroll_backoffice.errors import OperationResult
from payroll_backoffice.models import OvertimeRequest
from payroll_backoffice.services.overtime_workflow import OvertimeWorkflow, SubmitOvertimeInput

router = APIRouter(prefix="/overtime-requests", tags=["overtime"])

RequestId = Annotated[UUID, Path()]

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


async def _respond(
    db: DbSession, emitter: Emitter, result: OperationResult[OvertimeRequest]
) -> OvertimeActionResponse:
    request = await commit_result(db, emitter, result)
    return OvertimeActionResponse(message=result.message, request=OvertimeRequestResponse.model_validate(request))


@router.post("", response_model=OvertimeActionResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
async def submit_overtime_request(
    db: DbSession, ctx: Context, emitter: Emitter, payload: OvertimeRequestCreate
) -> OvertimeActionResponse:
    result = await OvertimeWorkflow(db).submit(
        ctx,
        SubmitOvertimeInput(
            employee_id=payload.employee_id,
            overtime_date=payload.overtime_date,
            hours=payload.hours,
            reason=payload.reason,
        ),
    )
    return await _respond(db, emitter, result)


@router.post("/{request_id}/supervisor-approve", response_model=OvertimeActionResponse, responses=ERRORS)
async def supervisor_approve_overtime(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> OvertimeActionResponse:
    return await _respond(db, emitter, await OvertimeWorkflow(db).supervisor_approve(ctx, request_id))


@router.post("/{request_id}/approve", response_model=OvertimeActionResponse, responses=ERRORS)
async def approve_overtime(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> OvertimeActionResponse:
    """Final approval; converts to CTO when the accrual rule applies."""
    return await _respond(db, emitter, await OvertimeWorkflow(db).approve(ctx, request_id))


@router.post("/{request_id}/reject", response_model=OvertimeActionResponse, responses=ERRORS)
async def reject_overtime(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    request_id: RequestId,
    payload: RejectRequest | None = None,
) -> OvertimeActionResponse:
    reason = payload.reason if payload else None
    return await _respond(db, emitter, await OvertimeWorkflow(db).reject(ctx, request_id, reason))


@router.post("/{request_id}/cancel", response_model=OvertimeActionResponse, responses=ERRORS)
async def cancel_overtime(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> OvertimeActionResponse:
    return await _respond(db, emitter, await OvertimeWorkflow(db).cancel(ctx, request_id))
