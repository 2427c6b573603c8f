"""Leave request and leave balance endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from payroll_backoffice.api.dependencies import Context, DbSession, Emitter, commit_result
from payroll_backoffice.api.schemas import (
    ErrorResponse,
    LeaveActionResponse,
    LeaveBalanceTransactionResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    RejectRequest,
)
from payroll_backoffice.errors import OperationResult
from payroll_backoffice.models import LeaveRequest
from payroll_backoffice.services.leave_workflow import LeaveWorkflow, SubmitLeaveInput

router = APIRouter(tags=["leave"])

RequestId = Annotated[UUID, Path()]

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


async def _respond(db: DbSession, emitter: Emitter, result: OperationResult[LeaveRequest]) -> LeaveActionResponse:
    request = await commit_result(db, emitter, result)
    return LeaveActionResponse(message=result.message, request=LeaveRequestResponse.model_validate(request))


@router.post(
    "/leave-requests",
    response_model=LeaveActionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def submit_leave_request(
    db: DbSession, ctx: Context, emitter: Emitter, payload: LeaveRequestCreate
) -> LeaveActionResponse:
    """File a leave request; days are reserved on the charged balance."""
    result = await LeaveWorkflow(db).submit(
        ctx,
        SubmitLeaveInput(
            employee_id=payload.employee_id,
            leave_type_id=payload.leave_type_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            is_half_day=payload.is_half_day,
            reason=payload.reason,
        ),
    )
    return await _respond(db, emitter, result)


@router.post("/leave-requests/{request_id}/supervisor-approve", response_model=LeaveActionResponse, responses=ERRORS)
async def supervisor_approve_leave(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> LeaveActionResponse:
    return await _respond(db, emitter, await LeaveWorkflow(db).supervisor_approve(ctx, request_id))


@router.post("/leave-requests/{request_id}/approve", response_model=LeaveActionResponse, responses=ERRORS)
async def approve_leave(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> LeaveActionResponse:
    """Final approval; consumes the reserved days."""
    return await _respond(db, emitter, await LeaveWorkflow(db).approve(ctx, request_id))


@router.post("/leave-requests/{request_id}/reject", response_model=LeaveActionResponse, responses=ERRORS)
async def reject_leave(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    request_id: RequestId,
    payload: RejectRequest | None = None,
) -> LeaveActionResponse:
    reason = payload.reason if payload else None
    return await _respond(db, emitter, await LeaveWorkflow(db).reject(ctx, request_id, reason))


@router.post("/leave-requests/{request_id}/cancel", response_model=LeaveActionResponse, responses=ERRORS)
async def cancel_leave(
    db: DbSession, ctx: Context, emitter: Emitter, request_id: RequestId
) -> LeaveActionResponse:
    return await _respond(db, emitter, await LeaveWorkflow(db).cancel(ctx, request_id))


@router.get(
    "/leave-balances/{leave_balance_id}/transactions",
    response_model=list[LeaveBalanceTransactionResponse],
    responses=ERRORS,
)
async def list_balance_transactions(
    db: DbSession, ctx: Context, leave_balance_id: Annotated[UUID, Path()]
) -> list[LeaveBalanceTransactionResponse]:
    """Ledger history of one balance row, oldest first."""
    result = await LeaveWorkflow(db).balance_history(ctx, leave_balance_id)
    return [LeaveBalanceTransactionResponse.model_validate(txn) for txn in result.unwrap()]
