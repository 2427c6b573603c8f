"""Payroll run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from payroll_backoffice.api.dependencies import Context, DbSession, Emitter, commit_result
from payroll_backoffice.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    CalculationResponse,
    ErrorResponse,
    GenerationResponse,
    PayrollRunCreate,
    PayrollRunDetailResponse,
    PayrollRunListResponse,
    PayrollRunResponse,
    PayrollStepResponse,
    PayslipListResponse,
    PayslipResponse,
    ReopenRequest,
    RunActionResponse,
    ValidationResponse,
)
from payroll_backoffice.errors import NotAuthorized, NotFound, OperationResult
from payroll_backoffice.models import PayrollRun
from payroll_backoffice.services.adjustment_service import AdjustmentInput, PayslipAdjustmentService
from payroll_backoffice.services.pay_run_service import (
    NO_PAYROLL_ACCESS,
    CreateRunInput,
    PayrollRunPipeline,
)
from payroll_backoffice.services.step_notes import load_notes

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

RunId = Annotated[UUID, Path()]

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def run_detail(run: PayrollRun) -> PayrollRunDetailResponse:
    summary = PayrollRunResponse.model_validate(run)
    steps = [
        PayrollStepResponse(
            step_number=step.step_number,
            step_name=step.step_name,
            status=step.status,
            is_completed=step.is_completed,
            completed_at=step.completed_at,
            completed_by_id=step.completed_by_id,
            notes=load_notes(step.notes),
        )
        for step in sorted(run.steps, key=lambda s: s.step_number)
    ]
    return PayrollRunDetailResponse(**summary.model_dump(), steps=steps)


async def _run_action(
    db: DbSession, emitter: Emitter, result: OperationResult[PayrollRun]
) -> RunActionResponse:
    run = await commit_result(db, emitter, result)
    return RunActionResponse(message=result.message, run=run_detail(run))


# ============================================================================
# Payroll run CRUD
# ============================================================================


@router.post(
    "",
    response_model=RunActionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def create_payroll_run(
    db: DbSession, ctx: Context, emitter: Emitter, payload: PayrollRunCreate
) -> RunActionResponse:
    """Create a payroll run (step 1) against an open pay period."""
    result = await PayrollRunPipeline(db).create(
        ctx,
        CreateRunInput(
            pay_period_id=payload.pay_period_id,
            run_type=payload.run_type,
            department_ids=payload.department_ids,
            branch_ids=payload.branch_ids,
            employee_ids=payload.employee_ids,
        ),
    )
    return await _run_action(db, emitter, result)


@router.get("", response_model=PayrollRunListResponse, responses=ERRORS)
async def list_payroll_runs(
    db: DbSession,
    ctx: Context,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PayrollRunListResponse:
    if not ctx.can_manage_payroll:
        raise NotAuthorized(NO_PAYROLL_ACCESS)
    runs = await PayrollRunPipeline(db).list_runs(ctx, status_filter)
    return PayrollRunListResponse(
        items=[PayrollRunResponse.model_validate(run) for run in runs],
        total=len(runs),
    )


@router.get("/{payroll_run_id}", response_model=PayrollRunDetailResponse, responses=ERRORS)
async def get_payroll_run(db: DbSession, ctx: Context, payroll_run_id: RunId) -> PayrollRunDetailResponse:
    """Get a payroll run with its steps and decoded step notes."""
    if not ctx.can_manage_payroll:
        raise NotAuthorized(NO_PAYROLL_ACCESS)
    run = await PayrollRunPipeline(db).get_run(ctx, payroll_run_id)
    if run is None:
        raise NotFound("Payroll run not found.")
    return run_detail(run)


# ============================================================================
# Step actions
# ============================================================================


@router.post("/{payroll_run_id}/validate", response_model=ValidationResponse, responses=ERRORS)
async def validate_payroll_run(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> ValidationResponse:
    """Run step 2 diagnostics. A trace with errors is still returned with 200."""
    result = await PayrollRunPipeline(db).validate(ctx, payroll_run_id)
    trace = await commit_result(db, emitter, result)
    return ValidationResponse(message=result.message, trace=trace)


@router.post("/{payroll_run_id}/proceed-to-calculate", response_model=RunActionResponse, responses=ERRORS)
async def proceed_to_calculate(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> RunActionResponse:
    return await _run_action(db, emitter, await PayrollRunPipeline(db).proceed_to_calculate(ctx, payroll_run_id))


@router.post("/{payroll_run_id}/calculate", response_model=CalculationResponse, responses=ERRORS)
async def calculate_payroll_run(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> CalculationResponse:
    result = await PayrollRunPipeline(db).calculate(ctx, payroll_run_id)
    trace = await commit_result(db, emitter, result)
    return CalculationResponse(message=result.message, trace=trace)


@router.post("/{payroll_run_id}/proceed-to-review", response_model=RunActionResponse, responses=ERRORS)
async def proceed_to_review(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> RunActionResponse:
    return await _run_action(db, emitter, await PayrollRunPipeline(db).proceed_to_review(ctx, payroll_run_id))


@router.post("/{payroll_run_id}/complete-review", response_model=RunActionResponse, responses=ERRORS)
async def complete_review(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> RunActionResponse:
    return await _run_action(db, emitter, await PayrollRunPipeline(db).complete_review(ctx, payroll_run_id))


@router.post("/{payroll_run_id}/generate-payslips", response_model=GenerationResponse, responses=ERRORS)
async def generate_payslips(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> GenerationResponse:
    result = await PayrollRunPipeline(db).generate_payslips(ctx, payroll_run_id)
    notes = await commit_result(db, emitter, result)
    return GenerationResponse(message=result.message, notes=notes)


@router.post("/{payroll_run_id}/proceed-to-close", response_model=RunActionResponse, responses=ERRORS)
async def proceed_to_close(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> RunActionResponse:
    return await _run_action(db, emitter, await PayrollRunPipeline(db).proceed_to_close(ctx, payroll_run_id))


@router.post("/{payroll_run_id}/close", response_model=RunActionResponse, responses=ERRORS)
async def close_payroll_run(
    db: DbSession, ctx: Context, emitter: Emitter, payroll_run_id: RunId
) -> RunActionResponse:
    """Mark the run PAID; REGULAR runs also lock their pay period."""
    return await _run_action(db, emitter, await PayrollRunPipeline(db).close(ctx, payroll_run_id))


@router.post("/{payroll_run_id}/reopen", response_model=RunActionResponse, responses=ERRORS)
async def reopen_payroll_run(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    payroll_run_id: RunId,
    payload: ReopenRequest | None = None,
) -> RunActionResponse:
    reason = payload.reason if payload else None
    return await _run_action(db, emitter, await PayrollRunPipeline(db).reopen(ctx, payroll_run_id, reason))


# ============================================================================
# Payslips and adjustments
# ============================================================================


@router.get("/{payroll_run_id}/payslips", response_model=PayslipListResponse, responses=ERRORS)
async def list_payslips(db: DbSession, ctx: Context, payroll_run_id: RunId) -> PayslipListResponse:
    if not ctx.can_manage_payroll:
        raise NotAuthorized(NO_PAYROLL_ACCESS)
    pipeline = PayrollRunPipeline(db)
    run = await pipeline.get_run(ctx, payroll_run_id)
    if run is None:
        raise NotFound("Payroll run not found.")
    payslips = await pipeline.list_payslips(run)
    return PayslipListResponse(
        items=[PayslipResponse.model_validate(p) for p in payslips],
        total=len(payslips),
    )


@router.post(
    "/{payroll_run_id}/payslips/{payslip_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def add_adjustment(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    payroll_run_id: RunId,
    payslip_id: Annotated[UUID, Path()],
    payload: AdjustmentCreate,
) -> AdjustmentResponse:
    result = await PayslipAdjustmentService(db).add_adjustment(
        ctx,
        payroll_run_id,
        payslip_id,
        AdjustmentInput(
            line_kind=payload.line_kind,
            description=payload.description,
            amount=payload.amount,
            is_taxable=payload.is_taxable,
        ),
    )
    payslip = await commit_result(db, emitter, result)
    return AdjustmentResponse(message=result.message, payslip=PayslipResponse.model_validate(payslip))


@router.delete(
    "/{payroll_run_id}/payslips/{payslip_id}/adjustments/{line_id}",
    response_model=AdjustmentResponse,
    responses=ERRORS,
)
async def remove_adjustment(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    payroll_run_id: RunId,
    payslip_id: Annotated[UUID, Path()],
    line_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    result = await PayslipAdjustmentService(db).remove_adjustment(ctx, payroll_run_id, payslip_id, line_id)
    payslip = await commit_result(db, emitter, result)
    return AdjustmentResponse(message=result.message, payslip=PayslipResponse.model_validate(payslip))
