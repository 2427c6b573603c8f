"""Overtime request workflow.

Same shape as leave requests, but nothing is reserved at submission. Final
approval runs the CTO accrual rule, which either credits the CTO balance or
leaves the hours to be paid as overtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.context import RequestContext
from payroll_backoffice.errors import (
    BusinessRuleError,
    NotAuthorized,
    NotFound,
    OperationResult,
    OvertimeBelowMinimum,
)
from payroll_backoffice.events.types import AuditFact, FactMetadata, RequestTransitioned
from payroll_backoffice.ledger import CtoAccrualRule, OvertimeAccrualInput
from payroll_backoffice.ledger.cto_accrual import MINIMUM_OVERTIME_HOURS
from payroll_backoffice.models import Employee, OvertimeRequest
from payroll_backoffice.money import round_currency
from payroll_backoffice.services.request_common import check_can_decide, generate_request_number
from payroll_backoffice.services.state_machine import RequestStateMachine, RequestStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitOvertimeInput:
    employee_id: UUID
    overtime_date: date
    hours: Decimal
    reason: str | None = None


class OvertimeWorkflow:
    NOUN = "overtime request"

    def __init__(self, session: AsyncSession, accrual: CtoAccrualRule | None = None):
        self.session = session
        self.accrual = accrual or CtoAccrualRule(session)

    async def get_request(
        self, ctx: RequestContext, request_id: UUID, lock: bool = False
    ) -> OvertimeRequest | None:
        query = select(OvertimeRequest).where(
            OvertimeRequest.overtime_request_id == request_id,
            OvertimeRequest.company_id == ctx.company_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def submit(self, ctx: RequestContext, data: SubmitOvertimeInput) -> OperationResult[OvertimeRequest]:
        if not (ctx.acting_as(data.employee_id) or ctx.can_approve_requests):
            return OperationResult.failure(NotAuthorized("You can only file overtime for yourself."))

        hours = round_currency(data.hours)
        if hours < MINIMUM_OVERTIME_HOURS:
            return OperationResult.failure(OvertimeBelowMinimum())

        employee = await self.session.get(Employee, data.employee_id)
        if employee is None or employee.company_id != ctx.company_id:
            return OperationResult.failure(NotFound("Employee not found."))

        today = datetime.now(timezone.utc).date()
        number = await generate_request_number(self.session, OvertimeRequest, "OT", today)
        if number is None:
            return OperationResult.failure(
                BusinessRuleError("Unable to generate an overtime request number. Please try again.")
            )

        request = OvertimeRequest(
            company_id=ctx.company_id,
            request_number=number,
            employee_id=employee.employee_id,
            overtime_date=data.overtime_date,
            hours=hours,
            reason=data.reason,
            status=RequestStatus.PENDING.value,
            supervisor_approver_id=employee.reporting_manager_id,
        )
        self.session.add(request)
        await self.session.flush()
        logger.info("Overtime request %s submitted for %s hour(s)", number, hours)
        return OperationResult.success(
            request,
            [self._transitioned(ctx, request, None, RequestStatus.PENDING)],
            message="Overtime request submitted.",
        )

    async def supervisor_approve(self, ctx: RequestContext, request_id: UUID) -> OperationResult[OvertimeRequest]:
        loaded = await self._load_for_decision(ctx, request_id, RequestStatus.SUPERVISOR_APPROVED)
        if not loaded.ok:
            return loaded
        request = loaded.unwrap()

        previous = request.status
        request.status = RequestStatus.SUPERVISOR_APPROVED.value
        request.supervisor_approver_id = ctx.actor_employee_id or request.supervisor_approver_id
        request.supervisor_approved_at = datetime.now(timezone.utc)
        await self.session.flush()
        return OperationResult.success(
            request,
            [self._transitioned(ctx, request, previous, RequestStatus.SUPERVISOR_APPROVED)],
            message="Overtime request approved by supervisor. Awaiting HR approval.",
        )

    async def approve(self, ctx: RequestContext, request_id: UUID) -> OperationResult[OvertimeRequest]:
        """Final approval; CTO conversion is decided against the org chart as it is now."""
        loaded = await self._load_for_decision(ctx, request_id, RequestStatus.APPROVED)
        if not loaded.ok:
            return loaded
        request = loaded.unwrap()

        employee = await self.session.get(Employee, request.employee_id)
        if employee is None:
            return OperationResult.failure(NotFound("Employee not found."))

        accrual = await self.accrual.apply(
            ctx,
            OvertimeAccrualInput(
                overtime_request_id=request.overtime_request_id,
                request_number=request.request_number,
                employee_id=employee.employee_id,
                company_id=request.company_id,
                overtime_date=request.overtime_date,
                hours=request.hours,
                is_overtime_eligible=employee.is_overtime_eligible,
            ),
        )
        if not accrual.ok:
            return OperationResult.failure(accrual.error)  # type: ignore[arg-type]
        outcome = accrual.unwrap()

        now = datetime.now(timezone.utc)
        previous = request.status
        request.status = RequestStatus.APPROVED.value
        request.hr_approver_id = ctx.actor_user_id
        request.approved_at = now
        if outcome.converted:
            request.cto_converted = True
            request.cto_converted_at = now
        await self.session.flush()

        facts: list[AuditFact] = [*accrual.facts, self._transitioned(ctx, request, previous, RequestStatus.APPROVED)]
        message = (
            f"Overtime approved and converted to {outcome.hours} CTO hour(s)."
            if outcome.converted
            else "Overtime approved for payment."
        )
        return OperationResult.success(request, facts, message=message)

    async def reject(
        self, ctx: RequestContext, request_id: UUID, reason: str | None = None
    ) -> OperationResult[OvertimeRequest]:
        loaded = await self._load_for_decision(ctx, request_id, RequestStatus.REJECTED)
        if not loaded.ok:
            return loaded
        request = loaded.unwrap()

        previous = request.status
        request.status = RequestStatus.REJECTED.value
        request.rejected_by_id = ctx.actor_user_id
        request.rejected_at = datetime.now(timezone.utc)
        request.rejection_reason = reason
        await self.session.flush()
        return OperationResult.success(
            request,
            [self._transitioned(ctx, request, previous, RequestStatus.REJECTED, reason)],
            message="Overtime request rejected.",
        )

    async def cancel(self, ctx: RequestContext, request_id: UUID) -> OperationResult[OvertimeRequest]:
        request = await self.get_request(ctx, request_id, lock=True)
        if request is None:
            return OperationResult.failure(NotFound("Overtime request not found."))
        if not ctx.acting_as(request.employee_id):
            return OperationResult.failure(
                NotAuthorized("Only the requesting employee can cancel this overtime request.")
            )
        invalid = RequestStateMachine.check_transition(request.status, RequestStatus.CANCELLED.value, self.NOUN)
        if invalid is not None:
            return OperationResult.failure(invalid)

        previous = request.status
        request.status = RequestStatus.CANCELLED.value
        request.cancelled_at = datetime.now(timezone.utc)
        await self.session.flush()
        return OperationResult.success(
            request,
            [self._transitioned(ctx, request, previous, RequestStatus.CANCELLED)],
            message="Overtime request cancelled.",
        )

    async def _load_for_decision(
        self, ctx: RequestContext, request_id: UUID, target: RequestStatus
    ) -> OperationResult[OvertimeRequest]:
        request = await self.get_request(ctx, request_id, lock=True)
        if request is None:
            return OperationResult.failure(NotFound("Overtime request not found."))
        invalid = RequestStateMachine.check_transition(request.status, target.value, self.NOUN)
        if invalid is not None:
            return OperationResult.failure(invalid)
        if target is RequestStatus.APPROVED and not ctx.can_approve_requests:
            return OperationResult.failure(NotAuthorized("Only HR or finance can give final approval."))
        denied = check_can_decide(ctx, request, self.NOUN)
        if denied is not None:
            return OperationResult.failure(denied)
        return OperationResult.success(request)

    @staticmethod
    def _transitioned(
        ctx: RequestContext,
        request: OvertimeRequest,
        from_status: str | None,
        to_status: RequestStatus,
        reason: str | None = None,
    ) -> RequestTransitioned:
        return RequestTransitioned(
            metadata=FactMetadata.from_context(ctx),
            request_kind="OVERTIME",
            request_id=request.overtime_request_id,
            request_number=request.request_number,
            employee_id=request.employee_id,
            from_status=from_status,
            to_status=to_status.value,
            reason=reason,
        )
