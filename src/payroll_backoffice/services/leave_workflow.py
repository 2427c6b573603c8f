"""Leave request workflow.

PENDING -> SUPERVISOR_APPROVED -> APPROVED, with REJECTED possible at either
stage and CANCELLED from PENDING by the requesting employee. Submission
reserves days on the charged balance, final approval consumes them and
rejection or cancellation releases them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.context import RequestContext
from payroll_backoffice.errors import (
    BusinessRuleError,
    InvalidRequestDates,
    NotAuthorized,
    NotFound,
    OperationResult,
)
from payroll_backoffice.events.types import AuditFact, FactMetadata, RequestTransitioned
from payroll_backoffice.ledger import (
    BalanceLedger,
    LeaveReference,
    LedgerEntry,
    resolve_charge_for_request,
)
from payroll_backoffice.models import Employee, LeaveBalance, LeaveBalanceTransaction, LeaveRequest
from payroll_backoffice.services.request_common import check_can_decide, generate_request_number
from payroll_backoffice.services.state_machine import RequestStateMachine, RequestStatus

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")


@dataclass(frozen=True)
class SubmitLeaveInput:
    employee_id: UUID
    leave_type_id: UUID
    start_date: date
    end_date: date
    is_half_day: bool = False
    reason: str | None = None


def count_leave_days(start_date: date, end_date: date, is_half_day: bool) -> Decimal:
    """Inclusive calendar days; a half day counts 0.5."""
    if is_half_day:
        return HALF_DAY
    return Decimal((end_date - start_date).days + 1)


def check_leave_dates(start_date: date, end_date: date, is_half_day: bool) -> InvalidRequestDates | None:
    if end_date < start_date:
        return InvalidRequestDates("End date cannot be before start date.")
    if start_date.year != end_date.year:
        return InvalidRequestDates(
            "Leave requests cannot span two calendar years. File one request per year."
        )
    if is_half_day and start_date != end_date:
        return InvalidRequestDates("A half-day leave must start and end on the same day.")
    return None


class LeaveWorkflow:
    """Submit, approve, reject and cancel leave requests."""

    NOUN = "leave request"

    def __init__(self, session: AsyncSession, ledger: BalanceLedger | None = None):
        self.session = session
        self.ledger = ledger or BalanceLedger(session)

    async def get_request(self, ctx: RequestContext, request_id: UUID, lock: bool = False) -> LeaveRequest | None:
        query = select(LeaveRequest).where(
            LeaveRequest.leave_request_id == request_id,
            LeaveRequest.company_id == ctx.company_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def submit(self, ctx: RequestContext, data: SubmitLeaveInput) -> OperationResult[LeaveRequest]:
        if not (ctx.acting_as(data.employee_id) or ctx.can_approve_requests):
            return OperationResult.failure(NotAuthorized("You can only file leave for yourself."))

        employee = await self.session.get(Employee, data.employee_id)
        if employee is None or employee.company_id != ctx.company_id:
            return OperationResult.failure(NotFound("Employee not found."))

        invalid = check_leave_dates(data.start_date, data.end_date, data.is_half_day)
        if invalid is not None:
            return OperationResult.failure(invalid)
        days = count_leave_days(data.start_date, data.end_date, data.is_half_day)

        charge = await resolve_charge_for_request(self.session, ctx.company_id, data.leave_type_id)
        if not charge.ok:
            return OperationResult.failure(charge.error)  # type: ignore[arg-type]
        decision = charge.unwrap()

        today = datetime.now(timezone.utc).date()
        number = await generate_request_number(self.session, LeaveRequest, "LR", today)
        if number is None:
            return OperationResult.failure(
                BusinessRuleError("Unable to generate a leave request number. Please try again.")
            )

        request_id = uuid4()
        facts: list[AuditFact] = []
        reserved = False
        if decision.charges_balance:
            entry = await self.ledger.reserve(
                ctx,
                LeaveReference(
                    employee_id=employee.employee_id,
                    leave_type_id=decision.charge_leave_type_id,  # type: ignore[arg-type]
                    request_id=request_id,
                    request_number=number,
                    start_date=data.start_date,
                    days=days,
                ),
            )
            if not entry.ok:
                return OperationResult.failure(entry.error)  # type: ignore[arg-type]
            facts.extend(entry.facts)
            reserved = True

        request = LeaveRequest(
            leave_request_id=request_id,
            company_id=ctx.company_id,
            request_number=number,
            employee_id=employee.employee_id,
            leave_type_id=data.leave_type_id,
            charge_leave_type_id=decision.charge_leave_type_id,
            start_date=data.start_date,
            end_date=data.end_date,
            is_half_day=data.is_half_day,
            number_of_days=days,
            reason=data.reason,
            status=RequestStatus.PENDING.value,
            balance_reserved=reserved,
            supervisor_approver_id=employee.reporting_manager_id,
        )
        self.session.add(request)
        await self.session.flush()

        facts.append(self._transitioned(ctx, request, None, RequestStatus.PENDING))
        logger.info(
            "Leave request %s submitted for %s day(s) (charges %s)",
            number,
            days,
            decision.charge_leave_type_name or "nothing",
        )
        return OperationResult.success(request, facts, message="Leave request submitted.")

    async def supervisor_approve(self, ctx: RequestContext, request_id: UUID) -> OperationResult[LeaveRequest]:
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
            message="Leave request approved by supervisor. Awaiting HR approval.",
        )

    async def approve(self, ctx: RequestContext, request_id: UUID) -> OperationResult[LeaveRequest]:
        """Final approval; the only transition that consumes balance."""
        loaded = await self._load_for_decision(ctx, request_id, RequestStatus.APPROVED)
        if not loaded.ok:
            return loaded
        request = loaded.unwrap()

        facts: list[AuditFact] = []
        if request.balance_reserved:
            entry = await self.ledger.consume(ctx, self._reference(request))
            if not entry.ok:
                return OperationResult.failure(entry.error)  # type: ignore[arg-type]
            facts.extend(entry.facts)
            request.balance_reserved = False

        previous = request.status
        request.status = RequestStatus.APPROVED.value
        request.hr_approver_id = ctx.actor_user_id
        request.approved_at = datetime.now(timezone.utc)
        await self.session.flush()
        facts.append(self._transitioned(ctx, request, previous, RequestStatus.APPROVED))
        return OperationResult.success(request, facts, message="Leave request approved.")

    async def reject(
        self, ctx: RequestContext, request_id: UUID, reason: str | None = None
    ) -> OperationResult[LeaveRequest]:
        loaded = await self._load_for_decision(ctx, request_id, RequestStatus.REJECTED)
        if not loaded.ok:
            return loaded
        request = loaded.unwrap()

        released = await self._release(ctx, request)
        if not released.ok:
            return OperationResult.failure(released.error)  # type: ignore[arg-type]

        previous = request.status
        request.status = RequestStatus.REJECTED.value
        request.rejected_by_id = ctx.actor_user_id
        request.rejected_at = datetime.now(timezone.utc)
        request.rejection_reason = reason
        await self.session.flush()
        facts = [*released.facts, self._transitioned(ctx, request, previous, RequestStatus.REJECTED, reason)]
        return OperationResult.success(request, facts, message="Leave request rejected.")

    async def cancel(self, ctx: RequestContext, request_id: UUID) -> OperationResult[LeaveRequest]:
        request = await self.get_request(ctx, request_id, lock=True)
        if request is None:
            return OperationResult.failure(NotFound("Leave request not found."))
        if not ctx.acting_as(request.employee_id):
            return OperationResult.failure(NotAuthorized("Only the requesting employee can cancel this leave request."))
        invalid = RequestStateMachine.check_transition(request.status, RequestStatus.CANCELLED.value, self.NOUN)
        if invalid is not None:
            return OperationResult.failure(invalid)

        released = await self._release(ctx, request)
        if not released.ok:
            return OperationResult.failure(released.error)  # type: ignore[arg-type]

        previous = request.status
        request.status = RequestStatus.CANCELLED.value
        request.cancelled_at = datetime.now(timezone.utc)
        await self.session.flush()
        facts = [*released.facts, self._transitioned(ctx, request, previous, RequestStatus.CANCELLED)]
        return OperationResult.success(request, facts, message="Leave request cancelled.")

    async def balance_history(
        self, ctx: RequestContext, leave_balance_id: UUID
    ) -> OperationResult[list[LeaveBalanceTransaction]]:
        balance = await self.session.get(LeaveBalance, leave_balance_id)
        employee = await self.session.get(Employee, balance.employee_id) if balance else None
        if employee is None or employee.company_id != ctx.company_id:
            return OperationResult.failure(NotFound("Leave balance not found."))
        if not (ctx.acting_as(employee.employee_id) or ctx.can_approve_requests or ctx.can_manage_payroll):
            return OperationResult.failure(NotAuthorized("You are not allowed to view this leave balance."))
        return OperationResult.success(await self.ledger.history(leave_balance_id))

    # === Internals ===

    async def _load_for_decision(
        self, ctx: RequestContext, request_id: UUID, target: RequestStatus
    ) -> OperationResult[LeaveRequest]:
        request = await self.get_request(ctx, request_id, lock=True)
        if request is None:
            return OperationResult.failure(NotFound("Leave request not found."))
        invalid = RequestStateMachine.check_transition(request.status, target.value, self.NOUN)
        if invalid is not None:
            return OperationResult.failure(invalid)
        if target is RequestStatus.APPROVED and not ctx.can_approve_requests:
            return OperationResult.failure(NotAuthorized("Only HR or finance can give final approval."))
        denied = check_can_decide(ctx, request, self.NOUN)
        if denied is not None:
            return OperationResult.failure(denied)
        return OperationResult.success(request)

    async def _release(self, ctx: RequestContext, request: LeaveRequest) -> OperationResult[LedgerEntry | None]:
        """Release the reservation if one was made; a no-op otherwise."""
        if not request.balance_reserved:
            return OperationResult.success(None)
        entry = await self.ledger.release(ctx, self._reference(request))
        if not entry.ok:
            return OperationResult.failure(entry.error)  # type: ignore[arg-type]
        request.balance_reserved = False
        return OperationResult.success(entry.value, entry.facts)

    @staticmethod
    def _reference(request: LeaveRequest) -> LeaveReference:
        return LeaveReference(
            employee_id=request.employee_id,
            leave_type_id=request.charge_leave_type_id,  # type: ignore[arg-type]
            request_id=request.leave_request_id,
            request_number=request.request_number,
            start_date=request.start_date,
            days=request.number_of_days,
        )

    @staticmethod
    def _transitioned(
        ctx: RequestContext,
        request: LeaveRequest,
        from_status: str | None,
        to_status: RequestStatus,
        reason: str | None = None,
    ) -> RequestTransitioned:
        return RequestTransitioned(
            metadata=FactMetadata.from_context(ctx),
            request_kind="LEAVE",
            request_id=request.leave_request_id,
            request_number=request.request_number,
            employee_id=request.employee_id,
            from_status=from_status,
            to_status=to_status.value,
            reason=reason,
        )
