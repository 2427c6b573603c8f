"""Which balance a leave request is charged against.

- Emergency leave has no balance of its own; it draws on vacation leave.
- Unpaid leave charges nothing, so nothing is reserved or consumed.
- Every other paid type charges its own balance.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.errors import BusinessRuleError, NotFound, OperationResult
from payroll_backoffice.models import LeaveType

EMERGENCY_LEAVE_NAMES = frozenset({"EMERGENCY LEAVE"})
EMERGENCY_LEAVE_CODES = frozenset({"EL", "EMERGENCY_LEAVE", "EMERGENCYLEAVE", "EMERGENCY"})
VACATION_LEAVE_NAMES = frozenset({"VACATION LEAVE"})
VACATION_LEAVE_CODES = frozenset({"VL", "VACATION_LEAVE", "VACATIONLEAVE", "VACATION"})


@dataclass(frozen=True)
class ChargeDecision:
    source_leave_type_id: UUID
    source_leave_type_name: str
    charge_leave_type_id: UUID | None
    charge_leave_type_name: str | None

    @property
    def charges_balance(self) -> bool:
        return self.charge_leave_type_id is not None


def _normalize_name(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip().upper())


def _normalize_code(value: str) -> str:
    return re.sub(r"[\s-]+", "_", value.strip().upper())


def is_emergency_leave(leave_type: LeaveType) -> bool:
    return (
        _normalize_name(leave_type.name) in EMERGENCY_LEAVE_NAMES
        or _normalize_code(leave_type.code) in EMERGENCY_LEAVE_CODES
    )


def is_vacation_leave(leave_type: LeaveType) -> bool:
    return (
        _normalize_name(leave_type.name) in VACATION_LEAVE_NAMES
        or _normalize_code(leave_type.code) in VACATION_LEAVE_CODES
    )


def resolve_charge(
    source: LeaveType,
    company_id: UUID,
    leave_types: Iterable[LeaveType],
) -> OperationResult[ChargeDecision]:
    """Pure decision over the company's leave types."""
    if is_emergency_leave(source):
        candidates = [lt for lt in leave_types if lt.is_active and is_vacation_leave(lt)]
        vacation = next((lt for lt in candidates if lt.company_id == company_id), None)
        if vacation is None:
            return OperationResult.failure(
                BusinessRuleError(
                    "Emergency Leave requires a configured Vacation Leave type "
                    "in the company settings."
                )
            )
        return OperationResult.success(
            ChargeDecision(source.leave_type_id, source.name, vacation.leave_type_id, vacation.name)
        )

    if not source.is_paid:
        return OperationResult.success(
            ChargeDecision(source.leave_type_id, source.name, None, None)
        )

    return OperationResult.success(
        ChargeDecision(source.leave_type_id, source.name, source.leave_type_id, source.name)
    )


async def resolve_charge_for_request(
    session: AsyncSession, company_id: UUID, leave_type_id: UUID
) -> OperationResult[ChargeDecision]:
    source = await session.get(LeaveType, leave_type_id)
    if source is None or source.company_id != company_id or not source.is_active:
        return OperationResult.failure(NotFound("Selected leave type is no longer available."))

    result = await session.execute(select(LeaveType).where(LeaveType.company_id == company_id))
    return resolve_charge(source, company_id, result.scalars().all())
