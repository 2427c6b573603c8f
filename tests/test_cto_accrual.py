"""Tests for the overtime-to-CTO accrual rule."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_backoffice.errors import (
    CtoBalanceNotInitialized,
    CtoLeaveTypeNotConfigured,
    OvertimeBelowMinimum,
)
from payroll_backoffice.ledger import CtoAccrualRule, OvertimeAccrualInput


def accrual_input(employee, *, hours="3", eligible=None, request_id=None, day=date(2026, 3, 7)):
    return OvertimeAccrualInput(
        overtime_request_id=request_id or uuid4(),
        request_number="OT-2026-00001",
        employee_id=employee.employee_id,
        company_id=employee.company_id,
        overtime_date=day,
        hours=Decimal(hours),
        is_overtime_eligible=employee.is_overtime_eligible if eligible is None else eligible,
    )


class TestRequiresConversion:
    @pytest.mark.parametrize(
        "eligible,reports,expected",
        [
            (False, 0, True),
            (False, 3, True),
            (True, 0, False),
            (True, 1, True),
        ],
    )
    def test_truth_table(self, eligible, reports, expected):
        assert CtoAccrualRule.requires_conversion(eligible, reports) is expected


class TestApply:
    async def test_manager_overtime_converts(self, session, hr_ctx, manager, staff, balances):
        """A manager with a direct report earns CTO even when overtime-eligible."""
        rule = CtoAccrualRule(session)

        result = await rule.apply(hr_ctx, accrual_input(manager))

        assert result.ok
        outcome = result.value
        assert outcome.converted
        assert outcome.credited
        assert outcome.hours == Decimal("3.00")
        assert balances["MANAGER_CTO"].current_balance == Decimal("3.00")
        assert balances["MANAGER_CTO"].available_balance == Decimal("3.00")
        assert len(result.facts) == 1

    async def test_eligible_without_reports_is_paid(self, session, hr_ctx, staff, balances):
        rule = CtoAccrualRule(session)

        result = await rule.apply(hr_ctx, accrual_input(staff))

        assert result.ok
        assert not result.value.converted
        assert result.facts == ()
        assert balances["CTO"].current_balance == Decimal("0")

    async def test_ineligible_employee_converts(self, session, hr_ctx, staff, balances):
        rule = CtoAccrualRule(session)

        result = await rule.apply(hr_ctx, accrual_input(staff, eligible=False, hours="1.5"))

        assert result.value.converted
        assert balances["CTO"].current_balance == Decimal("1.50")

    async def test_inactive_report_does_not_count(self, session, hr_ctx, manager, staff, balances):
        staff.is_active = False
        await session.flush()
        rule = CtoAccrualRule(session)

        result = await rule.apply(hr_ctx, accrual_input(manager))

        assert not result.value.converted

    async def test_replay_does_not_credit_twice(self, session, hr_ctx, manager, staff, balances):
        rule = CtoAccrualRule(session)
        request_id = uuid4()
        await rule.apply(hr_ctx, accrual_input(manager, request_id=request_id))

        result = await rule.apply(hr_ctx, accrual_input(manager, request_id=request_id))

        assert result.ok
        assert result.value.converted
        assert not result.value.credited
        assert balances["MANAGER_CTO"].current_balance == Decimal("3.00")

    async def test_below_minimum_hours(self, session, hr_ctx, manager, staff, balances):
        result = await CtoAccrualRule(session).apply(hr_ctx, accrual_input(manager, hours="0.5"))

        assert isinstance(result.error, OvertimeBelowMinimum)

    async def test_no_cto_leave_type(self, session, hr_ctx, manager, staff):
        result = await CtoAccrualRule(session).apply(hr_ctx, accrual_input(manager))

        assert isinstance(result.error, CtoLeaveTypeNotConfigured)

    async def test_no_cto_balance_for_year(self, session, hr_ctx, manager, staff, balances):
        result = await CtoAccrualRule(session).apply(
            hr_ctx, accrual_input(manager, day=date(2027, 1, 9))
        )

        assert isinstance(result.error, CtoBalanceNotInitialized)
        assert "2027" in result.message
