"""Pytest fixtures for payroll back office tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_backoffice.calculators.attendance import dates_in_period, day_name
from payroll_backoffice.context import RequestContext
from payroll_backoffice.database import make_session_factory
from payroll_backoffice.models import (
    Base,
    Company,
    DailyTimeRecord,
    Department,
    Employee,
    EmployeeSalary,
    LeaveBalance,
    LeaveType,
    PayPeriod,
    PaySchedule,
    StatutoryContribution,
)

# In-memory SQLite shared across connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

REST_DAYS = ["SATURDAY", "SUNDAY"]
CUTOFF_START = date(2026, 3, 1)
CUTOFF_END = date(2026, 3, 15)


@pytest.fixture
async def engine():
    """Fresh schema per test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = make_session_factory(engine)
    async with factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Organization
# ============================================================================


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    company = Company(code="ACME", name="Acme Trading Corp", is_active=True)
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def department(session: AsyncSession, company: Company) -> Department:
    department = Department(company_id=company.company_id, name="Operations")
    session.add(department)
    await session.flush()
    return department


@pytest.fixture
async def pay_schedule(session: AsyncSession, company: Company) -> PaySchedule:
    schedule = PaySchedule(
        company_id=company.company_id,
        name="Semi-monthly",
        pay_frequency="SEMI_MONTHLY",
        periods_per_year=24,
        statutory_schedule=None,
    )
    session.add(schedule)
    await session.flush()
    return schedule


@pytest.fixture
async def pay_period(session: AsyncSession, company: Company, pay_schedule: PaySchedule) -> PayPeriod:
    """First half of March 2026: ten working days, weekends as rest days."""
    period = PayPeriod(
        company_id=company.company_id,
        pay_schedule_id=pay_schedule.pay_schedule_id,
        year=2026,
        period_number=5,
        period_half="FIRST",
        cutoff_start=CUTOFF_START,
        cutoff_end=CUTOFF_END,
        payment_date=date(2026, 3, 20),
        status="OPEN",
    )
    session.add(period)
    await session.flush()
    return period


# ============================================================================
# Employees
# ============================================================================


async def make_employee(
    session: AsyncSession,
    company: Company,
    pay_schedule: PaySchedule,
    number: str,
    *,
    manager: Employee | None = None,
    department: Department | None = None,
    base_salary: Decimal = Decimal("30000.00"),
    is_overtime_eligible: bool = True,
    contributions: bool = True,
) -> Employee:
    employee = Employee(
        company_id=company.company_id,
        employee_number=number,
        first_name="Test",
        last_name=number,
        pay_schedule_id=pay_schedule.pay_schedule_id,
        reporting_manager_id=manager.employee_id if manager else None,
        department_id=department.department_id if department else None,
        is_overtime_eligible=is_overtime_eligible,
        hire_date=date(2024, 1, 15),
        rest_days=list(REST_DAYS),
    )
    session.add(employee)
    await session.flush()

    session.add(
        EmployeeSalary(
            employee_id=employee.employee_id,
            base_salary=base_salary,
            rate_type="MONTHLY",
            is_active=True,
        )
    )
    if contributions:
        for kind, employee_share, employer_share in (
            ("SSS", "675.00", "1350.00"),
            ("PHILHEALTH", "375.00", "375.00"),
            ("PAGIBIG", "100.00", "100.00"),
            ("WITHHOLDING_TAX", "500.00", "0"),
        ):
            session.add(
                StatutoryContribution(
                    employee_id=employee.employee_id,
                    kind=kind,
                    employee_share=Decimal(employee_share),
                    employer_share=Decimal(employer_share),
                    effective_from=date(2026, 1, 1),
                )
            )
    await session.flush()
    return employee


async def add_full_attendance(session: AsyncSession, employee: Employee) -> None:
    """PRESENT on every weekday of the cutoff."""
    for day in dates_in_period(CUTOFF_START, CUTOFF_END):
        if day_name(day) in REST_DAYS:
            continue
        session.add(
            DailyTimeRecord(
                employee_id=employee.employee_id,
                attendance_date=day,
                status="PRESENT",
                approval_status="APPROVED",
                time_in=datetime(day.year, day.month, day.day, 8, 0, tzinfo=timezone.utc),
                time_out=datetime(day.year, day.month, day.day, 17, 0, tzinfo=timezone.utc),
                hours_worked=Decimal("8"),
            )
        )
    await session.flush()


@pytest.fixture
async def manager(session, company, pay_schedule, department) -> Employee:
    return await make_employee(session, company, pay_schedule, "EMP-001", department=department)


@pytest.fixture
async def staff(session, company, pay_schedule, department, manager) -> Employee:
    return await make_employee(
        session, company, pay_schedule, "EMP-002", manager=manager, department=department
    )


@pytest.fixture
async def attended(session, manager, staff) -> list[Employee]:
    """Both employees with complete, approved attendance for the cutoff."""
    await add_full_attendance(session, manager)
    await add_full_attendance(session, staff)
    return [manager, staff]


# ============================================================================
# Leave types and balances
# ============================================================================


@pytest.fixture
async def leave_types(session: AsyncSession, company: Company) -> dict[str, LeaveType]:
    types = {
        "VL": LeaveType(company_id=company.company_id, code="VL", name="Vacation Leave", is_paid=True),
        "SL": LeaveType(company_id=company.company_id, code="SL", name="Sick Leave", is_paid=True),
        "EL": LeaveType(company_id=company.company_id, code="EL", name="Emergency Leave", is_paid=True),
        "LWOP": LeaveType(company_id=company.company_id, code="LWOP", name="Leave Without Pay", is_paid=False),
        "CTO": LeaveType(
            company_id=company.company_id, code="CTO", name="Compensatory Time Off", is_paid=True, is_cto=True
        ),
    }
    session.add_all(types.values())
    await session.flush()
    return types


async def make_balance(
    session: AsyncSession,
    employee: Employee,
    leave_type: LeaveType,
    opening: Decimal,
    year: int = 2026,
) -> LeaveBalance:
    balance = LeaveBalance(
        employee_id=employee.employee_id,
        leave_type_id=leave_type.leave_type_id,
        year=year,
        opening_balance=opening,
        current_balance=opening,
        available_balance=opening,
        pending_requests=Decimal("0"),
    )
    session.add(balance)
    await session.flush()
    return balance


@pytest.fixture
async def balances(session, staff, manager, leave_types) -> dict[str, LeaveBalance]:
    """Staff: 10 VL, 5 SL, 0 CTO. Manager: 0 CTO."""
    return {
        "VL": await make_balance(session, staff, leave_types["VL"], Decimal("10")),
        "SL": await make_balance(session, staff, leave_types["SL"], Decimal("5")),
        "CTO": await make_balance(session, staff, leave_types["CTO"], Decimal("0")),
        "MANAGER_CTO": await make_balance(session, manager, leave_types["CTO"], Decimal("0")),
    }


# ============================================================================
# Request contexts
# ============================================================================


@pytest.fixture
def payroll_ctx(company) -> RequestContext:
    """Payroll officer who can manage runs."""
    return RequestContext(
        company_id=company.company_id,
        actor_user_id=uuid4(),
        can_manage_payroll=True,
    )


@pytest.fixture
def hr_ctx(company) -> RequestContext:
    """HR approver for final request approval."""
    return RequestContext(
        company_id=company.company_id,
        actor_user_id=uuid4(),
        can_approve_requests=True,
    )


@pytest.fixture
def staff_ctx(company, staff) -> RequestContext:
    return RequestContext(
        company_id=company.company_id,
        actor_user_id=uuid4(),
        actor_employee_id=staff.employee_id,
    )


@pytest.fixture
def manager_ctx(company, manager) -> RequestContext:
    return RequestContext(
        company_id=company.company_id,
        actor_user_id=uuid4(),
        actor_employee_id=manager.employee_id,
    )


# ============================================================================
# Payroll runs
# ============================================================================


@pytest.fixture
async def run_at_review(session, payroll_ctx, pay_period, attended):
    """A REGULAR run calculated for both employees and sitting at review."""
    from payroll_backoffice.services.pay_run_service import CreateRunInput, PayrollRunPipeline

    pipeline = PayrollRunPipeline(session)
    run = (await pipeline.create(payroll_ctx, CreateRunInput(pay_period_id=pay_period.pay_period_id))).unwrap()
    await pipeline.validate(payroll_ctx, run.payroll_run_id)
    (await pipeline.proceed_to_calculate(payroll_ctx, run.payroll_run_id)).unwrap()
    (await pipeline.calculate(payroll_ctx, run.payroll_run_id)).unwrap()
    (await pipeline.proceed_to_review(payroll_ctx, run.payroll_run_id)).unwrap()
    return run
