"""Employee master data and per-employee pay inputs."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_backoffice.models.base import JSONType, Base, Rate, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    branch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("branch.branch_id"),
        nullable=True,
    )
    pay_schedule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("pay_schedule.pay_schedule_id"),
        nullable=True,
    )
    reporting_manager_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=True,
    )
    is_overtime_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_night_diff_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    separation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Day names such as ["SATURDAY", "SUNDAY"]; None means no work schedule assigned
    rest_days: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "employee_number", name="employee_company_number_unique"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class EmployeeSalary(Base, TimestampMixin):
    """Salary configuration (one active row per employee)."""

    __tablename__ = "employee_salary"

    salary_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    base_salary: Mapped[Decimal] = mapped_column(nullable=False)
    rate_type: Mapped[str] = mapped_column(String, nullable=False, default="MONTHLY")
    daily_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    hours_per_day: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("8"))
    monthly_divisor: Mapped[int] = mapped_column(Integer, nullable=False, default=365)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("rate_type IN ('MONTHLY', 'DAILY', 'HOURLY')", name="salary_rate_type_check"),
        CheckConstraint("base_salary >= 0", name="salary_base_non_negative"),
    )


class RecurringEarning(Base, TimestampMixin):
    """Allowance paid every payroll (or once a month)."""

    __tablename__ = "recurring_earning"

    recurring_earning_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="PER_PAYROLL")
    proration_rule: Mapped[str] = mapped_column(String, nullable=False, default="NONE")
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("frequency IN ('PER_PAYROLL', 'MONTHLY')", name="recurring_earning_frequency_check"),
        CheckConstraint("proration_rule IN ('NONE', 'PRORATED_DAYS')", name="recurring_earning_proration_check"),
    )


class RecurringDeduction(Base, TimestampMixin):
    """Fixed or percentage deduction applied per payroll."""

    __tablename__ = "recurring_deduction"

    recurring_deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_percentage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    percentage_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    percentage_base: Mapped[str] = mapped_column(String, nullable=False, default="GROSS")
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="PER_PAYROLL")
    period_applicability: Mapped[str] = mapped_column(String, nullable=False, default="EVERY_PERIOD")
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_deduction_limit: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("percentage_base IN ('GROSS', 'BASIC', 'NET')", name="recurring_deduction_base_check"),
        CheckConstraint("frequency IN ('PER_PAYROLL', 'MONTHLY')", name="recurring_deduction_frequency_check"),
        CheckConstraint(
            "period_applicability IN ('EVERY_PERIOD', 'FIRST_HALF', 'SECOND_HALF')",
            name="recurring_deduction_applicability_check",
        ),
    )


class StatutoryContribution(Base, TimestampMixin):
    """Pre-computed statutory amount for one deduction kind.

    Bracket lookups happen upstream; the payroll core only decides whether
    the amount applies in a given period.
    """

    __tablename__ = "statutory_contribution"

    contribution_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String, nullable=False)
    employee_share: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    employer_share: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "kind", "effective_from", name="statutory_contribution_unique"),
        CheckConstraint(
            "kind IN ('SSS', 'PHILHEALTH', 'PAGIBIG', 'WITHHOLDING_TAX')",
            name="statutory_contribution_kind_check",
        ),
    )


class DailyTimeRecord(Base, TimestampMixin):
    """One day of attendance for one employee."""

    __tablename__ = "daily_time_record"

    dtr_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PRESENT")
    approval_status: Mapped[str] = mapped_column(String, nullable=False, default="APPROVED")
    time_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hours_worked: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    overtime_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    night_diff_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tardiness_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    undertime_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="dtr_employee_date_unique"),
        CheckConstraint(
            "status IN ('PRESENT', 'ABSENT', 'ON_LEAVE', 'REST_DAY', 'HOLIDAY')",
            name="dtr_status_check",
        ),
        CheckConstraint("approval_status IN ('APPROVED', 'PENDING')", name="dtr_approval_status_check"),
    )

    @property
    def is_incomplete(self) -> bool:
        """Exactly one of time-in and time-out is recorded."""
        return (self.time_in is None) != (self.time_out is None)

    @property
    def is_half_day(self) -> bool:
        remarks = (self.remarks or "").upper()
        return "[HALF_DAY]" in remarks or "HALF DAY" in remarks or "HALFDAY" in remarks
