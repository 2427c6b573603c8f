"""Pay schedules, periods, payroll runs, process steps and payslips."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backoffice.models.base import (
    JSONType,
    Base,
    Rate,
    TimestampMixin,
    UpdatedAtMixin,
)

# ===== Pay Schedules & Periods =====


class PaySchedule(Base, TimestampMixin):
    """Pay schedule (period pattern) definition."""

    __tablename__ = "pay_schedule"

    pay_schedule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False)
    periods_per_year: Mapped[int] = mapped_column(Integer, nullable=False)
    # {"sss": "SECOND_HALF", "philHealth": "FIRST_HALF", ...}; unknown values fall back to defaults
    statutory_schedule: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="pay_schedule_company_name_unique"),
        CheckConstraint(
            "pay_frequency IN ('WEEKLY', 'BI_WEEKLY', 'SEMI_MONTHLY', 'MONTHLY')",
            name="pay_schedule_frequency_check",
        ),
        CheckConstraint("periods_per_year > 0", name="pay_schedule_periods_positive"),
    )


class PayPeriod(Base, UpdatedAtMixin):
    """Pay period instance."""

    __tablename__ = "pay_period"

    pay_period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    pay_schedule_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_schedule.pay_schedule_id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    period_half: Mapped[str] = mapped_column(String, nullable=False)
    cutoff_start: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_end: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    working_days: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN")
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pay_schedule: Mapped[PaySchedule] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("pay_schedule_id", "year", "period_number", name="pay_period_schedule_number_unique"),
        CheckConstraint("period_half IN ('FIRST', 'SECOND')", name="pay_period_half_check"),
        CheckConstraint(
            "status IN ('OPEN', 'PROCESSING', 'CLOSED', 'LOCKED')",
            name="pay_period_status_check",
        ),
        CheckConstraint("cutoff_end >= cutoff_start", name="pay_period_cutoff_check"),
    )


# ===== Payroll Runs =====


class PayrollRun(Base, UpdatedAtMixin):
    """Payroll run driven through the six-step pipeline."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    run_number: Mapped[str] = mapped_column(String, nullable=False)
    pay_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.pay_period_id", ondelete="RESTRICT"),
        nullable=False,
    )
    run_type: Mapped[str] = mapped_column(String, nullable=False, default="REGULAR")
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Scope, fixed at creation
    department_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    branch_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    employee_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_employer_contributions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payslips_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    steps: Mapped[list[PayrollProcessStep]] = relationship(
        back_populates="payroll_run",
        lazy="selectin",
        order_by="PayrollProcessStep.step_number",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("company_id", "run_number", name="payroll_run_company_number_unique"),
        CheckConstraint(
            "run_type IN ('REGULAR', 'TRIAL_RUN', 'THIRTEENTH_MONTH', 'MID_YEAR_BONUS')",
            name="payroll_run_type_check",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'VALIDATING', 'COMPUTED', 'FOR_REVIEW', 'FOR_PAYMENT', 'PAID')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("current_step BETWEEN 1 AND 6", name="payroll_run_step_range"),
    )

    def step(self, step_number: int) -> PayrollProcessStep:
        """Return the process step row for a step number."""
        for step in self.steps:
            if step.step_number == step_number:
                return step
        raise KeyError(f"Payroll run {self.payroll_run_id} has no step {step_number}")

    @property
    def scope(self) -> dict[str, list[str]]:
        return {
            "department_ids": list(self.department_ids or []),
            "branch_ids": list(self.branch_ids or []),
            "employee_ids": list(self.employee_ids or []),
        }


class PayrollProcessStep(Base, UpdatedAtMixin):
    """Completion state and trace notes for one pipeline step."""

    __tablename__ = "payroll_process_step"

    step_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    # Serialized step-note variant; see services.step_notes
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="steps")

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "step_number", name="payroll_step_run_number_unique"),
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="payroll_step_status_check",
        ),
    )


# ===== Payslips =====


class Payslip(Base, UpdatedAtMixin):
    """Per-employee output of a payroll run."""

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    payslip_number: Mapped[str | None] = mapped_column(String, nullable=True)

    base_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    daily_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))
    hourly_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))
    working_days: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    days_worked: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    days_absent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    overtime_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    night_diff_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tardiness_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    undertime_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    basic_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Statutory amounts actually applied this period
    sss_employee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sss_employer: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    philhealth_employee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    philhealth_employer: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pagibig_employee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pagibig_employer: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    withholding_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    inputs_fingerprint: Mapped[str | None] = mapped_column(String, nullable=True)
    calculation_version: Mapped[str | None] = mapped_column(String, nullable=True)
    generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    earnings: Mapped[list[PayslipEarning]] = relationship(
        back_populates="payslip",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PayslipEarning.line_number",
    )
    deductions: Mapped[list[PayslipDeduction]] = relationship(
        back_populates="payslip",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PayslipDeduction.line_number",
    )

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payslip_run_employee_unique"),
        CheckConstraint("net_pay >= 0", name="payslip_net_non_negative"),
    )

    @property
    def is_frozen(self) -> bool:
        return self.generated_at is not None

    @property
    def employer_contributions(self) -> Decimal:
        return self.sss_employer + self.philhealth_employer + self.pagibig_employer


class PayslipEarning(Base, TimestampMixin):
    """Earning line on a payslip."""

    __tablename__ = "payslip_earning"

    earning_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payslip_id: Mapped[UUID] = mapped_column(
        ForeignKey("payslip.payslip_id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    code: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    days: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_adjustment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    payslip: Mapped[Payslip] = relationship(back_populates="earnings")

    __table_args__ = (CheckConstraint("amount >= 0", name="payslip_earning_amount_non_negative"),)


class PayslipDeduction(Base, TimestampMixin):
    """Deduction line on a payslip (amounts stored positive)."""

    __tablename__ = "payslip_deduction"

    deduction_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payslip_id: Mapped[UUID] = mapped_column(
        ForeignKey("payslip.payslip_id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    code: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    employer_share: Mapped[Decimal | None] = mapped_column(nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_adjustment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    payslip: Mapped[Payslip] = relationship(back_populates="deductions")

    __table_args__ = (CheckConstraint("amount >= 0", name="payslip_deduction_amount_non_negative"),)
