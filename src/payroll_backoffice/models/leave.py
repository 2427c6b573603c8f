"""Leave and overtime models: balances, the append-only ledger and requests."""

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
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_backoffice.models.base import Base, TimestampMixin, UpdatedAtMixin


class LeaveType(Base, UpdatedAtMixin):
    """Leave type configured per company (VL, SL, EL, LWOP, CTO, ...)."""

    __tablename__ = "leave_type"

    leave_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_cto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="leave_type_company_code_unique"),
    )


class LeaveBalance(Base, UpdatedAtMixin):
    """Per (employee, leave type, year) balance.

    Rows are created by the yearly initialization process and mutated only
    through payroll_backoffice.ledger.BalanceLedger.
    """

    __tablename__ = "leave_balance"

    leave_balance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credits_earned: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credits_used: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    available_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pending_requests: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type_id", "year", name="leave_balance_employee_type_year_unique"),
        CheckConstraint("current_balance >= 0", name="leave_balance_current_non_negative"),
        CheckConstraint("available_balance >= 0", name="leave_balance_available_non_negative"),
        CheckConstraint("pending_requests >= 0", name="leave_balance_pending_non_negative"),
    )


class LeaveBalanceTransaction(Base, TimestampMixin):
    """Append-only ledger row; never updated or deleted."""

    __tablename__ = "leave_balance_transaction"

    transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    leave_balance_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_balance.leave_balance_id", ondelete="RESTRICT"),
        nullable=False,
    )
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    running_balance: Mapped[Decimal] = mapped_column(nullable=False)
    reference_type: Mapped[str] = mapped_column(String, nullable=False)
    reference_id: Mapped[UUID] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('ACCRUAL', 'USAGE', 'ADJUSTMENT')",
            name="leave_balance_transaction_type_check",
        ),
        Index("ix_leave_balance_transaction_balance", "leave_balance_id"),
        # One accrual per source document; backs the CTO idempotency check
        Index(
            "uq_leave_balance_transaction_accrual_reference",
            "reference_type",
            "reference_id",
            unique=True,
            postgresql_where=text("transaction_type = 'ACCRUAL'"),
            sqlite_where=text("transaction_type = 'ACCRUAL'"),
        ),
    )


class LeaveRequest(Base, UpdatedAtMixin):
    """Employee leave request."""

    __tablename__ = "leave_request"

    leave_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    request_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id"),
        nullable=False,
    )
    # Balance actually charged; differs from leave_type_id for emergency leave, null when unpaid
    charge_leave_type_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("leave_type.leave_type_id"),
        nullable=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    number_of_days: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    balance_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    supervisor_approver_id: Mapped[UUID | None] = mapped_column(nullable=True)
    supervisor_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hr_approver_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SUPERVISOR_APPROVED', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="leave_request_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
        CheckConstraint("number_of_days > 0", name="leave_request_days_positive"),
    )


class OvertimeRequest(Base, UpdatedAtMixin):
    """Employee overtime request."""

    __tablename__ = "overtime_request"

    overtime_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    request_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    overtime_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    supervisor_approver_id: Mapped[UUID | None] = mapped_column(nullable=True)
    supervisor_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hr_approver_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cto_converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cto_converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SUPERVISOR_APPROVED', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="overtime_request_status_check",
        ),
        CheckConstraint("hours >= 1", name="overtime_request_minimum_hours"),
    )
