"""Company-level master data: company, org units, holidays and pay rules.

These rows are owned by external master-data maintenance; the payroll
core only reads them.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_backoffice.models.base import Base, Rate, TimestampMixin


class Company(Base, TimestampMixin):
    """Tenant company."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Department(Base, TimestampMixin):
    """Department within a company."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="department_company_name_unique"),
    )


class Branch(Base, TimestampMixin):
    """Branch / worksite within a company."""

    __tablename__ = "branch"

    branch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="branch_company_name_unique"),
    )


class Holiday(Base, TimestampMixin):
    """Holiday calendar entry. A null company applies to every company."""

    __tablename__ = "holiday"

    holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=True,
    )
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    holiday_type: Mapped[str] = mapped_column(String, nullable=False)
    pay_multiplier: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("1"))

    __table_args__ = (
        CheckConstraint(
            "holiday_type IN ('REGULAR', 'SPECIAL_NON_WORKING', 'SPECIAL_WORKING')",
            name="holiday_type_check",
        ),
    )


class OvertimeRate(Base, TimestampMixin):
    """Overtime pay multiplier per overtime type."""

    __tablename__ = "overtime_rate"

    overtime_rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    overtime_type: Mapped[str] = mapped_column(String, nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "overtime_type IN ('REGULAR_OT', 'REST_DAY_OT', 'REGULAR_HOLIDAY_OT', "
            "'SPECIAL_HOLIDAY_OT', 'REST_DAY_HOLIDAY_OT')",
            name="overtime_rate_type_check",
        ),
    )


class AttendanceDeductionRule(Base, TimestampMixin):
    """How tardiness or undertime minutes turn into a deduction."""

    __tablename__ = "attendance_deduction_rule"

    attendance_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_type: Mapped[str] = mapped_column(String, nullable=False)
    calculation_basis: Mapped[str] = mapped_column(String, nullable=False, default="PER_MINUTE")
    threshold_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "rule_type IN ('TARDINESS', 'UNDERTIME')",
            name="attendance_rule_type_check",
        ),
        CheckConstraint(
            "calculation_basis IN ('PER_MINUTE', 'PER_15_MINS', 'PER_30_MINS', "
            "'PER_HOUR', 'DAILY_RATE')",
            name="attendance_rule_basis_check",
        ),
        CheckConstraint("threshold_mins >= 0", name="attendance_rule_threshold_check"),
    )
