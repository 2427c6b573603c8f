"""ORM models."""

from payroll_backoffice.models.base import Base, TimestampMixin, UpdatedAtMixin
from payroll_backoffice.models.company import (
    AttendanceDeductionRule,
    Branch,
    Company,
    Department,
    Holiday,
    OvertimeRate,
)
from payroll_backoffice.models.employee import (
    DailyTimeRecord,
    Employee,
    EmployeeSalary,
    RecurringDeduction,
    RecurringEarning,
    StatutoryContribution,
)
from payroll_backoffice.models.leave import (
    LeaveBalance,
    LeaveBalanceTransaction,
    LeaveRequest,
    LeaveType,
    OvertimeRequest,
)
from payroll_backoffice.models.payroll import (
    PayPeriod,
    PayrollProcessStep,
    PayrollRun,
    PaySchedule,
    Payslip,
    PayslipDeduction,
    PayslipEarning,
)

__all__ = [
    "AttendanceDeductionRule",
    "Base",
    "Branch",
    "Company",
    "DailyTimeRecord",
    "Department",
    "Employee",
    "EmployeeSalary",
    "Holiday",
    "LeaveBalance",
    "LeaveBalanceTransaction",
    "LeaveRequest",
    "LeaveType",
    "OvertimeRate",
    "OvertimeRequest",
    "PayPeriod",
    "PaySchedule",
    "PayrollProcessStep",
    "PayrollRun",
    "Payslip",
    "PayslipDeduction",
    "PayslipEarning",
    "RecurringDeduction",
    "RecurringEarning",
    "StatutoryContribution",
    "TimestampMixin",
    "UpdatedAtMixin",
]
