"""API routes."""

from payroll_backoffice.api.routes.health import router as health_router
from payroll_backoffice.api.routes.leave_requests import router as leave_requests_router
from payroll_backoffice.api.routes.overtime_requests import router as overtime_requests_router
from payroll_backoffice.api.routes.payroll_runs import router as payroll_runs_router

__all__ = [
    "health_router",
    "leave_requests_router",
    "overtime_requests_router",
    "payroll_runs_router",
]
