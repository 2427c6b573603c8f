"""Explicit per-request context passed into every ledger, workflow and pipeline call."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, for which company, and what the caller allowed them to do.

    Authorization decisions are made by the caller (session/role layer) and
    arrive here as booleans; this package never resolves roles itself.
    """

    company_id: UUID
    actor_user_id: UUID
    actor_employee_id: UUID | None = None
    can_manage_payroll: bool = False
    can_approve_requests: bool = False

    def acting_as(self, employee_id: UUID | None) -> bool:
        """True when the actor is the given employee."""
        return employee_id is not None and self.actor_employee_id == employee_id
