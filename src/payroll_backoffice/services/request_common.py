"""Pieces shared by the leave and overtime request workflows."""

from __future__ import annotations

import logging
import random
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.context import RequestContext
from payroll_backoffice.errors import BusinessRuleError, NotAuthorized
from payroll_backoffice.services.state_machine import RequestStatus

logger = logging.getLogger(__name__)

REQUEST_NUMBER_ATTEMPTS = 5


async def generate_request_number(
    session: AsyncSession, model: Any, prefix: str, today: date
) -> str | None:
    """`{prefix}-YYYYMMDD-######` with a random suffix; None after repeated collisions."""
    for _ in range(REQUEST_NUMBER_ATTEMPTS):
        candidate = f"{prefix}-{today:%Y%m%d}-{random.randint(0, 999_999):06d}"
        taken = await session.scalar(
            select(func.count()).select_from(model).where(model.request_number == candidate)
        )
        if not taken:
            return candidate
        logger.debug("Request number %s already taken, retrying", candidate)
    return None


def check_can_decide(ctx: RequestContext, request: Any, noun: str) -> BusinessRuleError | None:
    """Who may approve or reject at the request's current stage.

    PENDING is the supervisor stage: the recorded supervisor or any approver.
    SUPERVISOR_APPROVED is the HR/finance stage: approvers only.
    """
    if ctx.can_approve_requests:
        return None
    if request.status == RequestStatus.PENDING.value and ctx.acting_as(request.supervisor_approver_id):
        return None
    return NotAuthorized(f"You are not allowed to act on this {noun}.")
