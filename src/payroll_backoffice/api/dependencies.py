"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated, TypeVar
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.context import RequestContext
from payroll_backoffice.database import init_db
from payroll_backoffice.errors import OperationResult
from payroll_backoffice.events import AuditEmitter

T = TypeVar("T")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_emitter(request: Request) -> AuditEmitter:
    return request.app.state.emitter


def _parse_uuid(value: str | None, header: str, required: bool = True) -> UUID | None:
    if not value:
        if required:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{header} header is required",
            )
        return None
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_request_context(
    x_company_id: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
    x_employee_id: Annotated[str | None, Header()] = None,
    x_can_manage_payroll: Annotated[bool, Header()] = False,
    x_can_approve_requests: Annotated[bool, Header()] = False,
) -> RequestContext:
    """Build the request context from headers set by the upstream auth layer."""
    return RequestContext(
        company_id=_parse_uuid(x_company_id, "X-Company-ID"),  # type: ignore[arg-type]
        actor_user_id=_parse_uuid(x_actor_id, "X-Actor-ID"),  # type: ignore[arg-type]
        actor_employee_id=_parse_uuid(x_employee_id, "X-Employee-ID", required=False),
        can_manage_payroll=x_can_manage_payroll,
        can_approve_requests=x_can_approve_requests,
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Context = Annotated[RequestContext, Depends(get_request_context)]
Emitter = Annotated[AuditEmitter, Depends(get_emitter)]


async def commit_result(db: AsyncSession, emitter: AuditEmitter, result: OperationResult[T]) -> T:
    """Commit a successful operation and publish its facts; raise its error otherwise.

    Facts reach the emitter only after the commit succeeded.
    """
    if not result.ok:
        await db.rollback()
        raise result.error  # type: ignore[misc]
    with emitter.batch() as batch:
        await db.commit()
        batch.extend(result.facts)
    return result.value  # type: ignore[return-value]
