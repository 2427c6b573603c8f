"""Emitter that delivers audit facts to registered handlers.

Facts are published only after the transaction that produced them has
committed: callers collect them in a batch around the unit of work, and a
batch that exits with an exception is discarded. Handler failures are
isolated and logged; they never propagate back into a committed mutation.

Usage:
    emitter = AuditEmitter()
    emitter.on(CtoCredited, notify_payroll_team)
    emitter.on_category(FactCategory.LEDGER, write_audit_row)

    with emitter.batch() as batch:
        result = await workflow.approve(ctx, request_id)
        await session.commit()
        batch.extend(result.facts)
    # facts delivered here
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

from payroll_backoffice.events.types import AuditFact, FactCategory

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("payroll_backoffice.audit")

T = TypeVar("T", bound=AuditFact)

FactHandler = Callable[[AuditFact], None]


@dataclass
class HandlerRegistration:
    """Registration of a fact handler."""

    handler: FactHandler
    fact_types: set[str] | None  # None = all facts
    categories: set[FactCategory] | None  # None = all categories


class AuditEmitter:
    """Synchronous audit fact emitter with per-handler error isolation."""

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, fact_type: type[T] | list[type[T]], handler: FactHandler) -> None:
        """Register handler for specific fact type(s)."""
        if isinstance(fact_type, list):
            types = {t.__name__ for t in fact_type}
        else:
            types = {fact_type.__name__}
        self._handlers.append(HandlerRegistration(handler, types, None))

    def on_category(
        self,
        category: FactCategory | list[FactCategory],
        handler: FactHandler,
    ) -> None:
        """Register handler for fact category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(HandlerRegistration(handler, None, cats))

    def on_all(self, handler: FactHandler) -> None:
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: FactHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, fact: AuditFact) -> list[Exception]:
        """Emit a fact to all matching handlers.

        Returns the exceptions raised by handlers (already logged).
        """
        return self._dispatch(fact)

    def publish(self, facts: Iterable[AuditFact]) -> list[Exception]:
        errors: list[Exception] = []
        for fact in facts:
            errors.extend(self.emit(fact))
        return errors

    def _dispatch(self, fact: AuditFact) -> list[Exception]:
        errors: list[Exception] = []
        fact_type = fact.fact_type
        category = fact.category

        for reg in self._handlers:
            if reg.fact_types and fact_type not in reg.fact_types:
                continue
            if reg.categories and category not in reg.categories:
                continue
            try:
                reg.handler(fact)
            except Exception as e:
                logger.exception("Handler %s failed for fact %s", reg.handler, fact_type)
                errors.append(e)

        return errors

    def batch(self) -> FactBatch:
        """Hold facts until the context exits; discard them on exception."""
        return FactBatch(self)


class FactBatch:
    """Context manager collecting facts for one unit of work.

    Pending facts live on the batch, so concurrent units of work sharing one
    emitter never see each other's facts.
    """

    def __init__(self, emitter: AuditEmitter) -> None:
        self._emitter = emitter
        self._pending: list[AuditFact] = []
        self._errors: list[Exception] = []

    def __enter__(self) -> FactBatch:
        self._pending = []
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        facts, self._pending = self._pending, []
        if exc_type is None:
            self._errors = self._emitter.publish(facts)

    def add(self, fact: AuditFact) -> None:
        self._pending.append(fact)

    def extend(self, facts: Iterable[AuditFact]) -> None:
        self._pending.extend(facts)

    @property
    def errors(self) -> list[Exception]:
        """Errors from handler execution (available after context exits)."""
        return self._errors


def log_fact(fact: AuditFact) -> None:
    """Default handler: one structured log line per fact."""
    audit_logger.info("%s %s", fact.fact_type, fact.to_json())


def create_default_emitter() -> AuditEmitter:
    emitter = AuditEmitter()
    emitter.on_all(log_fact)
    return emitter
