"""Tests for typed step notes storage."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from payroll_backoffice.services.step_notes import (
    CloseNotes,
    GenerationNotes,
    ReviewNotes,
    RunScope,
    SetupNotes,
    ValidationIssue,
    ValidationTrace,
    dump_notes,
    load_notes,
)

NOW = datetime(2026, 3, 16, 9, 30, tzinfo=timezone.utc)


class TestStepNotes:
    def test_missing_notes_load_as_none(self):
        assert load_notes(None) is None
        assert load_notes("") is None

    def test_variant_is_chosen_by_kind(self):
        stored = dump_notes(GenerationNotes(payslip_count=2, generated_at=NOW))

        notes = load_notes(stored)

        assert isinstance(notes, GenerationNotes)
        assert notes.payslip_count == 2
        assert notes.regenerated is False

    def test_setup_notes_keep_the_scope(self):
        department = str(uuid4())
        stored = dump_notes(
            SetupNotes(
                run_type="REGULAR",
                scope=RunScope(department_ids=[department]),
                eligible_employees=12,
                created_at=NOW,
            )
        )

        notes = load_notes(stored)

        assert isinstance(notes, SetupNotes)
        assert notes.scope.department_ids == [department]
        assert notes.scope.is_whole_company is False

    def test_validation_trace_passed(self):
        clean = ValidationTrace(validated_at=NOW, error_count=0, warning_count=1)
        failed = ValidationTrace(
            validated_at=NOW,
            error_count=1,
            warning_count=0,
            errors=[ValidationIssue(code="MISSING_SALARY", message="Employee EMP-9 has no active salary record.")],
        )

        assert clean.passed is True
        assert failed.passed is False
        assert isinstance(load_notes(dump_notes(failed)), ValidationTrace)

    def test_close_and_review_notes(self):
        close = load_notes(
            dump_notes(CloseNotes(closed_at=NOW, period_locked=True, total_net_pay=Decimal("28050.00")))
        )
        review = load_notes(dump_notes(ReviewNotes(reopened_at=NOW, reopen_reason="Missed allowance")))

        assert isinstance(close, CloseNotes)
        assert close.total_net_pay == Decimal("28050.00")
        assert isinstance(review, ReviewNotes)
        assert review.reopen_reason == "Missed allowance"
