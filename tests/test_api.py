"""HTTP tests for the FastAPI application."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from payroll_backoffice.api.app import create_app
from payroll_backoffice.database import init_db
from payroll_backoffice.events import AuditEmitter


@pytest.fixture
def emitter():
    return AuditEmitter()


@pytest.fixture
def received(emitter):
    facts = []
    emitter.on_all(facts.append)
    return facts


@pytest.fixture
async def client(engine, session, emitter, attended, balances, pay_period):
    """Client over the seeded schema; fixture rows are committed first."""
    await session.commit()
    init_db(engine)
    app = create_app(emitter)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def headers(ctx) -> dict[str, str]:
    values = {
        "X-Company-ID": str(ctx.company_id),
        "X-Actor-ID": str(ctx.actor_user_id),
        "X-Can-Manage-Payroll": str(ctx.can_manage_payroll).lower(),
        "X-Can-Approve-Requests": str(ctx.can_approve_requests).lower(),
    }
    if ctx.actor_employee_id is not None:
        values["X-Employee-ID"] = str(ctx.actor_employee_id)
    return values


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"
        assert response.json()["calculation_version"]

    async def test_ready(self, client):
        response = await client.get("/ready")
        assert response.json() == {"status": "ready"}

    async def test_live(self, client):
        response = await client.get("/live")
        assert response.json() == {"status": "alive"}


class TestContextHeaders:
    async def test_company_header_required(self, client, payroll_ctx):
        values = headers(payroll_ctx)
        del values["X-Company-ID"]

        response = await client.get("/api/v1/payroll-runs", headers=values)

        assert response.status_code == 400
        assert response.json()["detail"] == "X-Company-ID header is required"

    async def test_malformed_actor(self, client, payroll_ctx):
        values = headers(payroll_ctx) | {"X-Actor-ID": "not-a-uuid"}

        response = await client.get("/api/v1/payroll-runs", headers=values)

        assert response.status_code == 400


class TestLeaveEndpoints:
    async def test_submit_leave(self, client, staff_ctx, staff, leave_types, received):
        response = await client.post(
            "/api/v1/leave-requests",
            headers=headers(staff_ctx),
            json={
                "employee_id": str(staff.employee_id),
                "leave_type_id": str(leave_types["VL"].leave_type_id),
                "start_date": "2026-03-10",
                "end_date": "2026-03-11",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Leave request submitted."
        assert body["request"]["status"] == "PENDING"
        assert Decimal(body["request"]["number_of_days"]) == Decimal("2")
        # Published only after the commit
        assert [fact.__class__.__name__ for fact in received] == [
            "LeaveBalanceReserved",
            "RequestTransitioned",
        ]

    async def test_insufficient_balance_is_conflict(self, client, staff_ctx, staff, leave_types, received):
        response = await client.post(
            "/api/v1/leave-requests",
            headers=headers(staff_ctx),
            json={
                "employee_id": str(staff.employee_id),
                "leave_type_id": str(leave_types["SL"].leave_type_id),
                "start_date": "2026-03-02",
                "end_date": "2026-03-09",
            },
        )

        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_BALANCE"
        assert received == []

    async def test_balance_history(self, client, staff_ctx, staff, leave_types, balances):
        await client.post(
            "/api/v1/leave-requests",
            headers=headers(staff_ctx),
            json={
                "employee_id": str(staff.employee_id),
                "leave_type_id": str(leave_types["VL"].leave_type_id),
                "start_date": "2026-03-10",
                "end_date": "2026-03-10",
            },
        )

        response = await client.get(
            f"/api/v1/leave-balances/{balances['VL'].leave_balance_id}/transactions",
            headers=headers(staff_ctx),
        )

        assert response.status_code == 200
        history = response.json()
        assert len(history) == 1
        assert Decimal(history[0]["amount"]) == Decimal("-1.00")


class TestOvertimeEndpoints:
    async def test_below_minimum_is_conflict(self, client, staff_ctx, staff):
        response = await client.post(
            "/api/v1/overtime-requests",
            headers=headers(staff_ctx),
            json={"employee_id": str(staff.employee_id), "overtime_date": "2026-03-07", "hours": "0.5"},
        )

        assert response.status_code == 409
        assert response.json()["code"] == "OVERTIME_BELOW_MINIMUM"

    async def test_cancel_by_other_employee_forbidden(self, client, staff_ctx, manager_ctx, staff):
        created = await client.post(
            "/api/v1/overtime-requests",
            headers=headers(staff_ctx),
            json={"employee_id": str(staff.employee_id), "overtime_date": "2026-03-07", "hours": "2"},
        )
        request_id = created.json()["request"]["overtime_request_id"]

        response = await client.post(
            f"/api/v1/overtime-requests/{request_id}/cancel", headers=headers(manager_ctx)
        )

        assert response.status_code == 403
        assert response.json()["code"] == "NOT_AUTHORIZED"


class TestPayrollRunEndpoints:
    async def test_unknown_run(self, client, payroll_ctx):
        response = await client.get(f"/api/v1/payroll-runs/{uuid4()}", headers=headers(payroll_ctx))

        assert response.status_code == 404
        assert response.json() == {"detail": "Payroll run not found.", "code": "NOT_FOUND"}

    async def test_requires_payroll_access(self, client, staff_ctx):
        response = await client.get("/api/v1/payroll-runs", headers=headers(staff_ctx))

        assert response.status_code == 403

    async def test_full_run(self, client, payroll_ctx, pay_period, received):
        h = headers(payroll_ctx)
        created = await client.post(
            "/api/v1/payroll-runs", headers=h, json={"pay_period_id": str(pay_period.pay_period_id)}
        )
        assert created.status_code == 201
        run_id = created.json()["run"]["payroll_run_id"]
        base = f"/api/v1/payroll-runs/{run_id}"

        validated = await client.post(f"{base}/validate", headers=h)
        assert validated.json()["trace"]["error_count"] == 0
        assert (await client.post(f"{base}/proceed-to-calculate", headers=h)).status_code == 200

        calculated = await client.post(f"{base}/calculate", headers=h)
        assert calculated.json()["message"] == "Payroll calculated for 2 employee(s)."
        assert Decimal(calculated.json()["trace"]["totals"]["net_pay"]) == Decimal("28050.00")

        assert (await client.post(f"{base}/proceed-to-review", headers=h)).status_code == 200
        payslips = (await client.get(f"{base}/payslips", headers=h)).json()
        assert payslips["total"] == 2
        payslip_id = payslips["items"][0]["payslip_id"]

        adjusted = await client.post(
            f"{base}/payslips/{payslip_id}/adjustments",
            headers=h,
            json={"line_kind": "EARNING", "description": "Missed allowance", "amount": "500.00"},
        )
        assert adjusted.status_code == 201
        assert Decimal(adjusted.json()["payslip"]["net_pay"]) == Decimal("14525.00")

        for action in ("complete-review", "generate-payslips", "proceed-to-close", "close"):
            response = await client.post(f"{base}/{action}", headers=h)
            assert response.status_code == 200, response.json()

        detail = (await client.get(base, headers=h)).json()
        assert detail["status"] == "PAID"
        assert detail["is_locked"]
        assert Decimal(detail["total_net_pay"]) == Decimal("28550.00")
        assert [step["is_completed"] for step in detail["steps"]] == [True] * 6
        assert "PayrollRunClosed" in [fact.__class__.__name__ for fact in received]

    async def test_out_of_order_step_is_conflict(self, client, payroll_ctx, pay_period):
        h = headers(payroll_ctx)
        created = await client.post(
            "/api/v1/payroll-runs", headers=h, json={"pay_period_id": str(pay_period.pay_period_id)}
        )
        run_id = created.json()["run"]["payroll_run_id"]

        response = await client.post(f"/api/v1/payroll-runs/{run_id}/generate-payslips", headers=h)

        assert response.status_code == 409
        assert response.json()["code"] == "STEP_OUT_OF_ORDER"

    async def test_duplicate_regular_run(self, client, payroll_ctx, pay_period):
        h = headers(payroll_ctx)
        payload = {"pay_period_id": str(pay_period.pay_period_id)}
        await client.post("/api/v1/payroll-runs", headers=h, json=payload)

        response = await client.post("/api/v1/payroll-runs", headers=h, json=payload)

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_REGULAR_RUN"
