"""
Leave endpoint tests: the request / decide / cancel lifecycle over HTTP.
"""

import pytest
from httpx import AsyncClient

from worktime.core.clock import MS_PER_DAY

NOV_1 = 1_730_419_200_000  # 2024-11-01T00:00:00Z
NOV_3 = NOV_1 + 2 * MS_PER_DAY


async def _request(client: AsyncClient, headers, **overrides):
    payload = {"type": "vacation", "start_date": NOV_1, "end_date": NOV_3, "reason": "trip"}
    payload.update(overrides)
    return await client.post("/api/v1/leaves", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_leave_lifecycle(async_client: AsyncClient, staff, auth_headers):
    alice, manager = auth_headers(staff.alice), auth_headers(staff.manager)

    created = await _request(async_client, alice)
    assert created.status_code == 201
    leave_id = created.json()["leave_id"]

    approved = await async_client.post(
        f"/api/v1/leaves/{leave_id}/status",
        json={"status": "approved", "comment": "have fun"},
        headers=manager,
    )
    assert approved.status_code == 200

    balances = await async_client.get("/api/v1/leaves/balances", headers=alice)
    assert balances.json() == [
        {
            "user_id": staff.alice.id,
            "year": 2024,
            "type": "vacation",
            "accrued": 20.0,
            "used": 3.0,
            "remaining": 17.0,
        }
    ]

    canceled = await async_client.post(
        f"/api/v1/leaves/{leave_id}/cancel", json={"reason": "sick kid"}, headers=alice
    )
    assert canceled.status_code == 200

    leave = (await async_client.get(f"/api/v1/leaves/{leave_id}", headers=alice)).json()
    assert leave["status"] == "canceled"
    assert leave["approver_id"] == staff.manager.id
    assert [c["text"] for c in leave["comments"]] == ["have fun", "Canceled: sick kid"]

    balances = await async_client.get("/api/v1/leaves/balances", headers=alice)
    assert balances.json()[0]["remaining"] == 20.0
    assert balances.json()[0]["used"] == 0.0


@pytest.mark.asyncio
async def test_employee_cannot_decide(async_client: AsyncClient, staff, auth_headers):
    created = await _request(async_client, auth_headers(staff.alice))
    leave_id = created.json()["leave_id"]

    response = await async_client.post(
        f"/api/v1/leaves/{leave_id}/status", json={"status": "approved"}, headers=auth_headers(staff.bob)
    )
    assert response.status_code == 403

    await async_client.post(
        f"/api/v1/leaves/{leave_id}/status", json={"status": "approved"}, headers=auth_headers(staff.manager)
    )
    again = await async_client.post(
        f"/api/v1/leaves/{leave_id}/status", json={"status": "rejected"}, headers=auth_headers(staff.manager)
    )
    assert again.status_code == 409
    assert again.json()["error"] == "Conflict"


@pytest.mark.asyncio
async def test_request_validation(async_client: AsyncClient, clock, staff, auth_headers):
    alice = auth_headers(staff.alice)

    backwards = await _request(async_client, alice, start_date=NOV_3, end_date=NOV_1)
    assert backwards.status_code == 422

    past = await _request(
        async_client, alice, start_date=clock.now - 3 * MS_PER_DAY, end_date=clock.now
    )
    assert past.status_code == 422
    assert past.json()["error"] == "InvalidInput"

    bad_partial = await _request(async_client, alice, partial="noon")
    assert bad_partial.status_code == 422

    await _request(async_client, alice)
    overlap = await _request(async_client, alice, start_date=NOV_3, end_date=NOV_3)
    assert overlap.status_code == 409


@pytest.mark.asyncio
async def test_cancel_started_leave(async_client: AsyncClient, clock, staff, auth_headers):
    alice = auth_headers(staff.alice)
    leave_id = (await _request(async_client, alice)).json()["leave_id"]
    await async_client.post(
        f"/api/v1/leaves/{leave_id}/status", json={"status": "approved"}, headers=auth_headers(staff.admin)
    )

    clock.now = NOV_1 + MS_PER_DAY
    response = await async_client.post(f"/api/v1/leaves/{leave_id}/cancel", headers=alice)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_comments_and_listing(async_client: AsyncClient, staff, auth_headers):
    alice, bob, manager = (auth_headers(p) for p in (staff.alice, staff.bob, staff.manager))
    leave_id = (await _request(async_client, alice, partial="PM")).json()["leave_id"]
    await _request(async_client, bob)

    posted = await async_client.post(
        f"/api/v1/leaves/{leave_id}/comments", json={"text": "coverage arranged"}, headers=alice
    )
    assert posted.status_code == 201
    stranger = await async_client.post(
        f"/api/v1/leaves/{leave_id}/comments", json={"text": "hi"}, headers=bob
    )
    assert stranger.status_code == 403

    mine = (await async_client.get("/api/v1/leaves", headers=alice)).json()
    assert [row["id"] for row in mine] == [leave_id]
    assert mine[0]["partial"] == "PM"
    assert mine[0]["comments"][0]["text"] == "coverage arranged"

    everyone = await async_client.get("/api/v1/leaves", params={"status": "pending"}, headers=manager)
    assert len(everyone.json()) == 2

    peek = await async_client.get("/api/v1/leaves", params={"user_id": staff.alice.id}, headers=bob)
    assert peek.status_code == 403

    missing = await async_client.get("/api/v1/leaves/9999", headers=manager)
    assert missing.status_code == 404
