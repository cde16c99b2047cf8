"""Company and invitation directory endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import invite_only_details
from tests.unit.routers.conftest import BOB_ID, CAROL_ID, create_open_task, create_task, future_ms


@pytest.mark.unit
async def test_company_tasks(client):
    await create_task(client, task_id="acme.t1")
    await create_open_task(client, task_id="acme.t2")

    resp = await client.get("/companies/acme/tasks")

    assert resp.status_code == 200
    data = resp.json()
    assert data["company_id"] == "acme"
    assert data["total"] == 2
    assert data["limit"] == 20
    assert [task["task_id"] for task in data["tasks"]] == ["acme.t1", "acme.t2"]


@pytest.mark.unit
async def test_invitations(client):
    await create_task(client, task_id="acme.t1", details=invite_only_details([BOB_ID], future_ms()))
    await create_task(
        client, task_id="acme.t3", details=invite_only_details([BOB_ID, CAROL_ID], future_ms())
    )

    bob = (await client.get(f"/users/{BOB_ID}/invitations")).json()
    carol = (await client.get(f"/users/{CAROL_ID}/invitations", params={"limit": 5})).json()

    assert bob["account_id"] == BOB_ID
    assert [task["task_id"] for task in bob["tasks"]] == ["acme.t1", "acme.t3"]
    assert [task["task_id"] for task in carol["tasks"]] == ["acme.t3"]
    assert carol["limit"] == 5


@pytest.mark.unit
async def test_unknown_company_is_empty(client):
    resp = await client.get("/companies/globex/tasks")

    assert resp.status_code == 200
    assert resp.json()["tasks"] == []
    assert resp.json()["total"] == 0


@pytest.mark.unit
async def test_directory_pagination_error(client):
    resp = await client.get("/users/bob/invitations", params={"offset": "x"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_PAGINATION"
