# tests/test_tasks.py — Task router tests: creation, visibility, updates, status
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from models import Task


async def _create_task(client, headers, deadline, **fields):
    payload = {"title": "Write report", "description": "Quarterly numbers", "deadline": deadline}
    payload.update(fields)
    res = await client.post("/tasks", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


async def _move_deadline_to_past(db_session, task_id):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    await db_session.execute(update(Task).where(Task.id == task_id).values(deadline=past))
    await db_session.commit()


@pytest.mark.asyncio
class TestCreateTask:
    async def test_create_task(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        data = await _create_task(
            client, auth_headers(alice), future_deadline, assignedTo=["bob"],
        )
        assert data["title"] == "Write report"
        assert data["description"] == "Quarterly numbers"
        assert data["status"] == "Pending"
        assert data["reference"] == "TASK-000001"
        assert data["createdBy"]["username"] == "alice"
        assert [u["username"] for u in data["assignedTo"]] == ["bob"]
        assert data["comments"] == []

    async def test_references_are_sequential(self, client: AsyncClient, alice, auth_headers, future_deadline):
        headers = auth_headers(alice)
        first = await _create_task(client, headers, future_deadline)
        second = await _create_task(client, headers, future_deadline, title="Second")
        assert first["reference"] == "TASK-000001"
        assert second["reference"] == "TASK-000002"

    async def test_assign_by_email(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        data = await _create_task(
            client, auth_headers(alice), future_deadline, assignedTo=["Bob@Taskboard.io"],
        )
        assert data["assignedTo"][0]["id"] == bob.id

    async def test_unknown_assignee_fails_whole_request(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        headers = auth_headers(alice)
        res = await client.post(
            "/tasks",
            json={"title": "Ghost", "deadline": future_deadline, "assignedTo": ["bob", "ghost"]},
            headers=headers,
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "User not found: ghost"

        listing = await client.get("/tasks", headers=headers)
        assert listing.json() == []

    async def test_past_deadline_rejected(self, client: AsyncClient, alice, auth_headers):
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        res = await client.post(
            "/tasks", json={"title": "Too late", "deadline": past}, headers=auth_headers(alice),
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Deadline must be in the future"

    async def test_blank_title_rejected(self, client: AsyncClient, alice, auth_headers, future_deadline):
        res = await client.post(
            "/tasks", json={"title": "   ", "deadline": future_deadline}, headers=auth_headers(alice),
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Task title is required"

    async def test_long_title_rejected(self, client: AsyncClient, alice, auth_headers, future_deadline):
        res = await client.post(
            "/tasks", json={"title": "x" * 61, "deadline": future_deadline}, headers=auth_headers(alice),
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Title cannot exceed 60 characters"

    async def test_create_requires_token(self, client: AsyncClient, future_deadline):
        res = await client.post("/tasks", json={"title": "Anon", "deadline": future_deadline})
        assert res.status_code == 401


@pytest.mark.asyncio
class TestVisibility:
    async def test_list_shows_created_and_assigned(self, client: AsyncClient, alice, bob, carol, auth_headers, future_deadline):
        await _create_task(client, auth_headers(alice), future_deadline, title="Mine")
        await _create_task(client, auth_headers(carol), future_deadline, title="For Alice", assignedTo=["alice"])
        await _create_task(client, auth_headers(bob), future_deadline, title="Not visible")

        res = await client.get("/tasks", headers=auth_headers(alice))
        assert res.status_code == 200
        titles = [t["title"] for t in res.json()]
        assert titles == ["For Alice", "Mine"]

    async def test_outsider_gets_not_found(self, client: AsyncClient, alice, bob, carol, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(carol))
        assert res.status_code == 404
        assert res.json()["detail"] == "Task not found or not authorized"

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(bob))
        assert res.status_code == 200

    async def test_malformed_id(self, client: AsyncClient, alice, auth_headers):
        res = await client.get("/tasks/not-a-uuid", headers=auth_headers(alice))
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid task ID format"

    async def test_missing_task(self, client: AsyncClient, alice, auth_headers):
        res = await client.get(f"/tasks/{uuid.uuid4()}", headers=auth_headers(alice))
        assert res.status_code == 404


@pytest.mark.asyncio
class TestUpdateTask:
    async def test_creator_updates_fields(self, client: AsyncClient, alice, bob, carol, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])
        res = await client.patch(
            f"/tasks/{task['id']}",
            json={"title": "Renamed", "assignedTo": ["carol", "bob"]},
            headers=auth_headers(alice),
        )
        assert res.status_code == 200
        data = res.json()
        assert data["title"] == "Renamed"
        assert [u["username"] for u in data["assignedTo"]] == ["bob", "carol"]

    async def test_assignee_may_change_status_only(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])

        res = await client.patch(
            f"/tasks/{task['id']}", json={"status": "In Progress"}, headers=auth_headers(bob),
        )
        assert res.status_code == 200
        assert res.json()["status"] == "In Progress"

        res = await client.patch(
            f"/tasks/{task['id']}", json={"title": "Hijacked"}, headers=auth_headers(bob),
        )
        assert res.status_code == 403
        assert res.json()["detail"] == "Only task owner can update title"

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(alice))
        assert res.json()["title"] == "Write report"

    async def test_assignee_cannot_reassign(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])
        res = await client.patch(
            f"/tasks/{task['id']}",
            json={"status": "Completed", "assignedTo": []},
            headers=auth_headers(bob),
        )
        assert res.status_code == 403
        assert res.json()["detail"] == "Only task owner can update assigned users"

    async def test_outsider_update_not_found(self, client: AsyncClient, alice, carol, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        res = await client.patch(
            f"/tasks/{task['id']}", json={"status": "Completed"}, headers=auth_headers(carol),
        )
        assert res.status_code == 404

    async def test_empty_update_rejected(self, client: AsyncClient, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        res = await client.patch(f"/tasks/{task['id']}", json={}, headers=auth_headers(alice))
        assert res.status_code == 400
        assert res.json()["detail"] == "No valid fields to update"

    async def test_invalid_status_rejected(self, client: AsyncClient, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        res = await client.patch(
            f"/tasks/{task['id']}", json={"status": "Done"}, headers=auth_headers(alice),
        )
        assert res.status_code == 400

    async def test_update_to_past_deadline_rejected(self, client: AsyncClient, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        past = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
        res = await client.patch(
            f"/tasks/{task['id']}", json={"deadline": past}, headers=auth_headers(alice),
        )
        assert res.status_code == 400

    async def test_status_shortcut(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])
        res = await client.patch(
            f"/tasks/{task['id']}/status", json={"status": "Completed"}, headers=auth_headers(bob),
        )
        assert res.status_code == 200
        assert res.json()["status"] == "Completed"


@pytest.mark.asyncio
class TestOverdue:
    async def test_past_deadline_reads_as_overdue(self, client: AsyncClient, db_session, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        await _move_deadline_to_past(db_session, task["id"])

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(alice))
        assert res.json()["status"] == "Overdue"

        listing = await client.get("/tasks", headers=auth_headers(alice))
        assert listing.json()[0]["status"] == "Overdue"

    async def test_completed_stays_completed(self, client: AsyncClient, db_session, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        await _move_deadline_to_past(db_session, task["id"])

        res = await client.patch(
            f"/tasks/{task['id']}/status", json={"status": "Completed"}, headers=auth_headers(alice),
        )
        assert res.status_code == 200
        assert res.json()["status"] == "Completed"

        res = await client.patch(
            f"/tasks/{task['id']}/status", json={"status": "Overdue"}, headers=auth_headers(alice),
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Completed tasks cannot be marked as overdue"

    async def test_overdue_requires_passed_deadline(self, client: AsyncClient, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        res = await client.patch(
            f"/tasks/{task['id']}", json={"status": "Overdue"}, headers=auth_headers(alice),
        )
        assert res.status_code == 400

    async def test_reopening_past_task_stays_overdue(self, client: AsyncClient, db_session, alice, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline)
        await _move_deadline_to_past(db_session, task["id"])

        res = await client.patch(
            f"/tasks/{task['id']}", json={"status": "In Progress"}, headers=auth_headers(alice),
        )
        assert res.status_code == 200
        assert res.json()["status"] == "Overdue"


@pytest.mark.asyncio
class TestDeleteTask:
    async def test_creator_deletes(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])
        await client.post(
            f"/tasks/{task['id']}/comments", json={"content": "On it"}, headers=auth_headers(bob),
        )

        res = await client.delete(f"/tasks/{task['id']}", headers=auth_headers(alice))
        assert res.status_code == 204

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(alice))
        assert res.status_code == 404

    async def test_assignee_cannot_delete(self, client: AsyncClient, alice, bob, auth_headers, future_deadline):
        task = await _create_task(client, auth_headers(alice), future_deadline, assignedTo=["bob"])
        res = await client.delete(f"/tasks/{task['id']}", headers=auth_headers(bob))
        assert res.status_code == 404

        res = await client.get(f"/tasks/{task['id']}", headers=auth_headers(alice))
        assert res.status_code == 200
