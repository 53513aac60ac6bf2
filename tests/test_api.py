from datetime import timedelta

from conftest import auth_headers
from kandy_tasks.models.enums import TaskStatus
from kandy_tasks.models.models import Task
from kandy_tasks.services.validation import local_today


def _task_payload(**overrides):
    payload = {
        "title": "Fix tripping RCD",
        "description": "Main RCD trips whenever the water heater runs",
        "customer_name": "Mr. Wijesinghe",
        "customer_phone": "0714567890",
        "customer_address": "8 Temple Street, Kandy",
        "priority": "Urgent",
        "scheduled_date": (local_today() + timedelta(days=1)).isoformat(),
        "scheduled_time_start": "08:30",
        "scheduled_time_end": "10:00",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_requests_need_a_token(client):
    assert client.get("/tasks").status_code == 401


def test_task_flow_over_http(client, manager, electrician):
    res = client.post("/tasks", json=_task_payload(), headers=auth_headers(manager))
    assert res.status_code == 201
    task = res.json()
    assert task["status"] == "Pending"
    assert task["estimated_hours"] == 1.5
    assert task["scheduled_time_start"] == "08:30"
    assert task["permissions"]["can_assign"] is True

    res = client.patch(
        f"/tasks/{task['id']}/assign",
        json={"electrician_id": str(electrician.id)},
        headers=auth_headers(manager),
    )
    assert res.status_code == 200
    assert res.json()["assigned_electrician"]["name"] == "Sunil Bandara"

    res = client.patch(f"/tasks/{task['id']}/status", json={"status": "In Progress"}, headers=auth_headers(electrician))
    assert res.status_code == 200
    assert res.json()["status"] == "In Progress"
    assert res.json()["permissions"]["can_complete"] is True

    res = client.post(
        f"/tasks/{task['id']}/complete",
        json={"completion_notes": "Replaced faulty heater element", "additional_charges": 2500},
        headers=auth_headers(electrician),
    )
    assert res.status_code == 200
    assert res.json()["status"] == "Completed"

    res = client.post(f"/tasks/{task['id']}/complete", json={"completion_notes": "again"}, headers=auth_headers(electrician))
    assert res.status_code == 409

    res = client.delete(f"/tasks/{task['id']}", headers=auth_headers(manager))
    assert res.status_code == 409

    res = client.post(f"/tasks/{task['id']}/rating", json={"rating": 5}, headers=auth_headers(manager))
    assert res.status_code == 200
    assert res.json()["rating"] == 5


def test_validation_errors_are_400_with_fields(client, manager):
    res = client.post("/tasks", json=_task_payload(customer_phone="555-0100"), headers=auth_headers(manager))
    assert res.status_code == 400
    body = res.json()
    assert body["detail"].startswith("Validation failed")
    assert body["errors"] == [{"field": "customer_phone", "message": body["errors"][0]["message"]}]

    res = client.post("/tasks", json={"title": "Missing everything"}, headers=auth_headers(manager))
    assert res.status_code == 400
    assert any(e["field"] == "customer_name" for e in res.json()["errors"])


def test_role_guards(client, electrician, manager, make_task):
    assert client.post("/tasks", json=_task_payload(), headers=auth_headers(electrician)).status_code == 403
    task = make_task(manager)
    assert client.delete(f"/tasks/{task.id}", headers=auth_headers(electrician)).status_code == 403
    assert client.get("/users", headers=auth_headers(manager)).status_code == 403


def test_start_by_wrong_electrician_is_403(client, db, manager, electrician, other_electrician, make_task):
    task = make_task(manager, status=TaskStatus.assigned, assignee=electrician)

    res = client.patch(f"/tasks/{task.id}/status", json={"status": "In Progress"}, headers=auth_headers(other_electrician))
    assert res.status_code == 403

    db.expire_all()
    assert db.get(Task, task.id).status == TaskStatus.assigned


def test_unknown_task_is_404(client, manager):
    res = client.get("/tasks/7d9f1c43-5a8e-4d2b-9a0c-1f6e2b3c4d5e", headers=auth_headers(manager))
    assert res.status_code == 404
    assert res.json()["detail"] == "Task not found"


def test_assign_non_pending_is_409(client, manager, electrician, other_electrician, make_task):
    task = make_task(manager, status=TaskStatus.assigned, assignee=electrician)
    res = client.patch(
        f"/tasks/{task.id}/assign",
        json={"electrician_id": str(other_electrician.id)},
        headers=auth_headers(manager),
    )
    assert res.status_code == 409


def test_issue_endpoints(client, manager, electrician, make_task):
    task = make_task(manager, status=TaskStatus.in_progress, assignee=electrician)

    res = client.post("/issues", json={
        "task_id": str(task.id),
        "issue_type": "safety",
        "description": "Neutral and earth swapped at the board",
        "priority": "emergency",
    }, headers=auth_headers(electrician))
    assert res.status_code == 201
    issue = res.json()
    assert issue["status"] == "open"
    assert issue["task"]["title"] == task.title

    res = client.patch(f"/issues/{issue['id']}/status", json={"status": "resolved", "resolution_notes": ""},
                       headers=auth_headers(manager))
    assert res.status_code == 400

    res = client.get("/issues/stats", headers=auth_headers(manager))
    assert res.json()["emergency_issues"] == 1

    today = local_today().isoformat()
    res = client.get(f"/issues?startDate={today}&endDate={today}&priority=emergency", headers=auth_headers(manager))
    assert [i["id"] for i in res.json()] == [issue["id"]]

    res = client.get("/issues?startDate=2024-05-02&endDate=2024-05-01", headers=auth_headers(manager))
    assert res.status_code == 400


def test_dashboard_stats_by_role(client, manager, electrician, make_task):
    make_task(manager, status=TaskStatus.in_progress, assignee=electrician)

    res = client.get("/dashboard/stats", headers=auth_headers(electrician))
    assert res.json()["role"] == "Electrician"
    assert res.json()["inProgress"] == 1

    res = client.get("/dashboard/stats", headers=auth_headers(manager))
    assert res.json()["role"] == "Manager"
    assert res.json()["totalTasks"] == 1


def test_notifications_can_be_marked_read(client, manager, electrician, make_task):
    task = make_task(manager)
    client.patch(f"/tasks/{task.id}/assign", json={"electrician_id": str(electrician.id)}, headers=auth_headers(manager))

    res = client.get("/dashboard/notifications?unread_only=true", headers=auth_headers(electrician))
    items = res.json()
    assert [n["type"] for n in items] == ["task_assigned"]

    res = client.patch(f"/dashboard/notifications/{items[0]['id']}/read", headers=auth_headers(electrician))
    assert res.json()["is_read"] is True
    assert client.get("/dashboard/notifications?unread_only=true", headers=auth_headers(electrician)).json() == []
