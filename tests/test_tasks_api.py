from datetime import datetime, timedelta, timezone

import pytest

from task_service.app.core.rabbitmq import rabbitmq_publisher
from task_service.app.models.task import Task

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}
TASKS = "/api/v1/tasks/"


def future(days=1):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def create_task(task_client):
    def _create(headers=ALICE, **fields):
        payload = {"title": "Write report", **fields}
        response = task_client.post(TASKS, json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def events(monkeypatch):
    published = []

    def record(event_type, data):
        published.append((event_type, data))
        return True

    monkeypatch.setattr(rabbitmq_publisher, "publish_event", record)
    return published


# Authentication

def test_missing_token(task_client):
    response = task_client.get(TASKS + "stats")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TOKEN_REQUIRED"


def test_rejected_token_reports_auth_error(task_client):
    response = task_client.get(TASKS + "stats", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "INVALID_TOKEN"
    assert body["message"] == "Invalid token"


def test_inactive_user_is_forbidden(task_client):
    response = task_client.get(TASKS + "stats", headers={"Authorization": "Bearer token-inactive"})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "USER_INACTIVE"


def test_verified_user_is_cached(task_client, fake_auth):
    task_client.get(TASKS + "stats", headers=ALICE)
    task_client.get(TASKS + "stats", headers=ALICE)
    assert fake_auth.calls == 1


# Create and read

def test_create_task_with_defaults(create_task):
    task = create_task()

    assert task["title"] == "Write report"
    assert task["status"] == "pending"
    assert task["priority"] == "medium"
    assert task["user_id"] == "user-alice"
    assert task["tags"] == []
    assert task["completed_at"] is None
    assert task["is_overdue"] is False


def test_create_task_with_all_fields(create_task, task_client):
    category = task_client.post("/api/v1/categories/", json={"name": "Work"}, headers=ALICE).json()
    task = create_task(
        title="  Plan sprint  ",
        description="Backlog grooming",
        priority="urgent",
        due_date=future(),
        category_id=category["id"],
        tags=["planning", " planning ", "team"],
        estimated_hours=3.5,
        attachments=["https://files.example.com/plan.pdf"],
    )

    assert task["title"] == "Plan sprint"
    assert task["priority"] == "urgent"
    assert task["category_id"] == category["id"]
    assert task["tags"] == ["planning", "team"]
    assert task["attachments"] == ["https://files.example.com/plan.pdf"]
    assert task["estimated_hours"] == 3.5


def test_create_completed_task_stamps_completion(create_task):
    task = create_task(status="completed")
    assert task["completed_at"] is not None


def test_due_date_must_be_in_the_future(task_client):
    soon = (datetime.now(timezone.utc) + timedelta(minutes=1)).isoformat()
    response = task_client.post(TASKS, json={"title": "Too soon", "due_date": soon}, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_DUE_DATE"


@pytest.mark.parametrize(
    "payload",
    [
        {"title": ""},
        {"title": "   "},
        {"title": "x" * 201},
        {"title": "ok", "priority": "critical"},
        {"title": "ok", "tags": [f"t{i}" for i in range(11)]},
        {"title": "ok", "estimated_hours": -1},
    ],
)
def test_invalid_task_payloads(task_client, payload):
    response = task_client.post(TASKS, json=payload, headers=ALICE)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_category_must_belong_to_user(task_client):
    category = task_client.post("/api/v1/categories/", json={"name": "Bob's"}, headers=BOB).json()
    response = task_client.post(TASKS, json={"title": "Sneaky", "category_id": category["id"]}, headers=ALICE)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CATEGORY_NOT_FOUND"


def test_get_task(create_task, task_client):
    task = create_task()
    response = task_client.get(f"{TASKS}{task['id']}", headers=ALICE)
    assert response.status_code == 200
    assert response.json()["id"] == task["id"]


def test_other_users_task_is_not_found(create_task, task_client):
    task = create_task()
    task_client.get(f"{TASKS}{task['id']}", headers=ALICE)

    for method in ("get", "delete"):
        response = getattr(task_client, method)(f"{TASKS}{task['id']}", headers=BOB)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TASK_NOT_FOUND"

    response = task_client.put(f"{TASKS}{task['id']}", json={"title": "Mine now"}, headers=BOB)
    assert response.status_code == 404


def test_unknown_task(task_client):
    response = task_client.get(f"{TASKS}9999", headers=ALICE)
    assert response.status_code == 404


def test_overdue_is_computed(create_task, task_client, task_db, task_cache):
    task = create_task(due_date=future())
    task_db.query(Task).filter(Task.id == task["id"]).update(
        {Task.due_date: datetime.now(timezone.utc) - timedelta(days=1)}
    )
    task_db.commit()
    task_cache.delete(f"task:{task['id']}", "user:user-alice:stats")

    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["is_overdue"] is True
    assert task_client.get(TASKS + "stats", headers=ALICE).json()["overdue_tasks"] == 1


# Update

def test_partial_update_keeps_other_fields(create_task, task_client):
    task = create_task(description="Keep me", priority="high")
    response = task_client.put(f"{TASKS}{task['id']}", json={"title": "Renamed"}, headers=ALICE)

    assert response.status_code == 200
    updated = response.json()
    assert updated["title"] == "Renamed"
    assert updated["description"] == "Keep me"
    assert updated["priority"] == "high"


def test_update_is_visible_after_cached_read(create_task, task_client):
    task = create_task()
    task_client.get(f"{TASKS}{task['id']}", headers=ALICE)
    task_client.put(f"{TASKS}{task['id']}", json={"title": "Fresh"}, headers=ALICE)
    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["title"] == "Fresh"


def test_status_changes_manage_completion_time(create_task, task_client):
    task = create_task()

    done = task_client.patch(f"{TASKS}{task['id']}/status", json={"status": "completed"}, headers=ALICE)
    assert done.status_code == 200
    assert done.json()["completed_at"] is not None

    reopened = task_client.put(f"{TASKS}{task['id']}", json={"status": "in_progress"}, headers=ALICE)
    assert reopened.json()["status"] == "in_progress"
    assert reopened.json()["completed_at"] is None


def test_update_priority(create_task, task_client):
    task = create_task()
    response = task_client.patch(f"{TASKS}{task['id']}/priority", json={"priority": "low"}, headers=ALICE)
    assert response.status_code == 200
    assert response.json()["priority"] == "low"

    bad = task_client.patch(f"{TASKS}{task['id']}/priority", json={"priority": "whenever"}, headers=ALICE)
    assert bad.status_code == 422


def test_update_rejects_past_due_date(create_task, task_client):
    task = create_task()
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    response = task_client.put(f"{TASKS}{task['id']}", json={"due_date": past}, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_DUE_DATE"


def test_clear_due_date(create_task, task_client):
    task = create_task(due_date=future())
    response = task_client.put(f"{TASKS}{task['id']}", json={"due_date": None}, headers=ALICE)
    assert response.json()["due_date"] is None


# Delete

def test_delete_task(create_task, task_client):
    task = create_task()
    task_client.get(f"{TASKS}{task['id']}", headers=ALICE)

    response = task_client.delete(f"{TASKS}{task['id']}", headers=ALICE)
    assert response.status_code == 204
    assert response.content == b""
    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).status_code == 404


# Bulk operations

def test_bulk_status_update_reports_failures(create_task, task_client):
    mine = [create_task(title=f"Task {i}")["id"] for i in range(3)]
    theirs = create_task(headers=BOB)["id"]

    response = task_client.post(
        TASKS + "bulk/status",
        json={"task_ids": mine + [theirs, 424242], "status": "completed"},
        headers=ALICE,
    )
    assert response.status_code == 200
    result = response.json()
    assert result["success"] is False
    assert result["total_requested"] == 5
    assert result["successfully_processed"] == 3
    assert result["failed"] == 2
    assert {e["task_id"] for e in result["errors"]} == {theirs, 424242}

    for task_id in mine:
        task = task_client.get(f"{TASKS}{task_id}", headers=ALICE).json()
        assert task["status"] == "completed"
        assert task["completed_at"] is not None
    assert task_client.get(f"{TASKS}{theirs}", headers=BOB).json()["status"] == "pending"


def test_bulk_delete(create_task, task_client):
    ids = [create_task(title=f"Task {i}")["id"] for i in range(2)]
    response = task_client.post(TASKS + "bulk/delete", json={"task_ids": ids + ids}, headers=ALICE)

    result = response.json()
    assert result["success"] is True
    assert result["total_requested"] == 2
    assert result["successfully_processed"] == 2
    for task_id in ids:
        assert task_client.get(f"{TASKS}{task_id}", headers=ALICE).status_code == 404


@pytest.mark.parametrize("task_ids", [[], list(range(1, 52))])
def test_bulk_size_limits(task_client, task_ids):
    response = task_client.post(TASKS + "bulk/delete", json={"task_ids": task_ids}, headers=ALICE)
    assert response.status_code == 422


# Statistics

def test_stats(create_task, task_client):
    create_task(priority="high", estimated_hours=4, actual_hours=2)
    create_task(status="completed", priority="low", estimated_hours=2, actual_hours=2)
    create_task(status="in_progress")
    create_task(status="completed", headers=BOB)

    stats = task_client.get(TASKS + "stats", headers=ALICE).json()
    assert stats["total_tasks"] == 3
    assert stats["by_status"]["completed"] == 1
    assert stats["by_status"]["in_progress"] == 1
    assert stats["by_status"]["on_hold"] == 0
    assert stats["by_priority"]["high"] == 1
    assert stats["by_priority"]["medium"] == 1
    assert stats["completion_rate"] == 33.33
    assert stats["total_estimated_hours"] == 6.0
    assert stats["total_actual_hours"] == 4.0
    assert stats["efficiency_ratio"] == 1.5
    assert stats["average_completion_hours"] is not None


def test_stats_for_new_user(task_client):
    stats = task_client.get(TASKS + "stats", headers=BOB).json()
    assert stats["total_tasks"] == 0
    assert stats["completion_rate"] == 0.0
    assert stats["efficiency_ratio"] is None


def test_stats_cache_is_invalidated(create_task, task_client):
    create_task()
    assert task_client.get(TASKS + "stats", headers=ALICE).json()["total_tasks"] == 1
    create_task()
    assert task_client.get(TASKS + "stats", headers=ALICE).json()["total_tasks"] == 2


# Events

def test_lifecycle_events_are_published(create_task, task_client, events):
    task = create_task()
    task_client.put(f"{TASKS}{task['id']}", json={"title": "Edited"}, headers=ALICE)
    task_client.patch(f"{TASKS}{task['id']}/status", json={"status": "completed"}, headers=ALICE)
    task_client.delete(f"{TASKS}{task['id']}", headers=ALICE)

    assert [name for name, _ in events] == ["task.created", "task.updated", "task.completed", "task.deleted"]
    assert events[-1][1]["id"] == task["id"]
    assert events[-1][1]["user_id"] == "user-alice"


# Rate limiting and health

def test_rate_limit_ignores_forwarded_for_header(task_client, monkeypatch):
    from task_service.app.core.rate_limit import general_rate_limit

    monkeypatch.setattr(general_rate_limit, "limit", 2)
    codes = [
        task_client.get(TASKS + "stats", headers={**ALICE, "X-Forwarded-For": f"198.51.100.{i}"}).status_code
        for i in range(3)
    ]
    assert codes == [200, 200, 429]


def test_health_reports_dependencies(task_client):
    body = task_client.get("/health").json()
    assert body["database"] == "connected"
    assert body["redis"] == "connected"
    assert body["auth_service"] == "reachable"
    assert body["status"] == "healthy"


def test_health_is_degraded_without_redis(task_client, fake_server):
    fake_server.connected = False

    body = task_client.get("/health").json()
    assert body["redis"] == "disconnected"
    assert body["status"] == "degraded"
