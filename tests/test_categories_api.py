import pytest

from task_service.app.core.config import settings

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}
CATEGORIES = "/api/v1/categories/"
TASKS = "/api/v1/tasks/"


@pytest.fixture
def create_category(task_client):
    def _create(name="Work", headers=ALICE, **fields):
        response = task_client.post(CATEGORIES, json={"name": name, **fields}, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


def add_task(client, category_id, status="pending", headers=ALICE):
    response = client.post(
        TASKS,
        json={"title": "Filed task", "category_id": category_id, "status": status},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_create_category_defaults(create_category):
    category = create_category(name="  Home  ")

    assert category["name"] == "Home"
    assert category["color"] == "#6366f1"
    assert category["icon"] == "folder"
    assert category["is_active"] is True
    assert category["task_count"] == 0
    assert category["user_id"] == "user-alice"


def test_color_is_validated_and_normalised(create_category, task_client):
    assert create_category(color="#ABCDEF")["color"] == "#abcdef"

    response = task_client.post(CATEGORIES, json={"name": "Bad", "color": "red"}, headers=ALICE)
    assert response.status_code == 422


def test_names_are_unique_per_user_ignoring_case(create_category, task_client):
    create_category(name="Work")

    response = task_client.post(CATEGORIES, json={"name": "work"}, headers=ALICE)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CATEGORY_ALREADY_EXISTS"

    create_category(name="Work", headers=BOB)


def test_category_limit(create_category, task_client, monkeypatch):
    monkeypatch.setattr(settings, "max_categories_per_user", 2)
    create_category(name="One")

    limit = task_client.get(CATEGORIES + "check-limit", headers=ALICE).json()
    assert limit == {"current": 1, "limit": 2, "can_create": True, "remaining": 1}

    create_category(name="Two")
    response = task_client.post(CATEGORIES, json={"name": "Three"}, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CATEGORY_LIMIT_EXCEEDED"
    assert task_client.get(CATEGORIES + "check-limit", headers=ALICE).json()["can_create"] is False


def test_get_category_counts_tasks(create_category, task_client):
    category = create_category()
    add_task(task_client, category["id"])
    add_task(task_client, category["id"], status="completed")

    response = task_client.get(f"{CATEGORIES}{category['id']}", headers=ALICE)
    assert response.status_code == 200
    assert response.json()["task_count"] == 2


def test_other_users_category_is_not_found(create_category, task_client):
    category = create_category()
    task_client.get(f"{CATEGORIES}{category['id']}", headers=ALICE)

    response = task_client.get(f"{CATEGORIES}{category['id']}", headers=BOB)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CATEGORY_NOT_FOUND"
    assert task_client.delete(f"{CATEGORIES}{category['id']}", headers=BOB).status_code == 404


def test_update_category(create_category, task_client):
    category = create_category()
    task_client.get(f"{CATEGORIES}{category['id']}", headers=ALICE)

    response = task_client.put(
        f"{CATEGORIES}{category['id']}",
        json={"name": "Office", "color": "#123", "is_active": False},
        headers=ALICE,
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["name"] == "Office"
    assert updated["color"] == "#123"
    assert updated["is_active"] is False
    assert updated["icon"] == "folder"

    assert task_client.get(f"{CATEGORIES}{category['id']}", headers=ALICE).json()["name"] == "Office"


def test_rename_to_existing_name_conflicts(create_category, task_client):
    create_category(name="Home")
    work = create_category(name="Work")

    response = task_client.put(f"{CATEGORIES}{work['id']}", json={"name": "HOME"}, headers=ALICE)
    assert response.status_code == 409

    same = task_client.put(f"{CATEGORIES}{work['id']}", json={"name": "work"}, headers=ALICE)
    assert same.status_code == 200


def test_delete_category_with_active_tasks_is_refused(create_category, task_client):
    category = create_category()
    add_task(task_client, category["id"])

    response = task_client.delete(f"{CATEGORIES}{category['id']}", headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CATEGORY_HAS_TASKS"


def test_delete_category_detaches_finished_tasks(create_category, task_client):
    category = create_category()
    task = add_task(task_client, category["id"], status="completed")

    response = task_client.delete(f"{CATEGORIES}{category['id']}", headers=ALICE)
    assert response.status_code == 204
    assert task_client.get(f"{CATEGORIES}{category['id']}", headers=ALICE).status_code == 404
    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["category_id"] is None


def test_delete_category_refreshes_cached_tasks(create_category, task_client):
    category = create_category()
    task = add_task(task_client, category["id"], status="completed")
    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["category_id"] == category["id"]

    assert task_client.delete(f"{CATEGORIES}{category['id']}", headers=ALICE).status_code == 204
    assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["category_id"] is None


def test_bulk_delete_refreshes_cached_tasks(create_category, task_client):
    ids = [create_category(name=f"C{i}")["id"] for i in range(2)]
    tasks = [add_task(task_client, cid, status="cancelled") for cid in ids]
    for task in tasks:
        task_client.get(f"{TASKS}{task['id']}", headers=ALICE)

    response = task_client.request("DELETE", CATEGORIES + "bulk", json={"category_ids": ids}, headers=ALICE)
    assert response.status_code == 200
    for task in tasks:
        assert task_client.get(f"{TASKS}{task['id']}", headers=ALICE).json()["category_id"] is None


def test_bulk_delete_categories(create_category, task_client):
    ids = [create_category(name=f"C{i}")["id"] for i in range(3)]

    response = task_client.request("DELETE", CATEGORIES + "bulk", json={"category_ids": ids[:2]}, headers=ALICE)
    assert response.status_code == 200
    assert response.json() == {"deleted": 2, "category_ids": ids[:2]}
    assert task_client.get(CATEGORIES + "check-limit", headers=ALICE).json()["current"] == 1


def test_bulk_delete_is_all_or_nothing(create_category, task_client):
    free = create_category(name="Free")
    busy = create_category(name="Busy")
    add_task(task_client, busy["id"])
    bobs = create_category(name="Bob", headers=BOB)

    missing = task_client.request(
        "DELETE", CATEGORIES + "bulk", json={"category_ids": [free["id"], bobs["id"]]}, headers=ALICE
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["details"] == {"category_ids": [bobs["id"]]}

    blocked = task_client.request(
        "DELETE", CATEGORIES + "bulk", json={"category_ids": [free["id"], busy["id"]]}, headers=ALICE
    )
    assert blocked.status_code == 400
    assert blocked.json()["error"]["details"] == {"category_ids": [busy["id"]]}

    assert task_client.get(CATEGORIES + "check-limit", headers=ALICE).json()["current"] == 2


def test_category_stats(create_category, task_client):
    work = create_category(name="Work")
    home = create_category(name="Home")
    create_category(name="Archive")
    add_task(task_client, work["id"])
    add_task(task_client, work["id"])
    add_task(task_client, home["id"])

    stats = task_client.get(CATEGORIES + "stats", headers=ALICE).json()
    assert stats["total_categories"] == 3
    assert stats["active_categories"] == 3
    assert stats["categories_with_tasks"] == 2
    assert stats["average_tasks_per_category"] == 1.0
    assert stats["most_used_category"] == {"id": work["id"], "name": "Work", "task_count": 2}


def test_category_stats_when_empty(task_client):
    stats = task_client.get(CATEGORIES + "stats", headers=BOB).json()
    assert stats["total_categories"] == 0
    assert stats["most_used_category"] is None
