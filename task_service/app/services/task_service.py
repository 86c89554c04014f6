"""
Task business rules, statistics and bulk operations.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import status
from sqlalchemy.orm import Session

from ..core.cache import RedisCache
from ..core.config import settings
from ..core.errors import ErrorCodes, ServiceError
from ..core.rabbitmq import RabbitMQPublisher, TaskEvents
from ..models.task import Task, TaskPriority, TaskStatus
from ..repositories.task_repository import TaskRepository
from ..schemas.task import (
    BulkOperationError,
    BulkOperationResult,
    BulkStatusUpdate,
    BulkTaskIds,
    TaskCreate,
    TaskResponse,
    TaskStats,
    TaskUpdate,
    convert_datetime_to_utc,
)
from .category_service import CategoryService, category_cache_key, stats_cache_key, task_cache_key

logger = logging.getLogger(__name__)

MIN_DUE_DATE_LEAD = timedelta(minutes=5)


class TaskService:
    def __init__(self, db: Session, cache: RedisCache, publisher: RabbitMQPublisher):
        self.db = db
        self.cache = cache
        self.publisher = publisher
        self.tasks = TaskRepository(db)
        self.categories = CategoryService(db, cache)

    # Helpers

    def _get_owned(self, user_id: str, task_id: int) -> Task:
        task = self.tasks.find_by_id(task_id)
        if task is None or task.user_id != user_id:
            raise ServiceError(ErrorCodes.TASK_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return task

    def _check_due_date(self, due_date: Optional[datetime]) -> Optional[datetime]:
        due_date = convert_datetime_to_utc(due_date)
        if due_date is not None and due_date < datetime.now(timezone.utc) + MIN_DUE_DATE_LEAD:
            raise ServiceError(ErrorCodes.INVALID_DUE_DATE, status.HTTP_400_BAD_REQUEST)
        return due_date

    def _check_category(self, user_id: str, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        if not self.categories.validate_category_ownership(user_id, category_id):
            raise ServiceError(ErrorCodes.CATEGORY_NOT_FOUND, status.HTTP_404_NOT_FOUND)

    def _invalidate(self, task: Task, *category_ids: Optional[int]) -> None:
        keys = [task_cache_key(task.id), stats_cache_key(task.user_id)]
        keys.extend(category_cache_key(cid) for cid in {task.category_id, *category_ids} if cid is not None)
        self.cache.delete(*keys)

    def _publish(self, event: str, task: Task) -> None:
        self.publisher.publish_event(event, task.to_dict())

    # CRUD

    def create_task(self, user_id: str, data: TaskCreate) -> TaskResponse:
        due_date = self._check_due_date(data.due_date)
        self._check_category(user_id, data.category_id)

        task = Task(
            user_id=user_id,
            title=data.title,
            description=data.description,
            priority=data.priority.value,
            due_date=due_date,
            category_id=data.category_id,
            tags=data.tags or [],
            attachments=[str(url) for url in data.attachments or []],
            estimated_hours=data.estimated_hours,
            actual_hours=data.actual_hours,
        )
        task.set_status(data.status.value)
        task = self.tasks.add(task)

        self._invalidate(task)
        self._publish(TaskEvents.CREATED, task)
        logger.info(f"Task {task.id} created for user {user_id}")
        return TaskResponse.model_validate(task)

    def get_task_by_id(self, user_id: str, task_id: int) -> TaskResponse:
        cached = self.cache.get_json(task_cache_key(task_id))
        if cached is not None:
            if cached.get("user_id") != user_id:
                raise ServiceError(ErrorCodes.TASK_NOT_FOUND, status.HTTP_404_NOT_FOUND)
            return TaskResponse.model_validate(cached)

        response = TaskResponse.model_validate(self._get_owned(user_id, task_id))
        self.cache.set_json(task_cache_key(task_id), response.model_dump(mode="json"), ttl=settings.task_cache_ttl)
        return response

    def update_task(self, user_id: str, task_id: int, data: TaskUpdate) -> TaskResponse:
        task = self._get_owned(user_id, task_id)
        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)
        previous_category = task.category_id
        was_completed = task.status == TaskStatus.COMPLETED.value

        if "due_date" in changes:
            changes["due_date"] = self._check_due_date(data.due_date)
        if "category_id" in changes:
            self._check_category(user_id, changes["category_id"])
        if "attachments" in changes:
            changes["attachments"] = [str(url) for url in data.attachments or []]
        if "tags" in changes:
            changes["tags"] = changes["tags"] or []

        new_status = changes.pop("status", None)
        for field in ("title", "priority"):
            if field in changes and changes[field] is None:
                changes.pop(field)
        if "priority" in changes:
            changes["priority"] = TaskPriority(changes["priority"]).value

        for field, value in changes.items():
            setattr(task, field, value)
        if new_status is not None:
            task.set_status(TaskStatus(new_status).value)

        task = self.tasks.save(task)
        self._invalidate(task, previous_category)

        if not was_completed and task.status == TaskStatus.COMPLETED.value:
            self._publish(TaskEvents.COMPLETED, task)
        else:
            self._publish(TaskEvents.UPDATED, task)
        return TaskResponse.model_validate(task)

    def update_task_status(self, user_id: str, task_id: int, new_status: TaskStatus) -> TaskResponse:
        task = self._get_owned(user_id, task_id)
        was_completed = task.status == TaskStatus.COMPLETED.value
        task.set_status(TaskStatus(new_status).value)
        task = self.tasks.save(task)
        self._invalidate(task)

        if not was_completed and task.status == TaskStatus.COMPLETED.value:
            self._publish(TaskEvents.COMPLETED, task)
        else:
            self._publish(TaskEvents.UPDATED, task)
        return TaskResponse.model_validate(task)

    def update_task_priority(self, user_id: str, task_id: int, priority: TaskPriority) -> TaskResponse:
        task = self._get_owned(user_id, task_id)
        task.priority = TaskPriority(priority).value
        task = self.tasks.save(task)
        self._invalidate(task)
        self._publish(TaskEvents.UPDATED, task)
        return TaskResponse.model_validate(task)

    def delete_task(self, user_id: str, task_id: int) -> None:
        task = self._get_owned(user_id, task_id)
        payload = task.to_dict()
        self._invalidate(task)
        self.tasks.delete(task)
        self.publisher.publish_event(TaskEvents.DELETED, payload)
        logger.info(f"Task {task_id} deleted by user {user_id}")

    # Bulk operations

    def _bulk(self, user_id: str, task_ids: List[int], apply) -> BulkOperationResult:
        owned = self.tasks.find_owned(user_id, task_ids)
        errors: List[BulkOperationError] = []
        processed = 0
        for task_id in task_ids:
            task = owned.get(task_id)
            if task is None:
                errors.append(BulkOperationError(task_id=task_id, error="Task not found"))
                continue
            apply(task)
            processed += 1

        self.db.commit()
        self.cache.delete(stats_cache_key(user_id), *(task_cache_key(tid) for tid in owned))
        return BulkOperationResult(
            success=not errors,
            total_requested=len(task_ids),
            successfully_processed=processed,
            failed=len(errors),
            errors=errors,
        )

    def bulk_update_status(self, user_id: str, data: BulkStatusUpdate) -> BulkOperationResult:
        target = TaskStatus(data.status).value
        completed: List[Task] = []

        def apply(task: Task) -> None:
            if task.status != TaskStatus.COMPLETED.value and target == TaskStatus.COMPLETED.value:
                completed.append(task)
            task.set_status(target)

        result = self._bulk(user_id, data.task_ids, apply)
        for task in completed:
            self._publish(TaskEvents.COMPLETED, task)
        logger.info(f"Bulk status update to {target}: {result.successfully_processed}/{result.total_requested}")
        return result

    def bulk_delete_tasks(self, user_id: str, data: BulkTaskIds) -> BulkOperationResult:
        deleted: List[Dict[str, Any]] = []

        def apply(task: Task) -> None:
            deleted.append(task.to_dict())
            if task.category_id is not None:
                self.cache.delete(category_cache_key(task.category_id))
            self.db.delete(task)

        result = self._bulk(user_id, data.task_ids, apply)
        for payload in deleted:
            self.publisher.publish_event(TaskEvents.DELETED, payload)
        logger.info(f"Bulk delete: {result.successfully_processed}/{result.total_requested}")
        return result

    # Statistics

    def get_user_stats(self, user_id: str) -> TaskStats:
        cached = self.cache.get_json(stats_cache_key(user_id))
        if cached is not None:
            return TaskStats.model_validate(cached)

        tasks = self.tasks.find_by_user(user_id)
        by_status = {s.value: 0 for s in TaskStatus}
        by_priority = {p.value: 0 for p in TaskPriority}
        completion_hours: List[float] = []
        estimated = actual = 0.0

        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
            estimated += task.estimated_hours or 0.0
            actual += task.actual_hours or 0.0
            if task.status == TaskStatus.COMPLETED.value and task.completed_at and task.created_at:
                delta = convert_datetime_to_utc(task.completed_at) - convert_datetime_to_utc(task.created_at)
                completion_hours.append(max(delta.total_seconds(), 0) / 3600)

        total = len(tasks)
        stats = TaskStats(
            total_tasks=total,
            by_status=by_status,
            by_priority=by_priority,
            overdue_tasks=sum(1 for task in tasks if task.is_overdue),
            completion_rate=round(by_status[TaskStatus.COMPLETED.value] / total * 100, 2) if total else 0.0,
            average_completion_hours=(
                round(sum(completion_hours) / len(completion_hours), 2) if completion_hours else None
            ),
            total_estimated_hours=round(estimated, 2),
            total_actual_hours=round(actual, 2),
            efficiency_ratio=round(estimated / actual, 2) if actual > 0 else None,
        )
        self.cache.set_json(stats_cache_key(user_id), stats.model_dump(mode="json"), ttl=settings.stats_cache_ttl)
        return stats
