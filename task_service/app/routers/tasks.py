from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ..core.auth import CurrentUser, get_current_user
from ..core.cache import RedisCache, get_cache
from ..core.database import get_db
from ..core.rabbitmq import rabbitmq_publisher
from ..schemas.task import (
    BulkOperationResult,
    BulkStatusUpdate,
    BulkTaskIds,
    TaskCreate,
    TaskPriorityUpdate,
    TaskResponse,
    TaskStats,
    TaskStatusUpdate,
    TaskUpdate,
)
from ..services.task_service import TaskService

router = APIRouter()


def get_task_service(
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
) -> TaskService:
    return TaskService(db, cache, rabbitmq_publisher)


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Create a new task for the authenticated user"""
    return service.create_task(current_user.user_id, task_data)


@router.get("/stats", response_model=TaskStats)
def get_task_stats(
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Aggregate counts, overdue work and effort for the authenticated user"""
    return service.get_user_stats(current_user.user_id)


@router.post("/bulk/status", response_model=BulkOperationResult)
def bulk_update_status(
    body: BulkStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.bulk_update_status(current_user.user_id, body)


@router.post("/bulk/delete", response_model=BulkOperationResult)
def bulk_delete_tasks(
    body: BulkTaskIds,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.bulk_delete_tasks(current_user.user_id, body)


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Get a specific task by ID"""
    return service.get_task_by_id(current_user.user_id, task_id)


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    task_data: TaskUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Update a specific task; omitted fields keep their values"""
    return service.update_task(current_user.user_id, task_id, task_data)


@router.patch("/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    task_id: int,
    body: TaskStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.update_task_status(current_user.user_id, task_id, body.status)


@router.patch("/{task_id}/priority", response_model=TaskResponse)
def update_task_priority(
    task_id: int,
    body: TaskPriorityUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.update_task_priority(current_user.user_id, task_id, body.priority)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Delete a specific task"""
    service.delete_task(current_user.user_id, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
