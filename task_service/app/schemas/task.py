"""
Pydantic schemas for Task Service.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from enum import Enum

MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MAX_ATTACHMENTS = 5
MAX_BULK_ITEMS = 50


def convert_datetime_to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert datetime to UTC timezone-aware datetime"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Naive datetime, assume UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TaskStatus(str, Enum):
    """Task status enumeration for API"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class TaskPriority(str, Enum):
    """Task priority enumeration for API"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    cleaned: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        if tag not in cleaned:
            cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"A task can have at most {MAX_TAGS} tags")
    return cleaned


class TaskFields(BaseModel):
    """Optional task attributes shared by create and update"""
    description: Optional[str] = Field(None, max_length=2000, description="Task description")
    due_date: Optional[datetime] = Field(None, description="Task due date")
    category_id: Optional[int] = Field(None, description="Category the task belongs to")
    tags: Optional[List[str]] = Field(None, description="Task tags")
    estimated_hours: Optional[float] = Field(None, ge=0, le=999, description="Estimated effort in hours")
    actual_hours: Optional[float] = Field(None, ge=0, le=999, description="Logged effort in hours")
    attachments: Optional[List[HttpUrl]] = Field(None, max_length=MAX_ATTACHMENTS, description="Attachment URLs")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value):
        return _clean_tags(value)


class TaskCreate(TaskFields):
    """Schema for creating a task"""
    title: str = Field(..., min_length=1, max_length=200, description="Task title")
    status: TaskStatus = Field(TaskStatus.PENDING, description="Initial status")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Task priority")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be blank")
        return value


class TaskUpdate(TaskFields):
    """Schema for updating a task; only provided fields change"""
    title: Optional[str] = Field(None, min_length=1, max_length=200, description="Task title")
    status: Optional[TaskStatus] = Field(None, description="Task status")
    priority: Optional[TaskPriority] = Field(None, description="Task priority")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be blank")
        return value


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskPriorityUpdate(BaseModel):
    priority: TaskPriority


class TaskResponse(BaseModel):
    """Schema for task response"""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Task ID")
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    user_id: str = Field(..., description="User ID who owns the task")
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_overdue: bool = False

    @field_validator("due_date", "completed_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return convert_datetime_to_utc(value)

    @model_validator(mode="after")
    def compute_overdue(self):
        self.is_overdue = (
            self.due_date is not None
            and self.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)
            and self.due_date < datetime.now(timezone.utc)
        )
        return self


class TaskStats(BaseModel):
    """Schema for per-user task statistics"""
    total_tasks: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    overdue_tasks: int
    completion_rate: float = Field(..., description="Completed tasks as a percentage of all tasks")
    average_completion_hours: Optional[float] = None
    total_estimated_hours: float
    total_actual_hours: float
    efficiency_ratio: Optional[float] = Field(None, description="Estimated hours divided by actual hours")


class BulkTaskIds(BaseModel):
    task_ids: List[int] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)

    @field_validator("task_ids")
    @classmethod
    def unique_ids(cls, value: List[int]) -> List[int]:
        return list(dict.fromkeys(value))


class BulkStatusUpdate(BulkTaskIds):
    status: TaskStatus


class BulkOperationError(BaseModel):
    task_id: int
    error: str


class BulkOperationResult(BaseModel):
    success: bool
    total_requested: int
    successfully_processed: int
    failed: int
    errors: List[BulkOperationError] = Field(default_factory=list)
