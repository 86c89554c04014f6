import re
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not HEX_COLOR_RE.match(value):
        raise ValueError("Color must be a hex value such as #6366f1")
    return value.lower()


def _check_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("Category name cannot be blank")
    return value


class CategoryFields(BaseModel):
    @field_validator("name", check_fields=False)
    @classmethod
    def validate_name(cls, value):
        return _check_name(value)

    @field_validator("color", check_fields=False)
    @classmethod
    def validate_color(cls, value):
        return _check_color(value)


class CategoryCreate(CategoryFields):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = Field(None, min_length=1, max_length=50)


class CategoryUpdate(CategoryFields):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = Field(None, min_length=1, max_length=50)
    is_active: Optional[bool] = None


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    color: str
    icon: str
    is_active: bool
    user_id: str
    task_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None


class MostUsedCategory(BaseModel):
    id: int
    name: str
    task_count: int


class CategoryStats(BaseModel):
    total_categories: int
    active_categories: int
    categories_with_tasks: int
    average_tasks_per_category: float
    most_used_category: Optional[MostUsedCategory] = None


class CategoryLimit(BaseModel):
    current: int
    limit: int
    can_create: bool
    remaining: int


class BulkCategoryDelete(BaseModel):
    category_ids: List[int] = Field(..., min_length=1, max_length=50)


class BulkCategoryDeleteResult(BaseModel):
    deleted: int
    category_ids: List[int]
