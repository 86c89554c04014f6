"""
Category business rules: per-user limits, unique names and safe deletion.
"""
import logging
from typing import List, Optional

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.cache import RedisCache
from ..core.config import settings
from ..core.errors import ErrorCodes, ServiceError
from ..models.category import DEFAULT_COLOR, DEFAULT_ICON, Category
from ..repositories.category_repository import CategoryRepository
from ..schemas.category import (
    BulkCategoryDeleteResult,
    CategoryCreate,
    CategoryLimit,
    CategoryResponse,
    CategoryStats,
    CategoryUpdate,
    MostUsedCategory,
)

logger = logging.getLogger(__name__)


def category_cache_key(category_id: int) -> str:
    return f"category:{category_id}"


def task_cache_key(task_id: int) -> str:
    return f"task:{task_id}"


def stats_cache_key(user_id: str) -> str:
    return f"user:{user_id}:stats"


class CategoryService:
    def __init__(self, db: Session, cache: RedisCache):
        self.db = db
        self.cache = cache
        self.categories = CategoryRepository(db)

    def _to_response(self, category: Category, task_count: Optional[int] = None) -> CategoryResponse:
        response = CategoryResponse.model_validate(category)
        response.task_count = self.categories.count_tasks(category.id) if task_count is None else task_count
        return response

    def _get_owned(self, user_id: str, category_id: int) -> Category:
        category = self.categories.find_by_id(category_id)
        if category is None or category.user_id != user_id:
            raise ServiceError(ErrorCodes.CATEGORY_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return category

    def check_category_limit(self, user_id: str) -> CategoryLimit:
        current = self.categories.count_by_user(user_id)
        limit = settings.max_categories_per_user
        return CategoryLimit(
            current=current,
            limit=limit,
            can_create=current < limit,
            remaining=max(limit - current, 0),
        )

    def validate_category_ownership(self, user_id: str, category_id: int) -> bool:
        category = self.categories.find_by_id(category_id)
        return category is not None and category.user_id == user_id

    def create_category(self, user_id: str, data: CategoryCreate) -> CategoryResponse:
        if not self.check_category_limit(user_id).can_create:
            raise ServiceError(
                ErrorCodes.CATEGORY_LIMIT_EXCEEDED,
                status.HTTP_400_BAD_REQUEST,
                message=f"Maximum number of categories ({settings.max_categories_per_user}) reached",
            )
        if self.categories.find_by_name(user_id, data.name):
            raise ServiceError(ErrorCodes.CATEGORY_ALREADY_EXISTS, status.HTTP_409_CONFLICT)

        try:
            category = self.categories.create(
                user_id,
                {
                    "name": data.name,
                    "description": data.description,
                    "color": data.color or DEFAULT_COLOR,
                    "icon": data.icon or DEFAULT_ICON,
                },
            )
        except IntegrityError:
            self.db.rollback()
            raise ServiceError(ErrorCodes.CATEGORY_ALREADY_EXISTS, status.HTTP_409_CONFLICT)

        logger.info(f"Category {category.id} created for user {user_id}")
        return self._to_response(category, task_count=0)

    def get_category_by_id(self, user_id: str, category_id: int) -> CategoryResponse:
        cached = self.cache.get_json(category_cache_key(category_id))
        if cached is not None:
            if cached.get("user_id") != user_id:
                raise ServiceError(ErrorCodes.CATEGORY_NOT_FOUND, status.HTTP_404_NOT_FOUND)
            return CategoryResponse.model_validate(cached)

        response = self._to_response(self._get_owned(user_id, category_id))
        self.cache.set_json(
            category_cache_key(category_id),
            response.model_dump(mode="json"),
            ttl=settings.category_cache_ttl,
        )
        return response

    def update_category(self, user_id: str, category_id: int, data: CategoryUpdate) -> CategoryResponse:
        category = self._get_owned(user_id, category_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None or k == "description"}

        if "name" in changes and self.categories.find_by_name(user_id, changes["name"], exclude_id=category.id):
            raise ServiceError(ErrorCodes.CATEGORY_ALREADY_EXISTS, status.HTTP_409_CONFLICT)

        try:
            category = self.categories.update(category, changes)
        except IntegrityError:
            self.db.rollback()
            raise ServiceError(ErrorCodes.CATEGORY_ALREADY_EXISTS, status.HTTP_409_CONFLICT)

        self.cache.delete(category_cache_key(category_id))
        return self._to_response(category)

    def delete_category(self, user_id: str, category_id: int) -> None:
        category = self._get_owned(user_id, category_id)
        if self.categories.has_active_tasks(category.id):
            raise ServiceError(ErrorCodes.CATEGORY_HAS_TASKS, status.HTTP_400_BAD_REQUEST)

        task_ids = self.categories.delete(category)
        self.cache.delete(
            category_cache_key(category_id),
            stats_cache_key(user_id),
            *(task_cache_key(tid) for tid in task_ids),
        )
        logger.info(f"Category {category_id} deleted by user {user_id}")

    def bulk_delete_categories(self, user_id: str, category_ids: List[int]) -> BulkCategoryDeleteResult:
        """Delete several categories; nothing is deleted unless every one can be."""
        category_ids = list(dict.fromkeys(category_ids))
        found = {c.id for c in self.categories.find_by_ids(user_id, category_ids)}
        missing = [cid for cid in category_ids if cid not in found]
        if missing:
            raise ServiceError(
                ErrorCodes.CATEGORY_NOT_FOUND,
                status.HTTP_404_NOT_FOUND,
                details={"category_ids": missing},
            )

        blocked = [cid for cid in category_ids if self.categories.has_active_tasks(cid)]
        if blocked:
            raise ServiceError(
                ErrorCodes.CATEGORY_HAS_TASKS,
                status.HTTP_400_BAD_REQUEST,
                details={"category_ids": blocked},
            )

        deleted, task_ids = self.categories.bulk_delete(user_id, category_ids)
        self.cache.delete(
            stats_cache_key(user_id),
            *(category_cache_key(cid) for cid in category_ids),
            *(task_cache_key(tid) for tid in task_ids),
        )
        logger.info(f"Bulk deleted {deleted} categories for user {user_id}")
        return BulkCategoryDeleteResult(deleted=deleted, category_ids=category_ids)

    def get_category_stats(self, user_id: str) -> CategoryStats:
        rows = self.categories.find_by_user_with_counts(user_id)
        total = len(rows)
        with_tasks = [(c, n) for c, n in rows if n > 0]
        task_total = sum(n for _, n in rows)

        most_used = None
        if with_tasks:
            category, count = max(with_tasks, key=lambda row: (row[1], -row[0].id))
            most_used = MostUsedCategory(id=category.id, name=category.name, task_count=count)

        return CategoryStats(
            total_categories=total,
            active_categories=sum(1 for c, _ in rows if c.is_active),
            categories_with_tasks=len(with_tasks),
            average_tasks_per_category=round(task_total / total, 2) if total else 0.0,
            most_used_category=most_used,
        )
