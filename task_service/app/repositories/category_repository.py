import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.category import Category
from ..models.task import CLOSED_STATUSES, Task

logger = logging.getLogger(__name__)


class CategoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: str, data: Dict[str, Any]) -> Category:
        category = Category(user_id=user_id, **data)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        return category

    def find_by_id(self, category_id: int) -> Optional[Category]:
        return self.db.query(Category).filter(Category.id == category_id).first()

    def find_by_ids(self, user_id: str, category_ids: List[int]) -> List[Category]:
        return (
            self.db.query(Category)
            .filter(Category.user_id == user_id, Category.id.in_(category_ids))
            .all()
        )

    def find_by_name(self, user_id: str, name: str, exclude_id: Optional[int] = None) -> Optional[Category]:
        query = self.db.query(Category).filter(
            Category.user_id == user_id,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        return query.first()

    def count_by_user(self, user_id: str) -> int:
        return self.db.query(func.count(Category.id)).filter(Category.user_id == user_id).scalar() or 0

    def count_tasks(self, category_id: int) -> int:
        return self.db.query(func.count(Task.id)).filter(Task.category_id == category_id).scalar() or 0

    def has_active_tasks(self, category_id: int) -> bool:
        query = self.db.query(Task.id).filter(
            Task.category_id == category_id,
            Task.status.notin_(CLOSED_STATUSES),
        )
        return query.first() is not None

    def find_by_user_with_counts(self, user_id: str) -> List[Tuple[Category, int]]:
        rows = (
            self.db.query(Category, func.count(Task.id))
            .outerjoin(Task, Task.category_id == Category.id)
            .filter(Category.user_id == user_id)
            .group_by(Category.id)
            .all()
        )
        return [(category, count) for category, count in rows]

    def update(self, category: Category, changes: Dict[str, Any]) -> Category:
        for field, value in changes.items():
            setattr(category, field, value)
        self.db.commit()
        self.db.refresh(category)
        return category

    def _detach_tasks(self, category_ids: List[int]) -> List[int]:
        task_ids = [row.id for row in self.db.query(Task.id).filter(Task.category_id.in_(category_ids)).all()]
        if not task_ids:
            return []
        self.db.query(Task).filter(Task.category_id.in_(category_ids)).update(
            {Task.category_id: None}, synchronize_session=False
        )
        return task_ids

    def delete(self, category: Category) -> List[int]:
        """Delete a category and return the ids of the tasks it held."""
        task_ids = self._detach_tasks([category.id])
        self.db.delete(category)
        self.db.commit()
        return task_ids

    def bulk_delete(self, user_id: str, category_ids: List[int]) -> Tuple[int, List[int]]:
        task_ids = self._detach_tasks(category_ids)
        deleted = (
            self.db.query(Category)
            .filter(Category.user_id == user_id, Category.id.in_(category_ids))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted, task_ids
