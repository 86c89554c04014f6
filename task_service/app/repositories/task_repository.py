import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.task import Task

logger = logging.getLogger(__name__)


class TaskRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, task: Task) -> Task:
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def find_by_id(self, task_id: int) -> Optional[Task]:
        return self.db.query(Task).filter(Task.id == task_id).first()

    def find_owned(self, user_id: str, task_ids: List[int]) -> Dict[int, Task]:
        tasks = self.db.query(Task).filter(Task.user_id == user_id, Task.id.in_(task_ids)).all()
        return {task.id: task for task in tasks}

    def find_by_user(self, user_id: str) -> List[Task]:
        return self.db.query(Task).filter(Task.user_id == user_id).all()

    def save(self, task: Task) -> Task:
        self.db.commit()
        self.db.refresh(task)
        return task

    def delete(self, task: Task) -> None:
        self.db.delete(task)
        self.db.commit()
