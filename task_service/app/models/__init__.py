"""Database models for Task Service."""
from .category import Category
from .task import Task

__all__ = ["Category", "Task"]
