# task_service/app/__init__.py
"""Task Service - tasks and categories for authenticated users."""

__version__ = "1.0.0"
