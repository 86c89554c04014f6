# task_service/app/schemas/__init__.py
"""Pydantic schemas for Task Service."""
