"""Pydantic schemas for Auth Service."""
