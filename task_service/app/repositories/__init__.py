"""Data access layer for Task Service."""
