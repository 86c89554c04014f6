"""Data access layer for Auth Service."""
