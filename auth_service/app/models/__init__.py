"""Database models for Auth Service."""
