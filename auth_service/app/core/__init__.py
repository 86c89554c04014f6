"""Core modules for Auth Service."""
