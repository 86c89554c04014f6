"""API routers for Task Service."""
