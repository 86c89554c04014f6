"""API routers for Auth Service."""
