"""Business logic for Auth Service."""
