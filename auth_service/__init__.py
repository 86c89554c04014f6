"""Auth Service package."""
