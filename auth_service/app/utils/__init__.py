"""Helpers shared across the Auth Service."""
