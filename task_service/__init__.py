"""Task Service package."""
