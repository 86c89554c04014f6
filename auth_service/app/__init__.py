# auth_service/app/__init__.py
"""Auth Service - user accounts, sessions and token issuance."""

__version__ = "1.0.0"
