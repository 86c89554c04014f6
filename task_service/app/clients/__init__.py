"""Clients for the services Task Service depends on."""
