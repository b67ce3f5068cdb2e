"""ASGI middleware for the payments API."""
