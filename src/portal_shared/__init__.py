"""Shared domain package for the membership portal payment backend."""

__version__ = "0.1.0"
