"""Pydantic models shared across repositories and services."""
