"""Persistence adapters that translate between ORM rows and domain models."""
