"""Versions for alembic."""
