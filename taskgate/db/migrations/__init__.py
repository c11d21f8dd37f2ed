"""Migrations for taskgate."""
