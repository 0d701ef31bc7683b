"""Alembic migrations for the curator job store."""
