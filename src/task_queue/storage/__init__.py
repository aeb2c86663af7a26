"""Persistence layer: SQLModel tables, engine policy, and Alembic migrations."""
