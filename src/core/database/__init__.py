"""Database module for the insights pipeline.

Key components:
- db_config.py: Connection URL resolution
- database_session.py: Engine, session management and retry helpers
- models.py: SQLAlchemy ORM models (clients, monthly reports, dimension tables, analytics cache)
- insights_repository.py: Dialect-aware upserts and period queries
- json_type.py: JSONB on PostgreSQL, JSON elsewhere
"""
