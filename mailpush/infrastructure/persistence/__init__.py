"""Persistence: SQLAlchemy models, repositories and transactional stores."""
