"""
Database: SQLAlchemy persistence for the graph and learner-state stores.
"""

from skillpath.db.database import Base, create_db_engine, create_session_factory, init_db, session_scope
from skillpath.db.stores import SqlGraphStore, SqlLearnerStateStore

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
    "SqlGraphStore",
    "SqlLearnerStateStore",
]
