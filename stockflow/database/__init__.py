from stockflow.database.base import Base
from stockflow.database.engine import engine, ensure_sqlite_schema
from stockflow.database.session import SessionLocal

__all__ = ["Base", "engine", "ensure_sqlite_schema", "SessionLocal"]
