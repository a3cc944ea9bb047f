"""
Database connection management for the SQL credit store.
"""
from sqlalchemy.engine import Engine
from sqlmodel import create_engine, SQLModel
from alset.core.settings import settings
import alset.db.models  # noqa: F401


def build_engine(database_url: str) -> Engine:
    """Create an engine whose statements and pool checkouts respect the credit store timeout."""
    options = {
        "echo": False,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 300,  # Recycle connections every 5 minutes
    }
    if database_url.startswith("postgresql"):
        timeout_ms = int(settings.credit_store_timeout_seconds * 1000)
        options["pool_timeout"] = settings.credit_store_timeout_seconds
        options["connect_args"] = {"options": f"-c statement_timeout={timeout_ms}"}
    return create_engine(database_url, **options)


# Create database engine
engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None):
    """Create database tables."""
    SQLModel.metadata.create_all(bind or engine)
