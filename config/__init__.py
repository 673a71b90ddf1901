from .settings import settings
from .database import build_engine, create_db_and_tables

__all__ = [
    "settings",
    "build_engine",
    "create_db_and_tables",
]
