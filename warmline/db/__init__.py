"""Database package - Persistence layer.

Modules:
    - database: SQLite connection, schema and operations
    - models: Dataclasses and enumerations
"""

from warmline.db.database import Database

__all__ = ["Database"]
