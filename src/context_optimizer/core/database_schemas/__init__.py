"""
Database schema package.

Holds schemas.sql, applied by DatabaseManager on startup.
"""

from pathlib import Path

SCHEMA_PATH = Path(__file__).parent / "schemas.sql"

__all__ = ["SCHEMA_PATH"]
