"""
Database path utilities for the identity API services.
"""
from pathlib import Path

from config.settings import settings


def get_contacts_db_path() -> str:
    """
    Get the path to the contacts database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Path to the contacts SQLite file
    """
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
