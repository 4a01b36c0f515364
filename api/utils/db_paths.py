"""
Database path utilities for identity reconciliation services.
"""
from config.settings import settings


def get_contact_db_path() -> str:
    """
    Get the path to the contacts database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Absolute path to the contacts.db file
    """
    db_path = settings.contact_db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path.resolve())
