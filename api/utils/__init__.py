# Identity Reconciliation API Utilities
"""
Shared utility functions for identity reconciliation services.
"""

from api.utils.datetime_utils import make_aware, parse_timestamp, utc_now
from api.utils.db_paths import get_contact_db_path

__all__ = ["make_aware", "parse_timestamp", "utc_now", "get_contact_db_path"]
