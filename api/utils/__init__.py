# Identity API Utilities
"""
Shared utility functions for the identity API services.
"""

from api.utils.datetime_utils import make_aware
from api.utils.db_paths import get_contacts_db_path

__all__ = ["make_aware", "get_contacts_db_path"]
