"""
Ephemeral database name generation.
"""

import secrets
import string
from typing import Optional

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63
SUFFIX_LENGTH = 16
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
DEFAULT_PREFIX = "test"


def generate_database_name(prefix: Optional[str], suffix_length: int = SUFFIX_LENGTH) -> str:
    """
    Build a database name that is unique with very high probability.

    Args:
        prefix: Base name, usually the database named in the connection URI
        suffix_length: Number of random alphanumeric characters to append

    Returns:
        ``<prefix>_<suffix>``, shortened to fit PostgreSQL's identifier limit
    """
    if suffix_length < 8:
        raise ValueError("suffix_length must be at least 8")

    suffix = ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(suffix_length))
    base = prefix or DEFAULT_PREFIX

    # Leave room for the separator and the suffix, counting bytes not characters
    budget = MAX_IDENTIFIER_LENGTH - suffix_length - 1
    encoded = base.encode('utf-8')
    if len(encoded) > budget:
        base = encoded[:budget].decode('utf-8', errors='ignore')

    return f"{base}_{suffix}"
