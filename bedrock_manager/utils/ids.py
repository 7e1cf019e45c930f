"""Identifier helpers for new servers."""

import re
import secrets

SERVER_ID_PATTERN = r"^[a-z0-9][a-z0-9-]{0,62}$"


def generate_server_id(prefix: str = "bedrock-", length: int = 4) -> str:
    """
    Generate a new random server ID.

    Args:
        prefix: Directory prefix shared by all managed servers
        length: Number of random bytes (rendered as hex)

    Returns:
        ID such as "bedrock-3f9a0c1d"
    """
    return f"{prefix}{secrets.token_hex(length)}"


def validate_server_id(server_id: str) -> bool:
    """
    Check that a server ID is safe to use as a directory and container name.

    Args:
        server_id: Server ID to validate

    Returns:
        True if the ID is valid, False otherwise
    """
    if not server_id:
        return False

    return re.match(SERVER_ID_PATTERN, server_id) is not None
