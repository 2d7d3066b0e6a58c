"""ID types and generators for the types package.

Provides task ID and lock token generation, plus type aliases.
"""

from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime, timezone

# Type aliases
TaskId = str
RoleId = str


def generate_task_id() -> TaskId:
    """Generate a unique task ID.

    Creates IDs in the format: task-YYYYMMDD-HHMMSS-xxxxxx
    where xxxxxx is a random 6-character alphanumeric suffix.

    Returns:
        A unique task identifier string.

    Example:
        >>> task_id = generate_task_id()
        >>> task_id  # e.g., "task-20261017-143022-abc123"
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"task-{timestamp}-{suffix}"


def generate_lock_token() -> str:
    """Generate an opaque token proving resource lock ownership."""
    return uuid.uuid4().hex
