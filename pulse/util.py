"""Queue naming utility functions."""

import uuid
from typing import Optional

QUEUE_PREFIX = "queue"


def build_queue_name(user: str, name: Optional[str] = None) -> str:
    """
    Build a Pulse queue name.

    Pulse only lets a user declare queues under ``queue/<user>/``. When no
    name is given a random one is generated.

    Args:
        user: The user the queue belongs to
        name: The queue name (optional)

    Returns:
        The full queue name

    Examples:
        >>> build_queue_name("pmoore", "taskprocessing")
        'queue/pmoore/taskprocessing'
        >>> build_queue_name("pmoore").startswith("queue/pmoore/")
        True
    """
    if name is None or len(name) == 0:
        name = str(uuid.uuid4())
    return f"{QUEUE_PREFIX}/{user}/{name}"
