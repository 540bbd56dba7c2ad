"""Queue permission bits and well-known names."""

from __future__ import annotations

PERM_PRIORITY = 0x1 << 3
PERM_READ = 0x1 << 2
PERM_WRITE = 0x1 << 1
PERM_INHERIT = 0x1 << 0

RETRY_GROUP_TOPIC_PREFIX = "%RETRY%"
DEFAULT_CONSUMER_GROUP = "DEFAULT_CONSUMER"
CLIENT_INNER_PRODUCER_GROUP = "CLIENT_INNER_PRODUCER"
SYSTEM_TOPIC_PREFIX = "rmq_sys_"

V4_1_0 = 0


def queue_is_readable(perm: int) -> bool:
    return perm & PERM_READ == PERM_READ


def queue_is_writeable(perm: int) -> bool:
    return perm & PERM_WRITE == PERM_WRITE


def queue_is_inherited(perm: int) -> bool:
    return perm & PERM_INHERIT == PERM_INHERIT


def perm_to_string(perm: int) -> str:
    """Render read, write and inherit bits as three characters, e.g. ``RW-``."""
    return "".join(
        (
            "R" if queue_is_readable(perm) else "-",
            "W" if queue_is_writeable(perm) else "-",
            "X" if queue_is_inherited(perm) else "-",
        )
    )


def get_retry_topic(group: str) -> str:
    """Name of the retry topic of a consumer group."""
    return RETRY_GROUP_TOPIC_PREFIX + group