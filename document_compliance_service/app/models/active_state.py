from enum import Enum
from typing import Any, Dict


class ActiveState(str, Enum):
    """Lifecycle tag for soft-deletable catalog entities (categories, templates)."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RetentionPolicy(str, Enum):
    """Which lifecycle states a read path returns. Every list query must pick one."""
    ACTIVE_ONLY = "ACTIVE_ONLY"
    INACTIVE_ONLY = "INACTIVE_ONLY"
    ALL = "ALL"


def retention_filter(retention: RetentionPolicy) -> Dict[str, Any]:
    if retention == RetentionPolicy.ACTIVE_ONLY:
        return {"active_state": ActiveState.ACTIVE.value}
    if retention == RetentionPolicy.INACTIVE_ONLY:
        return {"active_state": ActiveState.INACTIVE.value}
    if retention == RetentionPolicy.ALL:
        return {}
    raise ValueError(f"Unknown retention policy: {retention}")
