"""Task ownership placeholder.

Unassigned tasks store ``assigned_to = None``. Older records may still carry
the reserved "null user" id, which is read back as unassigned as well.
"""
from typing import Any, Optional

UNASSIGNED = None
LEGACY_UNASSIGNED_ID = "W2fwORpFcBjiTBICwnwm"


def is_unassigned(value: Any) -> bool:
    return value is None or value == "" or str(value) == LEGACY_UNASSIGNED_ID


def wire_assignee(value: Any) -> Optional[str]:
    if is_unassigned(value):
        return None
    return str(value)
