"""Presentation metadata for escalation levels.

Independent of the rule table: this is purely cosmetic lookup data
keyed by level number, with level 1 as the fallback for anything out of
range.
"""

from __future__ import annotations

from typing import Final

from src.models.escalation import LevelDisplay

_LEVEL_DISPLAY: Final[dict[int, LevelDisplay]] = {
    1: LevelDisplay(
        label="Registered",
        description="Complaint registered, awaiting officer assignment",
        color="#3b82f6",
        icon="📝",
        badge="Level 1",
    ),
    2: LevelDisplay(
        label="Escalated",
        description="Escalated to senior authority",
        color="#f59e0b",
        icon="⚠️",
        badge="Level 2",
    ),
    3: LevelDisplay(
        label="High Priority",
        description="High priority escalation",
        color="#ef4444",
        icon="🚨",
        badge="Level 3",
    ),
    4: LevelDisplay(
        label="Critical",
        description="Critical escalation level",
        color="#dc2626",
        icon="🔥",
        badge="Level 4",
    ),
    5: LevelDisplay(
        label="Maximum",
        description="Maximum escalation level",
        color="#991b1b",
        icon="⛔",
        badge="Level 5",
    ),
}


def get_escalation_info(level: int | None) -> LevelDisplay:
    """Display metadata for *level*; unknown levels get level 1's."""
    if isinstance(level, bool) or not isinstance(level, int):
        return _LEVEL_DISPLAY[1]
    return _LEVEL_DISPLAY.get(level, _LEVEL_DISPLAY[1])


def format_escalation_time(hours: int) -> str:
    """Render a window length: ``"12 hours"``, ``"2 days"``, ``"1d 12h"``."""
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    days, remaining_hours = divmod(hours, 24)
    if remaining_hours == 0:
        return f"{days} day{'s' if days != 1 else ''}"
    return f"{days}d {remaining_hours}h"
