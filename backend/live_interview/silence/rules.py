"""
Silence escalation thresholds (seconds since the candidate was last heard).
Changing these changes system behavior.
"""
from core.state import InterventionLevel

THINKING_CHECK_SEC = 7.0
SUGGEST_MOVE_ON_SEC = 15.0
FORCE_MOVE_SEC = 30.0

# Strictly increasing severity
LEVEL_ORDER = (
    InterventionLevel.THINKING_CHECK,
    InterventionLevel.SUGGEST_MOVE_ON,
    InterventionLevel.FORCE_MOVE,
)

LEVEL_THRESHOLDS = {
    InterventionLevel.THINKING_CHECK: THINKING_CHECK_SEC,
    InterventionLevel.SUGGEST_MOVE_ON: SUGGEST_MOVE_ON_SEC,
    InterventionLevel.FORCE_MOVE: FORCE_MOVE_SEC,
}


def rank(level: InterventionLevel | None) -> int:
    if level is None:
        return -1
    return LEVEL_ORDER.index(level)


def level_for(silence_sec: float) -> InterventionLevel | None:
    reached = None
    for level in LEVEL_ORDER:
        if silence_sec >= LEVEL_THRESHOLDS[level]:
            reached = level
    return reached
