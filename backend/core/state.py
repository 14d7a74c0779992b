# backend/core/state.py

from enum import Enum


class SessionStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class ConversationState(str, Enum):
    IDLE = "idle"
    BOT_SPEAKING = "bot_speaking"
    LISTENING = "listening"
    CANDIDATE_SPEAKING = "candidate_speaking"


class InterventionLevel(str, Enum):
    THINKING_CHECK = "thinking_check"
    SUGGEST_MOVE_ON = "suggest_move_on"
    FORCE_MOVE = "force_move"


class NextAction(str, Enum):
    ASK_FOLLOWUP = "ask_followup"
    NEXT_QUESTION = "next_question"
    END_INTERVIEW = "end_interview"


TERMINAL_STATUSES = {SessionStatus.COMPLETED, SessionStatus.ERROR}
