from dataclasses import dataclass, field
from typing import Optional
import time
import uuid

from core.state import ConversationState, InterventionLevel, SessionStatus


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QuestionTimestamps:
    """Wall-clock milestones of one question cycle, epoch milliseconds."""
    question_start: Optional[int] = None
    question_end: Optional[int] = None
    answer_start: Optional[int] = None
    answer_end: Optional[int] = None

    def as_wire(self, session_start: Optional[int] = None) -> dict:
        return {
            "questionStartTime": self.question_start,
            "questionEndTime": self.question_end,
            "answerStartTime": self.answer_start,
            "answerEndTime": self.answer_end,
            "sessionStartTime": session_start,
        }


@dataclass
class Question:
    id: str
    text: str
    kind: str = "primary"  # primary | followup
    order: int = 0
    parent_question_id: Optional[str] = None
    skills_targeted: list[str] = field(default_factory=list)
    timestamps: QuestionTimestamps = field(default_factory=QuestionTimestamps)

    @property
    def is_followup(self) -> bool:
        return self.kind == "followup"

    @classmethod
    def followup_of(cls, parent: "Question", text: Optional[str] = None) -> "Question":
        return cls(
            id=f"{parent.id}_followup_{now_ms()}",
            text=str(text or parent.text),
            kind="followup",
            order=parent.order,
            parent_question_id=parent.id,
            skills_targeted=list(parent.skills_targeted),
        )


@dataclass
class InterviewSession:
    """
    One candidate's live attempt.
    Owned by the SessionController; every other component receives it by reference.
    """
    template_id: str
    candidate_interview_id: str
    candidate_id: str = "anonymous"
    title: str = ""
    session_id: Optional[str] = None
    status: SessionStatus = SessionStatus.LOADING
    conversation_state: ConversationState = ConversationState.IDLE
    start_timestamp: Optional[int] = None
    duration_budget_ms: Optional[int] = None
    questions: list[Question] = field(default_factory=list)
    current_question: Optional[Question] = None
    used_fallback: bool = False

    def find_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def append_question(self, question: Question) -> bool:
        """Append-only. Returns False for a duplicate id."""
        if self.find_question(question.id) is not None:
            return False
        self.questions.append(question)
        return True


@dataclass
class InterventionRecord:
    level: InterventionLevel
    emitted_at: float
    question_id: str = ""
    silence_duration: float = 0.0


@dataclass
class CapturedFrame:
    timestamp: int
    image: str  # base64 JPEG


@dataclass
class AnswerPackage:
    """
    Everything needed to evaluate one answer.
    Built once at answer stop; owned by the submission pipeline afterwards.
    """
    question_id: str
    question_text: str
    transcript: str
    session_id: str
    candidate_interview_id: str
    video: Optional[bytes] = None
    frames: list[CapturedFrame] = field(default_factory=list)
    timestamps: QuestionTimestamps = field(default_factory=QuestionTimestamps)
    session_start: Optional[int] = None
    package_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def has_video(self) -> bool:
        return bool(self.video)


@dataclass
class SubmissionOutcome:
    question_id: str
    video_url: str = ""
    evaluation: Optional[dict] = None
    submitted: bool = False
    error: Optional[str] = None
