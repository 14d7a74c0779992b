from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from live_interview.models import Question


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# -------------------------
# CLIENT -> SERVER
# -------------------------

class JoinInterview(WireModel):
    interview_id: str = Field(alias="interviewId")
    user_role: str = Field(default="candidate", alias="userRole")


class StartSession(WireModel):
    interview_id: str = Field(alias="interviewId")
    candidate_id: str = Field(alias="candidateId")


class AudioChunk(WireModel):
    session_id: str = Field(alias="sessionId")
    audio_data: str = Field(alias="audioData")
    sample_rate: int = Field(default=16000, alias="sampleRate")
    timestamp: int


class VadDetected(WireModel):
    session_id: str = Field(alias="sessionId")
    is_speaking: bool = Field(alias="isSpeaking")
    energy: float
    timestamp: int
    silence_duration: int | None = Field(default=None, alias="silenceDuration")
    speaking_duration: int | None = Field(default=None, alias="speakingDuration")


class TranscriptChunk(WireModel):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    question_text: str | None = Field(default=None, alias="questionText")
    transcript_chunk: str = Field(alias="transcriptChunk")
    is_final: bool = Field(default=True, alias="isFinal")
    timestamp: int


class CandidateResponse(WireModel):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    transcript: str


class SilenceDetected(WireModel):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    silence_duration: int = Field(alias="silenceDuration")
    intervention_level: str = Field(alias="interventionLevel")


class QuestionStarted(WireModel):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    question_text: str = Field(alias="questionText")


class AnswerSubmit(WireModel):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    question_text: str = Field(default="", alias="questionText")
    video_data: str | None = Field(default=None, alias="videoData")
    video_url: str | None = Field(default=None, alias="videoUrl")
    transcript: str = ""
    image_frames: list[str] = Field(default_factory=list, alias="imageFrames")
    timestamps: dict[str, int | None] = Field(default_factory=dict)


class InterviewCompleteNotice(WireModel):
    session_id: str = Field(alias="sessionId")
    interview_id: str = Field(alias="interviewId")


# -------------------------
# SERVER -> CLIENT
# -------------------------

class QuestionPayload(WireModel):
    id: str
    text: str
    type: str = "primary"
    order: int = 0
    parent_question_id: str | None = Field(default=None, alias="parentQuestionId")
    skills_targeted: list[str] = Field(default_factory=list, alias="skillsTargeted")

    def to_question(self) -> Question:
        kind = "followup" if self.type == "followup" else "primary"
        return Question(
            id=self.id,
            text=self.text,
            kind=kind,
            order=self.order,
            parent_question_id=self.parent_question_id,
            skills_targeted=list(self.skills_targeted),
        )


class SessionReady(WireModel):
    session_id: str = Field(alias="sessionId")
    first_question: QuestionPayload | None = Field(default=None, alias="firstQuestion")


class EvaluationResponse(WireModel):
    next_action: str
    next_text: str | None = None
    next_question: QuestionPayload | None = Field(default=None, alias="nextQuestion")
    transcript: str | None = None
    question_id: str | None = None
    evaluation: dict[str, Any] | None = None


class NextQuestionGenerated(WireModel):
    question: QuestionPayload


class FollowupQuestionReady(WireModel):
    question_id: str | None = Field(default=None, alias="questionId")
    followup_question: QuestionPayload = Field(alias="followupQuestion")


class BotMessage(WireModel):
    message: str = ""
    type: str | None = None
    question_id: str | None = Field(default=None, alias="questionId")


class ProcessAnswerNow(WireModel):
    question_id: str | None = Field(default=None, alias="questionId")
    reason: str | None = None


class ServerError(WireModel):
    message: str = "Unknown error occurred"
    question_id: str | None = Field(default=None, alias="questionId")
