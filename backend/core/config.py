import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


ORCHESTRATOR_WS_URL = str(os.getenv("ORCHESTRATOR_WS_URL") or "ws://127.0.0.1:5004/session").strip()
API_BASE_URL = str(os.getenv("API_BASE_URL") or "http://127.0.0.1:5004/api").strip().rstrip("/")
API_TOKEN = str(os.getenv("API_TOKEN") or "").strip()
QA_MODE = _flag("QA_MODE")

# Session bring-up
SESSION_INIT_TIMEOUT_SEC = max(1.0, float(os.getenv("SESSION_INIT_TIMEOUT_SEC", "20")))

# Speech synthesis watchdogs
TTS_START_TIMEOUT_SEC = max(0.5, float(os.getenv("TTS_START_TIMEOUT_SEC", "2")))
TTS_END_TIMEOUT_SEC = max(5.0, float(os.getenv("TTS_END_TIMEOUT_SEC", "30")))
TTS_FAILURE_FALLBACK_SEC = max(0.0, float(os.getenv("TTS_FAILURE_FALLBACK_SEC", "3")))

# Voice activity detection
VAD_INTERVAL_SEC = max(0.02, float(os.getenv("VAD_INTERVAL_SEC", "0.1")))
VAD_INITIAL_THRESHOLD = max(0.0001, float(os.getenv("VAD_INITIAL_THRESHOLD", "0.01")))
VAD_ENERGY_FLOOR = max(0.0, float(os.getenv("VAD_ENERGY_FLOOR", "0.001")))

# Silence escalation
SILENCE_TICK_SEC = max(0.1, float(os.getenv("SILENCE_TICK_SEC", "2")))

# Media capture
FRAME_CAPTURE_INTERVAL_SEC = max(0.5, float(os.getenv("FRAME_CAPTURE_INTERVAL_SEC", "3")))
MAX_FRAMES_PER_ANSWER = max(2, int(os.getenv("MAX_FRAMES_PER_ANSWER", "10")))
RECORDER_FLUSH_TIMEOUT_SEC = max(0.2, float(os.getenv("RECORDER_FLUSH_TIMEOUT_SEC", "2")))
FULL_SESSION_FLUSH_TIMEOUT_SEC = max(0.2, float(os.getenv("FULL_SESSION_FLUSH_TIMEOUT_SEC", "3")))

# Answer submission
UPLOAD_MAX_ATTEMPTS = max(1, int(os.getenv("UPLOAD_MAX_ATTEMPTS", "3")))
UPLOAD_BACKOFF_BASE_SEC = max(0.0, float(os.getenv("UPLOAD_BACKOFF_BASE_SEC", "1")))
UPLOAD_BACKOFF_CAP_SEC = max(0.0, float(os.getenv("UPLOAD_BACKOFF_CAP_SEC", "5")))
EVALUATION_TIMEOUT_SEC = max(1.0, float(os.getenv("EVALUATION_TIMEOUT_SEC", "30")))
HTTP_TIMEOUT_SEC = max(1.0, float(os.getenv("HTTP_TIMEOUT_SEC", "30")))

# Turn taking
COMPLETION_GRACE_SEC = max(0.0, float(os.getenv("COMPLETION_GRACE_SEC", "0.5")))
TRANSCRIPT_SETTLE_SEC = max(0.0, float(os.getenv("TRANSCRIPT_SETTLE_SEC", "0.5")))
QUESTION_DEFER_POLL_SEC = max(0.05, float(os.getenv("QUESTION_DEFER_POLL_SEC", "1")))
QUESTION_LEAD_IN_SEC = max(0.0, float(os.getenv("QUESTION_LEAD_IN_SEC", "1")))

# Audio streaming
AUDIO_CHUNK_MS = max(50, int(os.getenv("AUDIO_CHUNK_MS", "250")))
AUDIO_SAMPLE_RATE = max(8000, int(os.getenv("AUDIO_SAMPLE_RATE", "16000")))


@dataclass(frozen=True)
class OrchestratorTimings:
    session_init_timeout: float = SESSION_INIT_TIMEOUT_SEC
    tts_start_timeout: float = TTS_START_TIMEOUT_SEC
    tts_end_timeout: float = TTS_END_TIMEOUT_SEC
    tts_failure_fallback: float = TTS_FAILURE_FALLBACK_SEC
    vad_interval: float = VAD_INTERVAL_SEC
    silence_tick: float = SILENCE_TICK_SEC
    frame_interval: float = FRAME_CAPTURE_INTERVAL_SEC
    max_frames: int = MAX_FRAMES_PER_ANSWER
    recorder_flush_timeout: float = RECORDER_FLUSH_TIMEOUT_SEC
    full_session_flush_timeout: float = FULL_SESSION_FLUSH_TIMEOUT_SEC
    upload_max_attempts: int = UPLOAD_MAX_ATTEMPTS
    upload_backoff_base: float = UPLOAD_BACKOFF_BASE_SEC
    upload_backoff_cap: float = UPLOAD_BACKOFF_CAP_SEC
    evaluation_timeout: float = EVALUATION_TIMEOUT_SEC
    completion_grace: float = COMPLETION_GRACE_SEC
    transcript_settle: float = TRANSCRIPT_SETTLE_SEC
    question_defer_poll: float = QUESTION_DEFER_POLL_SEC
    question_lead_in: float = QUESTION_LEAD_IN_SEC
    audio_chunk_ms: int = AUDIO_CHUNK_MS
    audio_sample_rate: int = AUDIO_SAMPLE_RATE


def get_timings() -> OrchestratorTimings:
    return OrchestratorTimings()
