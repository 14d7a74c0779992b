import json
import logging
from typing import Any

logger = logging.getLogger("live_interview")

# Candidate speech and bot prompts never reach the log verbatim.
_REDACTED_KEYS = {
	"text",
	"transcript",
	"transcript_chunk",
	"question_text",
	"message",
	"followup_question",
}

_BLOB_KEYS = {"video", "video_data", "audio_data", "image", "image_frames"}


def _redacted(value: Any) -> dict:
	return {"redacted": True, "length": len(str(value or ""))}


def _sanitize_value(key: str, value: Any) -> Any:
	name = str(key or "").lower()
	if name in _REDACTED_KEYS:
		return _redacted(value)
	if isinstance(value, (bytes, bytearray, memoryview)):
		return {"bytes": len(value)}
	if name in _BLOB_KEYS and isinstance(value, str):
		return {"chars": len(value)}
	if isinstance(value, (str, int, float, bool)) or value is None:
		return value
	if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
		return value.value
	if isinstance(value, dict):
		return {str(k): _sanitize_value(str(k), v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set)):
		return [_sanitize_value(name, item) for item in value]
	return str(value)


def build_event_payload(component: str, event: str, session_id: str, **fields) -> dict:
	payload = {
		"component": str(component or "orchestrator"),
		"event": str(event or "unknown"),
		"session_id": str(session_id or ""),
	}
	for key, value in fields.items():
		payload[str(key)] = _sanitize_value(str(key), value)
	return payload


def log_event(component: str, event: str, session_id: str, log_level: int = logging.INFO, **fields) -> None:
	payload = build_event_payload(component, event, session_id, **fields)
	logger.log(log_level, json.dumps(payload, ensure_ascii=False, default=str))
