# Session protocol event names.

# client -> server
JOIN_INTERVIEW = "join-interview"
START_SESSION = "start-gemini-session"
AUDIO_CHUNK = "audio-chunk"
VAD_DETECTED = "vad-detected"
TRANSCRIPT_CHUNK = "transcript-chunk"
CANDIDATE_RESPONSE = "candidate-response"
SILENCE_DETECTED = "silence-detected"
QUESTION_STARTED = "question-started"
ANSWER_SUBMIT = "gemini-audio"
INTERVIEW_COMPLETE = "interview-complete"

# server -> client
SESSION_READY = "gemini-session-ready"
SESSION_ERROR = "gemini-session-error"
ANSWER_RESULT = "gemini-response"
EVALUATION_ERROR = "gemini-error"
NEXT_QUESTION_GENERATED = "next-question-generated"
FOLLOWUP_QUESTION_READY = "followup-question-ready"
BOT_INTERVENTION = "bot-intervention"
BOT_DEFLECTION = "bot-deflection"
BOT_ACKNOWLEDGMENT = "bot-acknowledgment"
BOT_CLARIFICATION = "bot-clarification"
PROCESS_ANSWER_NOW = "process-answer-now"

# local pseudo-event raised when the transport drops
DISCONNECT = "disconnect"

BOT_MESSAGE_EVENTS = (BOT_INTERVENTION, BOT_DEFLECTION, BOT_ACKNOWLEDGMENT, BOT_CLARIFICATION)
