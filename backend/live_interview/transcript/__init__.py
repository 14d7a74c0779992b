from live_interview.transcript.engine import IngestResult, TranscriptAggregator
from live_interview.transcript.state import TranscriptBuffer

__all__ = ["IngestResult", "TranscriptAggregator", "TranscriptBuffer"]
