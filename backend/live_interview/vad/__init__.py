from live_interview.vad.engine import SpeakingState, VadEngine, compute_rms

__all__ = ["SpeakingState", "VadEngine", "compute_rms"]
