from live_interview.speech.synthesis import SpeechOutput

__all__ = ["SpeechOutput"]
