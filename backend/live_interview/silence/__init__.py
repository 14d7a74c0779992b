from live_interview.silence.monitor import SilenceEscalationMonitor

__all__ = ["SilenceEscalationMonitor"]
