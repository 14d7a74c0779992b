from live_interview.media.capture import CaptureResult, MediaCaptureManager
from live_interview.media.frames import subsample_frames

__all__ = ["CaptureResult", "MediaCaptureManager", "subsample_frames"]
