from .core import RecordingHandler, RecordingPublisher, wait_for

__all__ = ["RecordingHandler", "RecordingPublisher", "wait_for"]
