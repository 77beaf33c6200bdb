"""Update queue and periodic synchronization loop."""

from .loop import ErrorSink, SyncLoop, SyncReport, telemetry_error_sink
from .update_queue import UpdateQueue

__all__ = ["ErrorSink", "SyncLoop", "SyncReport", "UpdateQueue", "telemetry_error_sink"]
