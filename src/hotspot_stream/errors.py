"""
Error Taxonomy
==============

Exception classes raised by the hotspot engine.

Fatal:
    - InvalidParameter: bad configuration, the component refuses to start
    - StateCorruption: an internal invariant was violated, the window
      instance halts

Non-fatal (counted, logged, processing continues):
    - MalformedEvent: event rejected at ingestion
    - ClusteringTimeout: a tick's clustering pass exceeded its budget
    - SinkUnavailable: a publish step could not reach a sink
"""


class HotspotError(Exception):
    """Base class for all engine errors."""
    pass


class InvalidParameter(HotspotError, ValueError):
    """Raised when a component is constructed with bad configuration."""
    pass


class MalformedEvent(HotspotError, ValueError):
    """Raised when an event has missing or non-finite fields."""
    pass


class ClusteringTimeout(HotspotError):
    """Raised when a clustering pass exceeds its wall-clock budget."""
    pass


class SinkUnavailable(HotspotError):
    """Raised when a hotspot or alert sink cannot accept a publish."""
    pass


class StateCorruption(HotspotError, RuntimeError):
    """Raised when window, labeling or ranking invariants are violated."""
    pass
