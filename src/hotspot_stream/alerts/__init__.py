"""
Alerts Module
=============

Alert policy: thresholds, hotspot matching across passes, dedup and
record expiry.
"""

from hotspot_stream.alerts.policy import AlertPolicy, AlertThresholds

__all__ = [
    "AlertPolicy",
    "AlertThresholds",
]
