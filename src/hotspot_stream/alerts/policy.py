"""
Alert Policy
============

Deterministic alert emission with per-hotspot record tracking.

This module decides which hotspots of a pass are alert-worthy and whether
each alert is a NEW hotspot or a CONTINUING one.

Key Features:
    - Alert-worthy when count >= count_threshold OR
      severity_sum >= severity_threshold (either suffices)
    - Hotspots are followed across passes by centroid proximity, because
      cluster ids are pass-local
    - At most one emission per record per pass
    - Optional cooldown suppressing CONTINUING re-emission
    - Grace period before an unmatched record is dropped

Record Transitions:
    ACTIVE   → ACTIVE:   matched
    ACTIVE   → EXPIRING: missed (missed_passes = 1)
    EXPIRING → EXPIRING: missed again (missed_passes += 1)
    EXPIRING → ACTIVE:   matched again (re-armed, same key, no NEW alert)
    EXPIRING → REMOVED:  missed_passes > grace_period_passes

The policy is pure: evaluate() never mutates the table it is given and
returns the updated table alongside the alerts.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from hotspot_stream.errors import InvalidParameter
from hotspot_stream.models.alert import (
    AlertEvent,
    AlertKind,
    AlertRecord,
    AlertState,
    AlertTable,
)
from hotspot_stream.models.hotspot import HotspotSummary


logger = logging.getLogger(__name__)


@dataclass
class AlertThresholds:
    """
    Thresholds for alert emission and record matching.

    Loaded from configuration file.
    """

    # Either condition suffices
    count_threshold: int = 5
    severity_threshold: float = 50.0

    # Centroid distance (degrees) for following a hotspot across passes
    match_radius: float = 0.01

    # Consecutive unmatched passes tolerated before removal
    grace_period_passes: int = 3

    # Minimum seconds between CONTINUING alerts for one record (0 = every pass)
    cooldown_seconds: float = 0.0

    # Record key: centroid decimals and time bucket width (seconds)
    key_precision: int = 3
    key_bucket_seconds: float = 3600.0

    def __post_init__(self) -> None:
        """Validate invariants."""
        if self.count_threshold < 1:
            raise InvalidParameter("count_threshold must be >= 1")
        if self.severity_threshold < 0:
            raise InvalidParameter("severity_threshold must be non-negative")
        if not self.match_radius > 0:
            raise InvalidParameter("match_radius must be positive")
        if self.grace_period_passes < 0:
            raise InvalidParameter("grace_period_passes must be non-negative")
        if self.cooldown_seconds < 0:
            raise InvalidParameter("cooldown_seconds must be non-negative")
        if self.key_precision < 0:
            raise InvalidParameter("key_precision must be non-negative")
        if not self.key_bucket_seconds > 0:
            raise InvalidParameter("key_bucket_seconds must be positive")


class AlertPolicy:
    """
    Alert policy over ranked hotspot summaries.

    Example:
        policy = AlertPolicy(AlertThresholds(severity_threshold=50))
        table = {}
        alerts, table = policy.evaluate(result.hotspots, table, now=tick_time)
    """

    def __init__(self, thresholds: Optional[AlertThresholds] = None) -> None:
        """
        Initialize alert policy.

        Args:
            thresholds: Configured threshold values (defaults if None)
        """
        self.thresholds = thresholds or AlertThresholds()
        logger.info(
            f"AlertPolicy initialized: "
            f"count>={self.thresholds.count_threshold} OR "
            f"severity>={self.thresholds.severity_threshold}, "
            f"match_radius={self.thresholds.match_radius}, "
            f"grace={self.thresholds.grace_period_passes} passes"
        )

    def is_alert_worthy(self, summary: HotspotSummary) -> bool:
        """Volume or severity alone is enough to alert."""
        th = self.thresholds
        return summary.count >= th.count_threshold or summary.severity_sum >= th.severity_threshold

    def record_key(self, summary: HotspotSummary, now: float) -> str:
        """Stable record key: rounded centroid plus pass time bucket."""
        th = self.thresholds
        p = th.key_precision
        bucket = int(math.floor(now / th.key_bucket_seconds) * th.key_bucket_seconds)
        return f"{summary.centroid_lat:.{p}f},{summary.centroid_lon:.{p}f}@{bucket}"

    def evaluate(
        self,
        summaries: Sequence[HotspotSummary],
        alert_table: AlertTable,
        now: float,
    ) -> Tuple[List[AlertEvent], AlertTable]:
        """
        Evaluate one pass.

        Args:
            summaries: Ranked hotspots of this pass (processed in order)
            alert_table: Current alert table (not modified)
            now: Pass timestamp

        Returns:
            Tuple of (alerts_to_emit, updated_alert_table)
        """
        table: Dict[str, AlertRecord] = dict(alert_table)
        matched: Set[str] = set()
        alerts: List[AlertEvent] = []

        for summary in summaries:
            if not self.is_alert_worthy(summary):
                continue

            record = self._match(summary, table, matched)
            if record is None:
                record = self._create(summary, table, now)
                table[record.key] = record
                matched.add(record.key)
                alerts.append(AlertEvent(
                    kind=AlertKind.NEW,
                    summary=summary,
                    alert_record_key=record.key,
                    timestamp=now,
                ))
                logger.warning(
                    f"NEW HOTSPOT: key={record.key} rank={summary.rank} "
                    f"count={summary.count} severity={summary.severity_sum:g}"
                )
                continue

            emit = self._cooldown_elapsed(record, now)
            if record.state == AlertState.EXPIRING:
                logger.info(
                    f"Hotspot re-armed: key={record.key} "
                    f"after {record.missed_passes} missed passes"
                )

            updated = record.model_copy(update={
                "state": AlertState.ACTIVE,
                "centroid_lat": summary.centroid_lat,
                "centroid_lon": summary.centroid_lon,
                "summary": summary,
                "last_seen": now,
                "last_emitted": now if emit else record.last_emitted,
                "alert_count": record.alert_count + 1,
                "missed_passes": 0,
            })
            table[record.key] = updated
            matched.add(record.key)

            if emit:
                alerts.append(AlertEvent(
                    kind=AlertKind.CONTINUING,
                    summary=summary,
                    alert_record_key=record.key,
                    timestamp=now,
                ))

        self._age_unmatched(table, matched)
        return alerts, table

    def _match(
        self,
        summary: HotspotSummary,
        table: Dict[str, AlertRecord],
        matched: Set[str],
    ) -> Optional[AlertRecord]:
        """Nearest unmatched record within match_radius (ties: earliest first_seen)."""
        best: Optional[AlertRecord] = None
        best_rank: Optional[tuple] = None

        for key, record in table.items():
            if key in matched or record.state == AlertState.REMOVED:
                continue
            distance = math.hypot(
                summary.centroid_lat - record.centroid_lat,
                summary.centroid_lon - record.centroid_lon,
            )
            if distance > self.thresholds.match_radius:
                continue
            rank = (distance, record.first_seen, record.key)
            if best_rank is None or rank < best_rank:
                best, best_rank = record, rank

        return best

    def _create(
        self,
        summary: HotspotSummary,
        table: Dict[str, AlertRecord],
        now: float,
    ) -> AlertRecord:
        key = self.record_key(summary, now)
        if key in table:
            suffix = 2
            while f"{key}#{suffix}" in table:
                suffix += 1
            key = f"{key}#{suffix}"

        return AlertRecord(
            key=key,
            state=AlertState.ACTIVE,
            centroid_lat=summary.centroid_lat,
            centroid_lon=summary.centroid_lon,
            summary=summary,
            first_seen=now,
            last_seen=now,
            last_emitted=now,
            alert_count=1,
            missed_passes=0,
        )

    def _cooldown_elapsed(self, record: AlertRecord, now: float) -> bool:
        cooldown = self.thresholds.cooldown_seconds
        return cooldown <= 0 or now - record.last_emitted >= cooldown

    def _age_unmatched(self, table: Dict[str, AlertRecord], matched: Set[str]) -> None:
        """Move unmatched records towards removal."""
        grace = self.thresholds.grace_period_passes

        for key in [k for k in table if k not in matched]:
            record = table[key]
            missed = record.missed_passes + 1
            if missed > grace:
                del table[key]
                logger.info(
                    f"Hotspot expired: key={key} "
                    f"(unmatched for {missed} passes, alerts={record.alert_count})"
                )
            else:
                table[key] = record.model_copy(update={
                    "state": AlertState.EXPIRING,
                    "missed_passes": missed,
                })
