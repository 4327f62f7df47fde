"""
Monitoring and observability module for the Idea Board client.

Provides real-time metrics and insights for:
- Page API requests
- Idea store calls (latency, errors by class)
- Fire-and-forget write outcomes
- Activity feed
"""

from __future__ import annotations

import time
import logging
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Any, Optional
from dataclasses import dataclass
from collections import deque
from enum import Enum

logger = logging.getLogger(__name__)

# Latency samples kept per series
MAX_LATENCY_SAMPLES = 1000


class EventType(str, Enum):
    """Types of client events."""
    FEED_FETCHED = "feed_fetched"
    FEED_FETCH_FAILED = "feed_fetch_failed"
    REFRESH_SIGNALLED = "refresh_signalled"
    IDEA_POSTED = "idea_posted"
    POST_FAILED = "post_failed"
    VALIDATION_FAILED = "validation_failed"
    LIKE_SENT = "like_sent"
    LIKE_FAILED = "like_failed"
    CREATE_CONFIRMED = "create_confirmed"
    CREATE_FAILED = "create_failed"


@dataclass
class ClientEvent:
    """A recorded client event."""
    timestamp: datetime
    event_type: EventType
    idea_id: Optional[int]
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "idea_id": self.idea_id,
            "details": self.details,
            "age_seconds": (datetime.now(timezone.utc) - self.timestamp).total_seconds()
        }


class MetricsCollector:
    """
    Collects and aggregates client metrics.

    Tracks:
    - Page API request counts, latencies and errors per endpoint
    - Idea store calls per operation, with errors broken down by class
    """

    def __init__(self):
        self._start_time = time.time()
        self._request_counts: Dict[str, int] = {}
        self._latencies: Dict[str, List[float]] = {}
        self._error_counts: Dict[str, int] = {}

        # Idea store metrics, keyed by operation name
        self._store_calls: Dict[str, int] = {}
        self._store_latencies: Dict[str, List[float]] = {}
        self._store_errors: Dict[str, Dict[str, int]] = {}

    def record_request(self, endpoint: str, latency_ms: float, error: bool = False) -> None:
        """Record a page API request."""
        self._request_counts[endpoint] = self._request_counts.get(endpoint, 0) + 1
        self._append_latency(self._latencies, endpoint, latency_ms)
        if error:
            self._error_counts[endpoint] = self._error_counts.get(endpoint, 0) + 1

    def record_store_call(
        self,
        operation: str,
        latency_ms: float,
        error_kind: Optional[str] = None
    ) -> None:
        """
        Record a call to the idea store.

        Args:
            operation: Client operation (e.g. "list_ideas", "increment_like")
            latency_ms: Wall time of the call
            error_kind: Error class name if the call failed
        """
        self._store_calls[operation] = self._store_calls.get(operation, 0) + 1
        self._append_latency(self._store_latencies, operation, latency_ms)
        if error_kind:
            by_kind = self._store_errors.setdefault(operation, {})
            by_kind[error_kind] = by_kind.get(error_kind, 0) + 1

    def store_error_count(self, operation: str, error_kind: Optional[str] = None) -> int:
        by_kind = self._store_errors.get(operation, {})
        if error_kind is None:
            return sum(by_kind.values())
        return by_kind.get(error_kind, 0)

    def _append_latency(self, series: Dict[str, List[float]], key: str, latency_ms: float) -> None:
        values = series.setdefault(key, [])
        values.append(latency_ms)
        if len(values) > MAX_LATENCY_SAMPLES:
            series[key] = values[-MAX_LATENCY_SAMPLES:]

    def _calculate_percentiles(self, values: List[float]) -> Dict[str, float]:
        """Calculate p50, p95, p99 percentiles."""
        if not values:
            return {"p50": 0, "p95": 0, "p99": 0, "avg": 0}

        sorted_values = sorted(values)
        n = len(sorted_values)

        return {
            "p50": sorted_values[int(n * 0.50)],
            "p95": sorted_values[int(n * 0.95)],
            "p99": sorted_values[int(n * 0.99)],
            "avg": sum(values) / n,
        }

    def get_metrics(self) -> Dict[str, Any]:
        """Get all collected metrics."""
        uptime = time.time() - self._start_time

        store = {}
        for operation, calls in self._store_calls.items():
            errors = self.store_error_count(operation)
            store[operation] = {
                "calls": calls,
                "errors": errors,
                "errors_by_kind": dict(self._store_errors.get(operation, {})),
                "error_rate": f"{errors / calls:.1%}" if calls > 0 else "0.0%",
                "latency_ms": self._calculate_percentiles(self._store_latencies.get(operation, [])),
            }

        return {
            "uptime_seconds": int(uptime),
            "uptime_human": self._format_duration(uptime),

            "requests": {
                "total": sum(self._request_counts.values()),
                "by_endpoint": self._request_counts,
                "errors": self._error_counts,
            },

            "idea_store": store,
        }

    def _format_duration(self, seconds: float) -> str:
        """Format duration as human-readable string."""
        if seconds < 60:
            return f"{int(seconds)}s"
        elif seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        else:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            return f"{hours}h {minutes}m"


class ActivityFeed:
    """
    Activity feed for client events.

    Stores recent events for live monitoring.
    """

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._events: deque = deque(maxlen=max_events)

    def add_event(
        self,
        event_type: EventType,
        idea_id: Optional[int] = None,
        **details
    ) -> None:
        """Add an event to the feed."""
        event = ClientEvent(
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            idea_id=idea_id,
            details=details
        )
        self._events.append(event)

    def get_recent(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[Dict]:
        """Get recent events, optionally filtered by type."""
        events = list(self._events)

        if event_type:
            events = [e for e in events if e.event_type == event_type]

        # Most recent first
        events = sorted(events, key=lambda e: e.timestamp, reverse=True)
        return [e.to_dict() for e in events[:limit]]

    def get_event_counts(self, since_minutes: int = 5) -> Dict[str, int]:
        """Get event counts by type since N minutes ago."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=since_minutes)

        counts: Dict[str, int] = {}
        for event in self._events:
            if event.timestamp >= cutoff:
                key = event.event_type.value
                counts[key] = counts.get(key, 0) + 1

        return counts


class ClientMonitor:
    """
    Central monitoring hub for the Idea Board client.

    Aggregates metrics from all components.
    """

    def __init__(self):
        self.metrics = MetricsCollector()
        self.activity = ActivityFeed()
        self._component_status: Dict[str, Dict[str, Any]] = {}

    def set_component_status(
        self,
        component: str,
        status: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Set status for a component."""
        self._component_status[component] = {
            "status": status,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "details": details or {}
        }

    def get_health_status(self) -> Dict[str, Any]:
        """Get overall client health status."""
        statuses = [c.get("status", "unknown") for c in self._component_status.values()]

        if statuses and all(s == "healthy" for s in statuses):
            overall = "healthy"
        elif any(s == "error" for s in statuses):
            overall = "degraded"
        elif any(s == "warning" for s in statuses):
            overall = "warning"
        else:
            overall = "unknown"

        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": self._component_status,
        }

    def get_dashboard_data(self) -> Dict[str, Any]:
        """Get all data needed for a monitoring dashboard."""
        return {
            "health": self.get_health_status(),
            "metrics": self.metrics.get_metrics(),
            "recent_activity": self.activity.get_recent(limit=20),
            "event_counts_5m": self.activity.get_event_counts(since_minutes=5),
        }


# Global monitor instance
monitor = ClientMonitor()


__all__ = [
    "ClientMonitor",
    "MetricsCollector",
    "ActivityFeed",
    "EventType",
    "ClientEvent",
    "monitor",
]
