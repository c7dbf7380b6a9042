"""
Viewer analytics and client performance statistics for Harecame.

Viewer interactions are stored as 'viewer_interaction' event logs and
aggregated on demand. Web-vital samples are kept as running averages in
memory; they only describe this server process.
"""
import re
import threading
from datetime import datetime, timezone

from ..models.database import EventLog
from . import events

INTERACTION_LOG_TYPE = 'viewer_interaction'
INTERACTION_ACTIONS = ('view_start', 'view_end', 'chat_open', 'chat_close', 'fullscreen', 'quality_change')

PERFORMANCE_THRESHOLDS = {
    'LCP': 4000,
    'INP': 500,
    'CLS': 0.25,
    'FCP': 3000,
    'TTFB': 1800,
}

_MOBILE_UA = re.compile(r'Mobile|Android|iPhone|iPad')
_TABLET_UA = re.compile(r'iPad|Tablet')


# =============================================================================
# VIEWER INTERACTIONS
# =============================================================================

def record_interaction(event_id: str, action: str, metadata: dict = None):
    """Persist one viewer interaction"""
    details = dict(metadata or {})
    details['action'] = action
    return events.record_log(event_id, INTERACTION_LOG_TYPE, f"Viewer interaction: {action}", details)


def classify_device(user_agent: str) -> str:
    if not user_agent or not _MOBILE_UA.search(user_agent):
        return 'desktop'
    return 'tablet' if _TABLET_UA.search(user_agent) else 'mobile'


def _percentages(counts: dict) -> dict:
    total = sum(counts.values())
    if not total:
        return {}
    return {key: round(count * 100 / total, 1) for key, count in counts.items()}


def _viewer_key(entry):
    """Explicit viewer identity of an entry, None for anonymous clients"""
    details = entry.details or {}
    return details.get('viewerId') or details.get('sessionId')


def summarize_interactions(entries) -> dict:
    """
    Aggregate interaction log entries (any order) into viewer analytics.
    Durations in view_end metadata are milliseconds; the average is reported in seconds.

    Entries without a viewerId/sessionId cannot be matched up, so each
    anonymous view_start counts as one viewer and each anonymous chat_open
    as one engaged viewer.
    """
    entries = sorted(entries, key=lambda e: (e.created_at, e.id))

    viewers = set()
    anonymous_views = 0
    chat_viewers = set()
    anonymous_chats = 0
    durations = []
    quality_counts = {}
    device_counts = {}
    concurrent = peak = 0

    for entry in entries:
        details = entry.details or {}
        action = details.get('action')
        viewer = _viewer_key(entry)

        if action == 'view_start':
            if viewer is None:
                anonymous_views += 1
                first_view = True
            else:
                first_view = viewer not in viewers
                viewers.add(viewer)
            if first_view:
                device = details.get('deviceType') or classify_device(details.get('userAgent'))
                device_counts[device] = device_counts.get(device, 0) + 1
            concurrent += 1
            peak = max(peak, concurrent)
        elif action == 'view_end':
            concurrent = max(0, concurrent - 1)
            duration = details.get('duration')
            if isinstance(duration, (int, float)) and duration >= 0:
                durations.append(duration / 1000)
        elif action == 'chat_open':
            if viewer is None:
                anonymous_chats += 1
            else:
                chat_viewers.add(viewer)

        quality = details.get('quality')
        if quality and action in ('view_start', 'quality_change'):
            quality_counts[quality] = quality_counts.get(quality, 0) + 1

    total = len(viewers) + anonymous_views
    engaged = len(chat_viewers & viewers) + anonymous_chats
    return {
        'totalViewers': total,
        'peakViewers': peak,
        'averageViewDuration': round(sum(durations) / len(durations)) if durations else 0,
        'chatEngagement': min(100, round(engaged * 100 / total, 1)) if total else 0,
        'qualityDistribution': _percentages(quality_counts),
        'deviceTypes': _percentages(device_counts),
    }


def event_analytics(event_id: str) -> dict:
    entries = EventLog.query.filter_by(event_id=event_id, log_type=INTERACTION_LOG_TYPE).all()
    summary = summarize_interactions(entries)
    summary['eventId'] = event_id
    return summary


# =============================================================================
# PERFORMANCE METRICS
# =============================================================================

class PerformanceStats:
    """Running averages of web-vital samples per metric name"""

    def __init__(self):
        self._lock = threading.Lock()
        self._totals = {}
        self._counts = {}
        self._last_updated = None

    def record(self, name: str, value: float) -> bool:
        """Add a sample. Returns True when it exceeds the metric's threshold"""
        with self._lock:
            self._totals[name] = self._totals.get(name, 0.0) + value
            self._counts[name] = self._counts.get(name, 0) + 1
            self._last_updated = datetime.now(timezone.utc)

        threshold = PERFORMANCE_THRESHOLDS.get(name)
        return threshold is not None and value > threshold

    def snapshot(self) -> dict:
        with self._lock:
            averages = {name: self._totals[name] / self._counts[name] for name in self._totals}
            return {
                'averageMetrics': averages,
                'sampleCount': sum(self._counts.values()),
                'lastUpdated': self._last_updated.isoformat() if self._last_updated else None,
            }

    def reset(self):
        with self._lock:
            self._totals.clear()
            self._counts.clear()
            self._last_updated = None


performance_stats = PerformanceStats()
