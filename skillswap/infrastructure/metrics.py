from __future__ import annotations

from prometheus_client import Counter

FEED_EVENTS = Counter("skillswap_feed_events_total", "Change-feed events delivered to handlers", ["table", "type"])
FEED_RECONNECTS = Counter("skillswap_feed_reconnects_total", "Change-feed subscriptions re-established after a drop")
UNREAD_DRIFT = Counter("skillswap_unread_drift_total", "Unread counter resyncs that found a discrepancy")
STALE_RESULTS = Counter("skillswap_stale_results_total", "Reload or patch results discarded as stale", ["kind"])
