"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram, Summary


REQUEST_COUNTER = Counter(
	"nearby_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"nearby_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

LOCATION_RECORDS = Counter(
	"nearby_location_records_total",
	"Raw location writes accepted",
)

LOCATION_PUBLISHES = Counter(
	"nearby_location_publishes_total",
	"Publish attempts by outcome",
	["result"],
)

CROSSED_DECISIONS = Counter(
	"nearby_crossed_paths_decisions_total",
	"Crossed-paths detector outcomes",
	["reason"],
)

CROSSINGS_RECORDED = Counter(
	"nearby_crossings_recorded_total",
	"Pair crossings counted by the ledger",
)

CROSSING_UNLOCKS = Counter(
	"nearby_crossing_unlocks_total",
	"Pairs that reached the crossing unlock threshold",
)

NEARBY_QUERIES = Counter(
	"nearby_queries_total",
	"Nearby candidate list builds",
	["zoom_bucket"],
)

NEARBY_RESULTS = Summary(
	"nearby_results_avg",
	"Nearby result sizes after all filters",
)

NEARBY_SKIPS = Counter(
	"nearby_candidate_skips_total",
	"Candidates removed from nearby lists",
	["reason"],
)

FRESHNESS_TIERS = Counter(
	"nearby_freshness_tiers_total",
	"Freshness tiers assigned to candidates",
	["tier"],
)

NOTIFICATIONS = Counter(
	"nearby_notifications_total",
	"Notifications handed to the delivery stream",
	["kind", "result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_location_record() -> None:
	LOCATION_RECORDS.inc()


def inc_publish(result: str) -> None:
	LOCATION_PUBLISHES.labels(result=result).inc()


def inc_crossed_decision(reason: str) -> None:
	CROSSED_DECISIONS.labels(reason=reason).inc()


def inc_crossings(count: int = 1) -> None:
	if count > 0:
		CROSSINGS_RECORDED.inc(count)


def inc_crossing_unlock() -> None:
	CROSSING_UNLOCKS.inc()


def observe_nearby(zoom_bucket: int, result_count: int) -> None:
	NEARBY_QUERIES.labels(zoom_bucket=str(zoom_bucket)).inc()
	NEARBY_RESULTS.observe(result_count)


def inc_nearby_skip(reason: str) -> None:
	NEARBY_SKIPS.labels(reason=reason).inc()


def inc_freshness(tier: str) -> None:
	FRESHNESS_TIERS.labels(tier=tier).inc()


def inc_notification(kind: str, result: str) -> None:
	NOTIFICATIONS.labels(kind=kind, result=result).inc()
