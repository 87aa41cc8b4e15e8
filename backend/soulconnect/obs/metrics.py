"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"soulconnect_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"soulconnect_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"soulconnect_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"soulconnect_socketio_events_total",
	"Socket.IO events handled per namespace",
	["namespace", "event"],
)

CONNECTIONS_REGISTERED = Gauge(
	"soulconnect_presence_connections",
	"Connections currently held by the presence registry",
)

PRESENCE_CHANGES = Counter(
	"soulconnect_presence_changes_total",
	"Presence transitions broadcast to rooms",
	["state"],
)

CHAT_SEND = Counter(
	"soulconnect_chat_send_total",
	"Chat messages persisted",
	["kind"],
)

CHAT_SEND_FAILURES = Counter(
	"soulconnect_chat_send_failures_total",
	"Chat sends rejected or failed",
	["reason"],
)

BROADCAST_EVENTS = Counter(
	"soulconnect_broadcast_events_total",
	"Events enqueued for room fan-out",
	["event"],
)

BROADCAST_DROPS = Counter(
	"soulconnect_broadcast_drops_total",
	"Fan-out deliveries dropped",
	["reason"],
)

ROOMS_CREATED = Counter(
	"soulconnect_rooms_created_total",
	"Chat rooms created",
	["kind"],
)

PERSONA_REPLIES = Counter(
	"soulconnect_persona_replies_total",
	"Persona replies generated",
	["result"],
)

SWEEPER_DEMOTIONS = Counter(
	"soulconnect_presence_sweeper_demotions_total",
	"Identities demoted to offline by the presence sweeper",
)

MATCH_QUERIES = Counter(
	"soulconnect_match_queries_total",
	"Compatibility match queries",
	["mode"],
)

JOB_RUNS = Counter(
	"soulconnect_job_runs_total",
	"Background job executions",
	["job", "result"],
)

JOB_DURATION = Histogram(
	"soulconnect_job_duration_seconds",
	"Background job duration in seconds",
	["job"],
)

IDENTITY_EVENTS = Counter(
	"soulconnect_identity_events_total",
	"Identity lifecycle events",
	["event"],
)

DEPENDENCY_UP = Gauge(
	"soulconnect_dependency_up",
	"Dependency readiness (1 = ok)",
	["dependency"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def set_registered_connections(count: int) -> None:
	CONNECTIONS_REGISTERED.set(float(count))


def inc_presence_change(state: str) -> None:
	PRESENCE_CHANGES.labels(state=state).inc()


def inc_chat_send(kind: str = "text") -> None:
	CHAT_SEND.labels(kind=kind).inc()


def inc_chat_send_failure(reason: str) -> None:
	CHAT_SEND_FAILURES.labels(reason=reason).inc()


def inc_broadcast(event: str) -> None:
	BROADCAST_EVENTS.labels(event=event).inc()


def inc_broadcast_drop(reason: str) -> None:
	BROADCAST_DROPS.labels(reason=reason).inc()


def inc_room_created(kind: str) -> None:
	ROOMS_CREATED.labels(kind=kind).inc()


def inc_persona_reply(result: str) -> None:
	PERSONA_REPLIES.labels(result=result).inc()


def inc_sweeper_demotions(count: int) -> None:
	if count > 0:
		SWEEPER_DEMOTIONS.inc(count)


def inc_match_query(mode: str) -> None:
	MATCH_QUERIES.labels(mode=mode).inc()


def inc_identity_event(event: str) -> None:
	IDENTITY_EVENTS.labels(event=event).inc()


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	JOB_RUNS.labels(job=name, result=result).inc()
	if duration_seconds is not None:
		JOB_DURATION.labels(job=name).observe(duration_seconds)


def mark_dependency(name: str, ok: bool) -> None:
	DEPENDENCY_UP.labels(dependency=name).set(1.0 if ok else 0.0)
