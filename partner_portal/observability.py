from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    # Attributes every LogRecord carries; anything else arrived through ``extra``.
    _base_keys = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._http_request_total: Dict[tuple[str, str, str], int] = {}
            self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}
            self._domain_event_emitted_total: Dict[str, int] = {}
            self._app_error_total: Dict[str, int] = {}
            self._tender_transition_total: Dict[tuple[str, str], int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))
        with self._lock:
            self._requests_total += 1
            if int(status_code) >= 400:
                self._errors_total += 1
            key = (method_key, route_key, status_key)
            self._http_request_total[key] = int(self._http_request_total.get(key, 0)) + 1
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_domain_event_emitted(self, event_type: str) -> None:
        key = str(event_type or "unknown").strip() or "unknown"
        with self._lock:
            self._domain_event_emitted_total[key] = int(self._domain_event_emitted_total.get(key, 0)) + 1

    def observe_app_error(self, code: str) -> None:
        key = str(code or "unknown").strip() or "unknown"
        with self._lock:
            self._app_error_total[key] = int(self._app_error_total.get(key, 0)) + 1

    def observe_tender_transition(self, entity: str, to_status: str) -> None:
        key = (str(entity or "unknown"), str(to_status or "unknown"))
        with self._lock:
            self._tender_transition_total[key] = int(self._tender_transition_total.get(key, 0)) + 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "requests_total": self._requests_total,
                "errors_total": self._errors_total,
                "domain_events": dict(self._domain_event_emitted_total),
                "app_errors": dict(self._app_error_total),
                "transitions": {f"{entity}:{status}": count for (entity, status), count in self._tender_transition_total.items()},
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": [
                    {"method": method, "route": route, "status": status, "value": value}
                    for (method, route, status), value in sorted(self._http_request_total.items())
                ],
                "http_request_duration_ms": {
                    key: {"count": state["count"], "sum": state["sum"], "buckets": dict(state["buckets"])}
                    for key, state in sorted(self._http_request_duration_ms.items())
                },
                "domain_event_emitted_total": dict(sorted(self._domain_event_emitted_total.items())),
                "app_error_total": dict(sorted(self._app_error_total.items())),
                "tender_transition_total": dict(sorted(self._tender_transition_total.items())),
            }


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_app_error(code: str) -> None:
    _METRICS.observe_app_error(code)


def observe_tender_transition(entity: str, to_status: str) -> None:
    _METRICS.observe_tender_transition(entity, to_status)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def prometheus_metrics_text() -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for sample in snapshot["http_request_total"]:
        lines.append(
            _prom_line(
                "http_request_total",
                int(sample["value"]),
                labels={"method": sample["method"], "route": sample["route"], "status": sample["status"]},
            )
        )

    lines.append("# HELP http_request_duration_ms HTTP request latency in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for (method, route), state in snapshot["http_request_duration_ms"].items():
        for bucket, count in state["buckets"].items():
            lines.append(
                _prom_line(
                    "http_request_duration_ms_bucket",
                    int(count),
                    labels={"method": method, "route": route, "le": bucket},
                )
            )
        lines.append(_prom_line("http_request_duration_ms_sum", float(state["sum"]), labels={"method": method, "route": route}))
        lines.append(_prom_line("http_request_duration_ms_count", int(state["count"]), labels={"method": method, "route": route}))

    lines.append("# HELP domain_event_emitted_total Domain events published by type.")
    lines.append("# TYPE domain_event_emitted_total counter")
    for event_type, value in snapshot["domain_event_emitted_total"].items():
        lines.append(_prom_line("domain_event_emitted_total", int(value), labels={"event_type": event_type}))

    lines.append("# HELP app_error_total Rejected operations by error code.")
    lines.append("# TYPE app_error_total counter")
    for code, value in snapshot["app_error_total"].items():
        lines.append(_prom_line("app_error_total", int(value), labels={"code": code}))

    lines.append("# HELP tender_transition_total Applied tender and response transitions.")
    lines.append("# TYPE tender_transition_total counter")
    for (entity, status), value in snapshot["tender_transition_total"].items():
        lines.append(_prom_line("tender_transition_total", int(value), labels={"entity": entity, "to_status": status}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
