"""Structured logging.

One JSON object per line. Request-scoped fields (request id, route, user id)
ride along in a ContextVar bound by the HTTP middleware. Anything attached
through ``extra=`` is scrubbed by ``RedactionFilter`` first: true coordinates
and session salts must never reach a log sink.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from nearby.settings import settings

ROOT_LOGGER = "nearby"
REDACTED = "[redacted]"

_log_context: ContextVar[Mapping[str, str]] = ContextVar("nearby_log_context", default={})

# Matched against the underscore-separated parts of a field name:
# "pub_lat" is redacted, "latency_ms" is not.
_SECRET_PARTS = frozenset(
	{
		"lat",
		"lon",
		"lng",
		"latitude",
		"longitude",
		"coord",
		"coords",
		"geo",
		"salt",
		"token",
		"secret",
		"authorization",
		"payload",
	}
)

_CLIP_CHARS = 256
_CLIP_ITEMS = 10

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Merge non-empty `fields` into the current log context; pass the token to `reset_context`."""
	merged = dict(_log_context.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _log_context.set(merged)


def reset_context(token: Token) -> None:
	_log_context.reset(token)


def log_context() -> Mapping[str, str]:
	return _log_context.get()


def is_secret_field(name: str) -> bool:
	return any(part in _SECRET_PARTS for part in name.lower().replace("-", "_").split("_"))


def redact_field(name: str, value: Any) -> Any:
	if is_secret_field(name):
		return REDACTED
	return _clip(value)


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		if len(value) > _CLIP_CHARS:
			return value[:_CLIP_CHARS] + "…"
		return value
	if isinstance(value, Mapping):
		items = list(value.items())
		clipped = {str(key): redact_field(str(key), nested) for key, nested in items[:_CLIP_ITEMS]}
		if len(items) > _CLIP_ITEMS:
			clipped["…"] = f"+{len(items) - _CLIP_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		seq = list(value)
		clipped_seq = [_clip(item) for item in seq[:_CLIP_ITEMS]]
		if len(seq) > _CLIP_ITEMS:
			clipped_seq.append("…")
		return clipped_seq
	return value


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
	return {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}


class RedactionFilter(logging.Filter):
	"""Scrub `extra=` fields in place so every handler sees the redacted record."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		for key, value in extra_fields(record).items():
			setattr(record, key, redact_field(key, value))
		return True


class SamplingFilter(logging.Filter):
	"""Keep a fraction of INFO records; everything else passes."""

	def __init__(self, rate: float) -> None:
		super().__init__()
		self.rate = max(0.0, min(1.0, rate))

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < self.rate


class JsonLogFormatter(logging.Formatter):
	def __init__(self) -> None:
		super().__init__()
		self._static = {
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		entry: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			**self._static,
			**log_context(),
		}
		for key, value in extra_fields(record).items():
			entry.setdefault(key, redact_field(key, value))
		if record.exc_info:
			entry["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(entry, separators=(",", ":"), default=str)


def configure_logging(level: Optional[str] = None, sample_rate: Optional[float] = None) -> logging.Logger:
	handler = logging.StreamHandler()
	handler.addFilter(RedactionFilter())
	handler.addFilter(SamplingFilter(settings.obs_log_sampling_rate_info if sample_rate is None else sample_rate))
	handler.setFormatter(JsonLogFormatter())

	root = logging.getLogger()
	for existing in list(root.handlers):
		root.removeHandler(existing)
	root.addHandler(handler)
	root.setLevel(level or settings.obs_log_level)
	return logging.getLogger(ROOT_LOGGER)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or ROOT_LOGGER)
