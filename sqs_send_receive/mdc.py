"""
Mapped diagnostic context (MDC) for log lines and its propagation across
thread hops.

The MDC is an immutable mapping stored in a context variable, so every thread
(and every asyncio task) sees its own copy. Code that hands work to another
thread captures a snapshot on the calling side and restores it on the other:

    snapshot = mdc.capture()
    executor.submit(mdc.wrap(work, snapshot))

`restore` returns an undo token; `release` puts back whatever was active
right before the matching `restore`. Pairs must nest like a stack.
"""

import contextvars
import functools
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import format_span_id, format_trace_id

TRACE_ID_KEY = 'traceId'
SPAN_ID_KEY = 'spanId'

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] traceId=%(traceId)s spanId=%(spanId)s %(message)s'

_EMPTY = MappingProxyType({})
_mdc = contextvars.ContextVar('mdc', default=_EMPTY)


@dataclass(frozen=True)
class Snapshot:
    values: Mapping[str, str]
    otel_context: Any


@dataclass(frozen=True)
class UndoToken:
    mdc_token: contextvars.Token
    otel_token: Any


def get(key, default=None):
    return _mdc.get().get(key, default)


def get_copy_of_context_map():
    return dict(_mdc.get())


def put(key, value):
    values = dict(_mdc.get())
    values[key] = value
    _mdc.set(MappingProxyType(values))


def remove(key):
    values = dict(_mdc.get())
    values.pop(key, None)
    _mdc.set(MappingProxyType(values))


def capture():
    """Take a snapshot of the MDC and the active OpenTelemetry context"""
    return Snapshot(values=_mdc.get(), otel_context=otel_context.get_current())


def restore(snapshot):
    """Install a snapshot for the current thread and return its undo token"""
    mdc_token = _mdc.set(MappingProxyType(dict(snapshot.values)))
    otel_token = otel_context.attach(snapshot.otel_context)
    return UndoToken(mdc_token=mdc_token, otel_token=otel_token)


def clear():
    """Install an empty MDC and an empty OpenTelemetry context"""
    mdc_token = _mdc.set(_EMPTY)
    otel_token = otel_context.attach(otel_context.Context())
    return UndoToken(mdc_token=mdc_token, otel_token=otel_token)


def release(token):
    """Reinstate the context that was active before the matching restore/clear"""
    otel_context.detach(token.otel_token)
    _mdc.reset(token.mdc_token)


@contextmanager
def restored(snapshot):
    token = restore(snapshot)
    try:
        yield
    finally:
        release(token)


@contextmanager
def cleared():
    token = clear()
    try:
        yield
    finally:
        release(token)


@contextmanager
def bound(values=None, **kwargs):
    """Merge values into the MDC for the duration of the block"""
    merged = dict(_mdc.get())
    merged.update(values or {})
    merged.update(kwargs)
    token = _mdc.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _mdc.reset(token)


def _span_values(span):
    span_context = span.get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        TRACE_ID_KEY: format_trace_id(span_context.trace_id),
        SPAN_ID_KEY: format_span_id(span_context.span_id),
    }


def bind_current_span():
    """Copy traceId/spanId of the current span into the MDC"""
    for key, value in _span_values(trace.get_current_span()).items():
        put(key, value)


@contextmanager
def span_bound():
    """Bind traceId/spanId of the current span until the block exits"""
    with bound(_span_values(trace.get_current_span())):
        yield


def wrap(fn, snapshot=None):
    """Return a callable that runs fn under the given (or current) snapshot"""
    snapshot = capture() if snapshot is None else snapshot

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        with restored(snapshot):
            return fn(*args, **kwargs)

    return wrapper


class MdcFilter(logging.Filter):
    """Stamp the MDC of the logging thread on every record"""

    def filter(self, record):
        values = _mdc.get()
        record.traceId = values.get(TRACE_ID_KEY, '')
        record.spanId = values.get(SPAN_ID_KEY, '')
        record.mdc = dict(values)
        return True


def configure_logging(level='INFO'):
    """Configure the root logger to print MDC fields on every line"""
    logger = logging.getLogger()
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(MdcFilter())

    if logger.handlers:
        logger.handlers = []
    logger.addHandler(handler)
    return logger
