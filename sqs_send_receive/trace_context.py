import re
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.trace import (
    Link,
    NonRecordingSpan,
    SpanContext,
    SpanKind,
    TraceFlags,
    TraceState,
    format_span_id,
    format_trace_id,
)

from .mdc import SPAN_ID_KEY, TRACE_ID_KEY

STRING_DATA_TYPE = 'String'
TRACE_ATTRIBUTE_NAMES = (TRACE_ID_KEY, SPAN_ID_KEY)

_TRACE_ID_RE = re.compile('[0-9a-f]{32}')
_SPAN_ID_RE = re.compile('[0-9a-f]{16}')


@dataclass(frozen=True)
class TraceContext:
    """Trace and span id of the operation that produced a message"""

    trace_id: str
    span_id: str

    @classmethod
    def current(cls):
        """TraceContext of the active span, or None when no span is recording a trace"""
        span_context = trace.get_current_span().get_span_context()
        if not span_context.is_valid:
            return None
        return cls(
            trace_id=format_trace_id(span_context.trace_id),
            span_id=format_span_id(span_context.span_id),
        )

    @classmethod
    def from_attributes(cls, attributes):
        """Read the pair back from flattened message attributes; None when absent"""
        trace_id = attributes.get(TRACE_ID_KEY)
        span_id = attributes.get(SPAN_ID_KEY)
        if not trace_id or not span_id:
            return None
        return cls(trace_id=trace_id, span_id=span_id)

    def to_message_attributes(self):
        return {
            TRACE_ID_KEY: {'DataType': STRING_DATA_TYPE, 'StringValue': self.trace_id},
            SPAN_ID_KEY: {'DataType': STRING_DATA_TYPE, 'StringValue': self.span_id},
        }

    def to_span_context(self):
        """Remote, sampled SpanContext for this pair; ValueError when the ids are malformed"""
        if not _TRACE_ID_RE.fullmatch(self.trace_id) or not _SPAN_ID_RE.fullmatch(self.span_id):
            raise ValueError(f"malformed trace context {self.trace_id!r}/{self.span_id!r}")
        span_context = SpanContext(
            trace_id=int(self.trace_id, 16),
            span_id=int(self.span_id, 16),
            is_remote=True,
            trace_flags=TraceFlags(TraceFlags.SAMPLED),
            trace_state=TraceState(),
        )
        if not span_context.is_valid:
            raise ValueError(f"invalid trace context {self.trace_id!r}/{self.span_id!r}")
        return span_context


def start_linked_span(trace_context, name='Sqs.ReceiveMessage', attributes=None):
    """
    Start a CONSUMER span continuing the remote producer span.

    The producer's span may have ended long ago, so the span is parented on a
    non-recording wrapper of the remote context and also carries a link to it.
    The caller owns ending the span.
    """
    remote_context = trace_context.to_span_context()
    parent = trace.set_span_in_context(NonRecordingSpan(remote_context))
    tracer = trace.get_tracer(__name__)
    return tracer.start_span(
        name,
        context=parent,
        kind=SpanKind.CONSUMER,
        links=[Link(remote_context)],
        attributes=attributes,
    )
