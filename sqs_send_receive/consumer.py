import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from . import mdc
from .telemetry import messages_deleted, messages_failed, messages_received, with_span
from .trace_context import TRACE_ATTRIBUTE_NAMES, TraceContext, start_linked_span
from .transport import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedResult:
    message: Message
    trace_context: Optional[TraceContext] = None
    acknowledged: bool = False
    error: Optional[BaseException] = None

    @property
    def ok(self):
        return self.error is None


def log_message(message):
    """Default business logic: log the receipt and the SQS system attributes"""
    logger.info(f"message received\tID={message.message_id}")
    system_attributes = ', '.join(f'{key}="{value}"' for key, value in message.system_attributes.items())
    logger.info(f"message system attributes: {system_attributes}")


def log_post_receive():
    logger.info("postReceive")


class Consumer:
    """
    Receives messages, restores the producer's trace for each one and deletes
    a message only after its handler returned normally.

    Messages of one batch are handled in the order SQS returned them and the
    batch stops at the first failure, so a FIFO group never gets ahead of a
    message that is still waiting for redelivery.
    """

    def __init__(self, transport, handler=None, post_receive=None,
                 wait_time_seconds=0, visibility_timeout=None):
        self.transport = transport
        self.handler = handler or log_message
        self.post_receive = post_receive or log_post_receive
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout

    def _fetch(self, max_messages, wait_time_seconds=None):
        if wait_time_seconds is None:
            wait_time_seconds = self.wait_time_seconds
        messages = self.transport.receive_messages(
            max_messages,
            TRACE_ATTRIBUTE_NAMES,
            wait_time_seconds=wait_time_seconds,
            visibility_timeout=self.visibility_timeout,
        )
        messages_received.add(len(messages))
        return messages

    def receive(self, max_messages=1):
        """Receive up to max_messages, process them, then run the post-receive hook once"""
        results = self.process(self._fetch(max_messages))
        self._run_post_receive()
        return results

    def receive_async(self, max_messages=1):
        """
        Fetch on the transport pool and process in the completion callback.

        The callback runs on a pool thread, so the caller's snapshot is put
        back before any message is touched; the post-receive hook then sees
        the invocation's context just like in the synchronous mode.
        """
        snapshot = mdc.capture()
        result = Future()

        def _continue(fetched):
            with mdc.restored(snapshot):
                try:
                    results = self.process(fetched.result())
                    self._run_post_receive()
                except Exception as exc:
                    logger.error(f"Error receiving SQS messages: {exc}", exc_info=True)
                    result.set_exception(exc)
                else:
                    result.set_result(results)

        self.transport.submit(self._fetch, max_messages).add_done_callback(_continue)
        return result

    def process(self, messages):
        results = []
        for index, message in enumerate(messages):
            processed = self._process_one(message)
            results.append(processed)
            if not processed.ok:
                skipped = len(messages) - index - 1
                if skipped:
                    group = f" in group {message.group_id}" if message.group_id else ""
                    logger.warning(f"stopping batch after failed message ID={message.message_id}, "
                                   f"{skipped} message(s){group} left for redelivery")
                break
        return results

    def _process_one(self, message):
        trace_context = TraceContext.from_attributes(message.attributes)
        span = None
        if trace_context is not None:
            try:
                span = start_linked_span(trace_context, attributes={
                    "messaging.system": "aws_sqs",
                    "messaging.operation": "process",
                    "messaging.message.id": message.message_id,
                    "messaging.destination.name": self.transport.queue_url.split('/')[-1],
                })
            except ValueError as e:
                logger.warning(f"Ignoring trace context of message ID={message.message_id}: {e}")
                trace_context = None
        else:
            logger.debug(f"No trace context found in message ID={message.message_id}")

        if span is None:
            # No propagated context: keep whatever the invocation already has
            return self._handle(message, trace_context)

        # Restore the remote trace; span and MDC are released on every exit path
        with trace.use_span(span, end_on_exit=True), mdc.span_bound():
            result = self._handle(message, trace_context)
            if not result.ok:
                span.set_status(Status(StatusCode.ERROR, str(result.error)))
            return result

    def _handle(self, message, trace_context):
        try:
            self.handler(message)
        except Exception as e:
            messages_failed.add(1)
            logger.error(f"Error processing message ID={message.message_id}: {e}", exc_info=True)
            return ProcessedResult(message=message, trace_context=trace_context, error=e)

        self._delete(message)
        return ProcessedResult(message=message, trace_context=trace_context, acknowledged=True)

    @with_span("deleteMessage", kind=SpanKind.CLIENT)
    def _delete(self, message):
        self.transport.delete_message(message.receipt_handle)
        messages_deleted.add(1)
        logger.debug(f"message deleted\tID={message.message_id}")

    @with_span("postReceive")
    def _run_post_receive(self):
        self.post_receive()

    def drain(self, max_messages=10, long_poll_seconds=3, max_empty_polls=1, stop_event=None):
        """
        Receive until the queue stays empty.

        Short polls while messages keep coming; after the first empty answer
        switch to long polling and stop after max_empty_polls empty long polls.
        """
        results = []
        long_polling = False
        empty_polls = 0

        while stop_event is None or not stop_event.is_set():
            wait_time_seconds = long_poll_seconds if long_polling else 0
            messages = self._fetch(max_messages, wait_time_seconds=wait_time_seconds)
            logger.info(f"Received {len(messages)} messages")

            if not messages:
                if long_polling:
                    empty_polls += 1
                    if empty_polls >= max_empty_polls:
                        logger.info("no further messages were received. Terminating.")
                        break
                else:
                    logger.info("no further messages were received. Switching to long polling")
                    long_polling = True
                continue

            empty_polls = 0
            batch = self.process(messages)
            results.extend(batch)
            if batch and not batch[-1].ok:
                logger.warning("drain stopped at a failed message")
                break

        return results
