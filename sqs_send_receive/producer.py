import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List

from . import mdc
from .telemetry import messages_sent
from .trace_context import TraceContext
from .transport import SQS_MAX_BATCH_ENTRIES

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    message_ids: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


class Producer:
    """Sends messages carrying the sender's traceId/spanId as message attributes"""

    def __init__(self, transport, group_id='a'):
        self.transport = transport
        self.group_id = group_id

    def _message_attributes(self, trace_context):
        if trace_context is None:
            trace_context = TraceContext.current()
        if trace_context is None:
            logger.debug("No active span, sending without trace attributes")
            return {}
        return trace_context.to_message_attributes()

    def _fifo_ids(self, group_id=None):
        # FIFO queues need a group, and a dedup id unless content based dedup is on
        if not self.transport.is_fifo:
            return None, None
        return group_id or self.group_id, uuid.uuid4().hex

    def _send_now(self, body, attributes):
        group_id, deduplication_id = self._fifo_ids()
        message_id = self.transport.send_message(
            body, attributes, group_id=group_id, deduplication_id=deduplication_id)
        messages_sent.add(1)
        return message_id

    def send(self, body, trace_context=None):
        """Send one message synchronously and return its MessageId"""
        message_id = self._send_now(body, self._message_attributes(trace_context))
        logger.info(f"message sent\t\tID={message_id}")
        return message_id

    def send_async(self, body, trace_context=None):
        """
        Send one message on the transport pool.

        Attributes are resolved on the calling thread so both modes send the
        same content. The completion callback logs under the caller's MDC,
        not whatever the worker thread happens to carry.
        """
        attributes = self._message_attributes(trace_context)
        snapshot = mdc.capture()
        future = self.transport.submit(self._send_now, body, attributes)
        future.add_done_callback(mdc.wrap(self._log_sent, snapshot))
        return future

    @staticmethod
    def _log_sent(future):
        if future.cancelled():
            logger.warning("message send cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error(f"message send failed: {error}")
            return
        logger.info(f"message sent\t\tID={future.result()}")

    def send_batch(self, bodies, group_id=None, trace_context=None):
        """Send bodies in chunks of at most 10; per-entry failures are returned, not raised"""
        attributes = self._message_attributes(trace_context)
        result = BatchResult()
        start = time.monotonic()

        entries = []
        for body in bodies:
            entry_id = str(uuid.uuid4())
            entry = {'Id': entry_id, 'MessageBody': body}
            if attributes:
                entry['MessageAttributes'] = attributes
            entry_group_id, deduplication_id = self._fifo_ids(group_id)
            if entry_group_id is not None:
                entry['MessageGroupId'] = entry_group_id
                entry['MessageDeduplicationId'] = deduplication_id
            entries.append(entry)

            if len(entries) == SQS_MAX_BATCH_ENTRIES:
                self._send_chunk(entries, result)
                entries = []

        if entries:
            self._send_chunk(entries, result)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"all messages sent in: {elapsed_ms} ms")
        return result

    def _send_chunk(self, entries, result):
        start_send = time.monotonic()
        response = self.transport.send_message_batch(entries)

        # Keep the caller's order, SQS does not guarantee it in the response
        ids_by_entry = {item['Id']: item['MessageId'] for item in response['Successful']}
        result.message_ids.extend(ids_by_entry[e['Id']] for e in entries if e['Id'] in ids_by_entry)
        result.failed.extend(response['Failed'])
        messages_sent.add(len(ids_by_entry))

        for failure in response['Failed']:
            logger.warning(f"batch entry {failure.get('Id')} failed: "
                           f"{failure.get('Code')} {failure.get('Message', '')}")
        elapsed_ms = int((time.monotonic() - start_send) * 1000)
        logger.info(f"{len(entries)} messages sent in: {elapsed_ms} ms")
