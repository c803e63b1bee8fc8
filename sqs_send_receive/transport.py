"""Thin wrapper around the boto3 SQS client, bound to one queue."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict

import boto3
from botocore.config import Config as BotoConfig

from . import mdc

logger = logging.getLogger(__name__)

SQS_MAX_BATCH_ENTRIES = 10


def create_sqs_client(config):
    """SQS client for the configured region/endpoint (LocalStack when AWS_ENDPOINT_URL is set)"""
    sqs_config = {
        'config': BotoConfig(
            retries={'max_attempts': 6},
            read_timeout=70,  # > 20s long-poll
            connect_timeout=3,
        ),
    }
    if config.region_name:
        sqs_config['region_name'] = config.region_name
    if config.endpoint_url:
        sqs_config['endpoint_url'] = config.endpoint_url
        logger.info(f"Using SQS endpoint: {config.endpoint_url}")
    return boto3.client('sqs', **sqs_config)


@dataclass(frozen=True)
class Message:
    message_id: str
    body: str
    receipt_handle: str
    attributes: Dict[str, str] = field(default_factory=dict)
    system_attributes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_sqs(cls, raw):
        """Build a Message from a ReceiveMessage entry, flattening String/Number attributes"""
        attributes = {}
        for name, value in (raw.get('MessageAttributes') or {}).items():
            if 'StringValue' in value:
                attributes[name] = value['StringValue']
        return cls(
            message_id=raw['MessageId'],
            body=raw.get('Body', ''),
            receipt_handle=raw['ReceiptHandle'],
            attributes=attributes,
            system_attributes=dict(raw.get('Attributes') or {}),
        )

    @property
    def group_id(self):
        return self.system_attributes.get('MessageGroupId')


class SqsTransport:
    """Send, receive and delete on one queue; errors from botocore are not caught here"""

    def __init__(self, client, queue_url, executor=None, max_workers=4):
        self.client = client
        self.queue_url = queue_url
        self._executor = executor
        self._owns_executor = executor is None
        self._max_workers = max_workers
        self._executor_lock = threading.Lock()

    @property
    def is_fifo(self):
        return self.queue_url.endswith('.fifo')

    @property
    def executor(self):
        # Send and receive jobs may reach the first submit at the same time
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix='sqs-async')
            return self._executor

    def send_message(self, body, attributes, group_id=None, deduplication_id=None):
        params = {
            'QueueUrl': self.queue_url,
            'MessageBody': body,
        }
        if attributes:
            params['MessageAttributes'] = attributes
        if group_id is not None:
            params['MessageGroupId'] = group_id
        if deduplication_id is not None:
            params['MessageDeduplicationId'] = deduplication_id
        response = self.client.send_message(**params)
        return response['MessageId']

    def send_message_batch(self, entries):
        response = self.client.send_message_batch(QueueUrl=self.queue_url, Entries=list(entries))
        return {
            'Successful': response.get('Successful', []),
            'Failed': response.get('Failed', []),
        }

    def receive_messages(self, max_count, attribute_names, wait_time_seconds=0, visibility_timeout=None):
        params = {
            'QueueUrl': self.queue_url,
            'MaxNumberOfMessages': max_count,
            'WaitTimeSeconds': wait_time_seconds,
            'AttributeNames': ['All'],
        }
        # Message attributes are opt-in; without names SQS returns none
        if attribute_names:
            params['MessageAttributeNames'] = list(attribute_names)
        if visibility_timeout is not None:
            params['VisibilityTimeout'] = visibility_timeout
        response = self.client.receive_message(**params)
        return [Message.from_sqs(raw) for raw in response.get('Messages', [])]

    def delete_message(self, receipt_handle):
        self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)

    def submit(self, fn, *args, **kwargs):
        """Run fn on the transport pool under the caller's MDC and trace context"""
        return self.executor.submit(mdc.wrap(fn), *args, **kwargs)

    def close(self, wait=True):
        if not self._owns_executor:
            return
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
