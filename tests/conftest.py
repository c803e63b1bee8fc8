"""
Shared pytest fixtures.

- aws_credentials: fake credentials so boto3 never reaches a real account
- span_exporter: in-memory OpenTelemetry exporter, cleared around each test
- sqs_client / queue_url / fifo_queue_url: moto backed SQS
- fake_sqs: deterministic stand-in client for ordering and redelivery cases
"""

import uuid

import boto3
import pytest
from moto import mock_aws
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from sqs_send_receive import mdc
from sqs_send_receive.transport import SqsTransport
from tests.fixtures import FakeSqsClient

# The global tracer provider can only be set once per process
_exporter = InMemorySpanExporter()
_provider = TracerProvider()
_provider.add_span_processor(SimpleSpanProcessor(_exporter))
trace.set_tracer_provider(_provider)

REGION = "us-east-1"


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture(autouse=True)
def empty_mdc():
    """Every test starts and ends with an empty MDC"""
    token = mdc.clear()
    yield
    mdc.release(token)


@pytest.fixture
def span_exporter():
    _exporter.clear()
    yield _exporter
    _exporter.clear()


@pytest.fixture
def tracer():
    return trace.get_tracer("tests")


@pytest.fixture
def sqs_client():
    with mock_aws():
        yield boto3.client("sqs", region_name=REGION)


@pytest.fixture
def queue_url(sqs_client):
    return sqs_client.create_queue(QueueName=f"test-queue-{uuid.uuid4()}")["QueueUrl"]


@pytest.fixture
def redelivery_queue_url(sqs_client):
    """Queue whose messages become visible again right after a receive"""
    return sqs_client.create_queue(
        QueueName=f"test-redelivery-{uuid.uuid4()}",
        Attributes={"VisibilityTimeout": "0"},
    )["QueueUrl"]


@pytest.fixture
def fifo_queue_url(sqs_client):
    return sqs_client.create_queue(
        QueueName=f"test-queue-{uuid.uuid4()}.fifo",
        Attributes={"FifoQueue": "true"},
    )["QueueUrl"]


@pytest.fixture
def transport(sqs_client, queue_url):
    transport = SqsTransport(sqs_client, queue_url)
    yield transport
    transport.close()


@pytest.fixture
def fake_sqs():
    return FakeSqsClient()


@pytest.fixture
def fake_transport(fake_sqs):
    transport = SqsTransport(fake_sqs, "https://sqs.us-east-1.amazonaws.com/123456789012/orders.fifo")
    yield transport
    transport.close()
