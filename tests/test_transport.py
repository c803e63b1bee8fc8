import threading
import time
from concurrent.futures import ThreadPoolExecutor

from sqs_send_receive import mdc, transport as transport_module
from sqs_send_receive.transport import Message, SqsTransport
from tests.fixtures import FakeSqsClient

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/orders.fifo"


def test_concurrent_first_use_builds_one_executor(monkeypatch):
    def slow_executor(*args, **kwargs):
        time.sleep(0.05)
        return ThreadPoolExecutor(*args, **kwargs)

    monkeypatch.setattr(transport_module, "ThreadPoolExecutor", slow_executor)
    transport = SqsTransport(FakeSqsClient(), QUEUE_URL)
    start = threading.Barrier(2)
    seen = []

    def first_use():
        start.wait()
        seen.append(transport.executor)

    threads = [threading.Thread(target=first_use) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(seen) == 2
    assert seen[0] is seen[1]
    transport.close()
    assert seen[0]._shutdown


def test_close_leaves_a_borrowed_executor_running():
    executor = ThreadPoolExecutor(max_workers=1)
    transport = SqsTransport(FakeSqsClient(), QUEUE_URL, executor=executor)

    transport.close()

    assert transport.executor is executor
    assert executor.submit(lambda: 42).result(timeout=5) == 42
    executor.shutdown()


def test_submit_runs_under_caller_mdc():
    transport = SqsTransport(FakeSqsClient(), QUEUE_URL)

    with mdc.bound(traceId="caller-trace"):
        future = transport.submit(mdc.get, "traceId")

    assert future.result(timeout=5) == "caller-trace"
    transport.close()


def test_message_from_sqs_flattens_string_attributes():
    message = Message.from_sqs({
        "MessageId": "m-1",
        "ReceiptHandle": "r-1",
        "Body": "hello",
        "MessageAttributes": {
            "traceId": {"DataType": "String", "StringValue": "abc"},
            "blob": {"DataType": "Binary", "BinaryValue": b"\x00"},
        },
        "Attributes": {"MessageGroupId": "a"},
    })

    assert message.attributes == {"traceId": "abc"}
    assert message.group_id == "a"
