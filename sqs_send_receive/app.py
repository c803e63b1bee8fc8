import logging
import signal
import threading
import uuid

from . import mdc
from .config import Config
from .consumer import Consumer
from .producer import Producer
from .scheduler import Scheduler
from .telemetry import configure_telemetry, shutdown_telemetry
from .transport import SqsTransport, create_sqs_client

logger = logging.getLogger(__name__)

SEND_JOB = 'send-job'
RECEIVE_JOB = 'receive-job'


class SqsSendReceive:
    """The two scheduled jobs; sync or async submission is picked by a flag"""

    def __init__(self, producer, consumer, async_mode=False, max_messages=1):
        self.producer = producer
        self.consumer = consumer
        self.async_mode = async_mode
        self.max_messages = max_messages

    def send(self):
        body = "message" + str(uuid.uuid4())
        if self.async_mode:
            return self.producer.send_async(body)
        return self.producer.send(body)

    def receive(self):
        if self.async_mode:
            return self.consumer.receive_async(self.max_messages)
        return self.consumer.receive(self.max_messages)


def build_app(config, client=None, handler=None, post_receive=None):
    """Wire transport, producer and consumer for the configured queue"""
    transport = SqsTransport(
        client or create_sqs_client(config),
        config.queue_url,
        max_workers=config.executor_workers,
    )
    producer = Producer(transport, group_id=config.message_group_id)
    consumer = Consumer(
        transport,
        handler=handler,
        post_receive=post_receive,
        wait_time_seconds=config.receive_wait_time_seconds,
        visibility_timeout=config.visibility_timeout,
    )
    return SqsSendReceive(
        producer,
        consumer,
        async_mode=config.async_mode,
        max_messages=config.receive_max_messages,
    )


def schedule(app, config, scheduler=None):
    scheduler = scheduler or Scheduler()
    scheduler.add(SEND_JOB, config.send_interval_seconds, app.send)
    scheduler.add(RECEIVE_JOB, config.receive_interval_seconds, app.receive)
    return scheduler


def main(environ=None):
    config = Config.from_env(environ)
    mdc.configure_logging(config.log_level)
    configure_telemetry(config)

    app = build_app(config)
    scheduler = schedule(app, config)

    stopped = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stopped.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    mode = 'async' if config.async_mode else 'sync'
    logger.info(f"Sending to and receiving from {config.queue_url} ({mode})")
    scheduler.start()
    try:
        stopped.wait()
    finally:
        scheduler.stop()
        app.producer.transport.close()
        shutdown_telemetry()
    return 0
