import os
from dataclasses import dataclass, field
from typing import Dict, Optional


DEFAULT_OTLP_ENDPOINT = 'http://localhost:4318'

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off', ''}


class ConfigurationError(ValueError):
    """Raised when the environment does not describe a usable configuration"""


def parse_headers(headers_str):
    """Parse OTLP headers from "key1=value1,key2=value2" format"""
    headers = {}
    if headers_str:
        for header in headers_str.split(','):
            if '=' in header:
                key, value = header.split('=', 1)
                headers[key.strip()] = value.strip()
    return headers


def _bool(environ, name, default):
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _number(environ, name, default, cast=int):
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _clamp(value, low, high):
    return max(low, min(value, high))


@dataclass(frozen=True)
class Config:
    queue_url: str
    async_mode: bool = False
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    message_group_id: str = 'a'
    send_interval_seconds: float = 3.0
    receive_interval_seconds: float = 2.0
    receive_max_messages: int = 1
    receive_wait_time_seconds: int = 0
    visibility_timeout: Optional[int] = None
    executor_workers: int = 4
    service_name: str = 'sqs-send-receive'
    service_version: str = '1.0.0'
    observability_config: str = 'otlp'
    otlp_traces_endpoint: str = DEFAULT_OTLP_ENDPOINT + '/v1/traces'
    otlp_metrics_endpoint: str = DEFAULT_OTLP_ENDPOINT + '/v1/metrics'
    otlp_headers: Dict[str, str] = field(default_factory=dict)
    log_level: str = 'INFO'

    @property
    def queue_name(self):
        return self.queue_url.rstrip('/').split('/')[-1]

    @classmethod
    def from_env(cls, environ=None):
        """Build the configuration from environment variables"""
        environ = os.environ if environ is None else environ

        queue_url = environ.get('SQS_QUEUE_URL', '').strip()
        if not queue_url:
            raise ConfigurationError("SQS_QUEUE_URL is required")

        # Signal specific endpoints win over the generic OTLP endpoint
        base_endpoint = environ.get('OTEL_EXPORTER_OTLP_ENDPOINT', DEFAULT_OTLP_ENDPOINT).rstrip('/')
        traces_endpoint = environ.get('OTEL_EXPORTER_OTLP_TRACES_ENDPOINT', base_endpoint + '/v1/traces')
        metrics_endpoint = environ.get('OTEL_EXPORTER_OTLP_METRICS_ENDPOINT', base_endpoint + '/v1/metrics')

        return cls(
            queue_url=queue_url,
            async_mode=_bool(environ, 'SQS_CLIENT_ASYNC', False),
            region_name=environ.get('AWS_REGION') or environ.get('AWS_DEFAULT_REGION') or None,
            endpoint_url=environ.get('AWS_ENDPOINT_URL') or None,
            message_group_id=environ.get('SQS_MESSAGE_GROUP_ID', 'a'),
            send_interval_seconds=_number(environ, 'SEND_INTERVAL_SECONDS', 3.0, float),
            receive_interval_seconds=_number(environ, 'RECEIVE_INTERVAL_SECONDS', 2.0, float),
            receive_max_messages=_clamp(_number(environ, 'RECEIVE_MAX_MESSAGES', 1), 1, 10),
            receive_wait_time_seconds=_clamp(_number(environ, 'RECEIVE_WAIT_TIME_SECONDS', 0), 0, 20),
            visibility_timeout=_number(environ, 'SQS_VISIBILITY_TIMEOUT', None),
            executor_workers=max(1, _number(environ, 'EXECUTOR_WORKERS', 4)),
            service_name=environ.get('OTEL_SERVICE_NAME', 'sqs-send-receive'),
            service_version=environ.get('OTEL_SERVICE_VERSION', '1.0.0'),
            observability_config=environ.get('OBSERVABILITY_CONFIG', 'otlp').strip().lower(),
            otlp_traces_endpoint=traces_endpoint,
            otlp_metrics_endpoint=metrics_endpoint,
            otlp_headers=parse_headers(environ.get('OTEL_EXPORTER_OTLP_HEADERS', '')),
            log_level=environ.get('LOG_LEVEL', 'INFO').upper(),
        )
