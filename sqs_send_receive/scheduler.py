import logging
import threading

from opentelemetry import trace

from . import mdc

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Invoke fn every interval_seconds on a dedicated thread.

    The delay is measured from the end of one invocation to the start of the
    next, so a slow invocation pushes the following tick back instead of
    overlapping with it.
    """

    def __init__(self, identity, interval_seconds, fn):
        self.identity = identity
        self.interval_seconds = interval_seconds
        self.fn = fn
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.identity, daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def _run(self):
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_seconds)

    def run_once(self):
        """One invocation: fresh root span, MDC bound to it, failures logged"""
        tracer = trace.get_tracer(__name__)
        with mdc.cleared():
            with tracer.start_as_current_span(self.identity, attributes={"job.identity": self.identity}):
                mdc.bind_current_span()
                try:
                    self.fn()
                except Exception as e:
                    logger.error(f"Scheduled job {self.identity} failed: {e}", exc_info=True)


class Scheduler:
    def __init__(self):
        self.jobs = {}

    def add(self, identity, interval_seconds, fn):
        if identity in self.jobs:
            raise ValueError(f"job {identity!r} already registered")
        job = PeriodicJob(identity, interval_seconds, fn)
        self.jobs[identity] = job
        return job

    def start(self):
        for job in self.jobs.values():
            logger.info(f"Starting job {job.identity} every {job.interval_seconds}s")
            job.start()

    def stop(self, timeout=5):
        for job in self.jobs.values():
            job._stop.set()
        for job in self.jobs.values():
            job.stop(timeout=timeout)
