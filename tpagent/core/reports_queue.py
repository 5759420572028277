"""
Asynchronous reports delivery.

Reports are submitted from driver threads and transmitted to the Agent by a
single background worker, so a slow or unavailable Agent never blocks the test
under automation.

Usage:
    queue = ReportsQueue(http_client, session_id)
    queue.start()

    queue.submit("/api/development/report/step", StepReport("Logged in"))

    # On shutdown
    queue.stop()
    if not queue.join(timeout=10):
        queue.cancel()
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional

import httpx

from tpagent.core.exceptions import FailedReportError
from tpagent.core.models import Report
from tpagent.utils.config import DEFAULT_MAX_BATCH_SIZE
from tpagent.utils.logger import outstanding, outstanding_done

logger = logging.getLogger(__name__)

# Large enough to absorb bursts of commands between deliveries
QUEUE_CAPACITY = 1024
# Seconds between "outstanding reports" notices while draining
PROGRESS_REPORT_DELAY = 3


@dataclass(frozen=True)
class QueueItem:
    """A report and the Agent route it should be posted to."""
    route: Optional[str]
    report: Optional[Report]

    @property
    def is_sentinel(self) -> bool:
        return self.route is None and self.report is None


def encode(payload) -> str:
    # Command parameters may hold objects json cannot handle (e.g. web elements)
    return json.dumps(payload, default=str)


# Enqueued by stop()/cancel() to wake the worker blocked on get()
_SENTINEL = QueueItem(None, None)


class ReportsQueue:
    """
    Bounded FIFO of reports with a single consumer thread.

    Each report is posted once; delivery failures are logged and never raised
    to the submitting thread. After MAX_CONSECUTIVE_FAILURES failed deliveries
    in a row the queue stops accepting new reports.
    """

    MAX_CONSECUTIVE_FAILURES = 4

    def __init__(self, http_client: httpx.Client, session_id: str, capacity: int = QUEUE_CAPACITY):
        self._http = http_client
        self._session_id = session_id
        self._queue: "queue.Queue[QueueItem]" = queue.Queue(maxsize=capacity)
        self._running = False
        self._cancelled = False
        self._reports_disabled = False
        self._consecutive_failures = 0
        self._thread: Optional[threading.Thread] = None
        self._progress_thread: Optional[threading.Thread] = None
        self._progress_stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Number of queued items (including a pending stop sentinel)."""
        return self._queue.qsize()

    def start(self):
        """Start the background consumer."""
        if self._thread is not None:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self.run,
            name=f"reports-queue-{self._session_id}",
            daemon=True,
        )
        self._thread.start()

    def submit(self, route: str, report: Report):
        """
        Enqueue a report for delivery.

        Blocks only while the queue is full (backpressure).
        """
        if report is None:
            raise ValueError("Report must not be None")
        if self._reports_disabled:
            logger.debug(f"Reports are disabled, dropping report: [{report}]")
            return
        self._queue.put(QueueItem(route, report))

    def run(self):
        """Consumer loop. Exits once stopped and drained, or when cancelled."""
        while (self._running or not self._queue.empty()) and not self._cancelled:
            try:
                self._handle_report()
            except FailedReportError as e:
                logger.error(str(e))

        logger.debug(f"Reports queue for session [{self._session_id}] has been stopped.")
        remaining = sum(1 for item in list(self._queue.queue) if not item.is_sentinel)
        if remaining:
            logger.warning(f"There are {remaining} unreported items in the queue")
        self._progress_stop.set()

    def _handle_report(self):
        self._send_report(self._queue.get())

    def _send_report(self, item: QueueItem):
        if item.is_sentinel:
            if self._running:
                # Only stop()/cancel() are expected to enqueue sentinels
                logger.error("Empty report was submitted to the queue!")
            return

        try:
            content = encode(item.report.to_dict())
        except Exception as e:
            logger.error(f"Failed to encode report, dropping it: [{item.report}]: {e}")
            return

        try:
            response = self._http.post(item.route, content=content)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to submit report: [{item.report}]: {e}")
            self._record_failure()
            return

        if response.is_success:
            self._consecutive_failures = 0
            return

        logger.error(f"Agent responded with an unexpected status {response.status_code} to report: [{item.report}]")
        self._record_failure()

    def _record_failure(self):
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.MAX_CONSECUTIVE_FAILURES and not self._reports_disabled:
            self._reports_disabled = True
            logger.warning("Reports are disabled due to multiple failed attempts of sending reports to the agent.")

    def stop(self):
        """Ask the consumer to exit once every queued report has been attempted."""
        logger.debug(f"Raising flag to stop reports queue for session [{self._session_id}]")
        self._running = False
        self._queue.put(_SENTINEL)
        self._start_progress_report()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the consumer to finish. Returns True when it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def cancel(self):
        """Force the consumer to exit after the report in flight; the rest is dropped."""
        self._cancelled = True
        self._running = False
        self._progress_stop.set()
        try:
            self._queue.put_nowait(_SENTINEL)
        except queue.Full:
            # The consumer checks the cancelled flag before every item
            logger.debug("Reports queue is full, cancellation relies on the flag")

    def _start_progress_report(self):
        if self._progress_thread is not None:
            return

        def report_progress():
            while not self._progress_stop.is_set():
                remaining = self._queue.qsize()
                logger.info(
                    f"There are [{remaining}] outstanding reports that should be transmitted "
                    f"to the Agent before the process exits."
                )
                outstanding("Queue", remaining)
                if remaining == 0:
                    break
                self._progress_stop.wait(PROGRESS_REPORT_DELAY)
            outstanding_done("Queue", "Reports queue drained")

        self._progress_thread = threading.Thread(target=report_progress, name="queue-progress-report", daemon=True)
        self._progress_thread.start()


class BatchReportsQueue(ReportsQueue):
    """
    Reports queue that posts up to `max_batch_size` reports per request.

    A batch is retried up to MAX_REPORT_FAILURE_ATTEMPTS times; when every
    attempt fails a FailedReportError is raised to the consumer loop, which
    logs it and continues with the next batch.
    """

    MAX_REPORT_FAILURE_ATTEMPTS = 4

    def __init__(
        self,
        http_client: httpx.Client,
        session_id: str,
        batch_route: str,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        capacity: int = QUEUE_CAPACITY,
        max_attempts: Optional[int] = None,
    ):
        super().__init__(http_client, session_id, capacity=capacity)
        self._batch_route = batch_route
        self._max_batch_size = max(1, max_batch_size)
        self._max_attempts = max_attempts or self.MAX_REPORT_FAILURE_ATTEMPTS

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    def _handle_report(self):
        batch = self._drain_batch()
        if batch:
            self._send_batch(batch)

    def _drain_batch(self) -> List[Report]:
        # Block for the first item only, then take whatever is already queued
        items = [self._queue.get()]
        while len(items) < self._max_batch_size:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return [item.report for item in items if not item.is_sentinel]

    def _encodable(self, batch: List[Report]) -> List[dict]:
        payloads = []
        for report in batch:
            try:
                payload = report.to_dict()
                encode(payload)
            except Exception as e:
                logger.error(f"Failed to encode report, dropping it: [{report}]: {e}")
                continue
            payloads.append(payload)
        return payloads

    def _send_batch(self, batch: List[Report]):
        payloads = self._encodable(batch)
        if not payloads:
            return
        payload = encode(payloads)

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._http.post(self._batch_route, content=payload)
            except httpx.HTTPError as e:
                logger.error(f"Failed to submit {len(batch)} reports: {e}")
                continue

            if response.is_success:
                return

            remaining = self._max_attempts - attempt
            logger.warning(
                f"Agent responded with an unexpected status {response.status_code} "
                f"to send {len(batch)} reports"
            )
            if remaining:
                logger.info(f"Attempt to send {len(batch)} reports again to the Agent. {remaining} more attempts are left.")

        raise FailedReportError(
            f"All {self._max_attempts} attempts to send {len(batch)} reports have failed",
            attempts=self._max_attempts,
            count=len(batch),
        )
