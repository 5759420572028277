"""
Test the reports queues.

The consumer loop is exercised both synchronously (run() after stop()) and on
its background thread.
"""

import json
import threading

import httpx
import pytest

from tpagent.core.exceptions import FailedReportError
from tpagent.core.models import DriverCommandReport, StepReport, TestReport
from tpagent.core.reports_queue import BatchReportsQueue, QueueItem, ReportsQueue

STEP_ROUTE = "/api/development/report/step"
BATCH_ROUTE = "/api/development/report/batch"


class RecordingAgent:
    """Minimal report endpoint answering with a fixed status."""

    def __init__(self, status: int = 200):
        self.status = status
        self.bodies = []
        self.lock = threading.Lock()

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self.lock:
            self.bodies.append(json.loads(request.content))
        return httpx.Response(self.status, json={})

    def client(self) -> httpx.Client:
        return httpx.Client(base_url="http://agent", transport=httpx.MockTransport(self.handle))


@pytest.fixture
def recorder():
    return RecordingAgent()


class TestQueueItem:
    def test_sentinel(self):
        assert QueueItem(None, None).is_sentinel
        assert not QueueItem(STEP_ROUTE, StepReport("x")).is_sentinel


class TestReportsQueue:
    """Test single report delivery."""

    def test_submit_rejects_none(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        with pytest.raises(ValueError):
            queue.submit(STEP_ROUTE, None)

    def test_stop_drains_everything_submitted_before(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        for i in range(3):
            queue.submit(STEP_ROUTE, StepReport(f"step {i}"))
        queue.stop()

        # running is already False, the loop still drains up to the sentinel
        queue.run()

        assert [b["description"] for b in recorder.bodies] == ["step 0", "step 1", "step 2"]
        assert queue.pending == 0

    def test_background_delivery(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.start()
        assert queue.running
        queue.submit(STEP_ROUTE, StepReport("Logged in"))
        queue.submit(STEP_ROUTE, TestReport("test_login"))
        queue.stop()

        assert queue.join(timeout=5)
        assert [b["type"] for b in recorder.bodies] == ["Step", "Test"]

    def test_stop_wakes_idle_consumer(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.start()
        queue.stop()
        assert queue.join(timeout=5)
        assert recorder.bodies == []

    def test_failed_delivery_attempted_once(self):
        recorder = RecordingAgent(status=500)
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.submit(STEP_ROUTE, StepReport("Step"))
        queue.stop()
        queue.run()
        assert len(recorder.bodies) == 1

    def test_disabled_after_consecutive_failures(self):
        recorder = RecordingAgent(status=500)
        queue = ReportsQueue(recorder.client(), "session-1")
        for i in range(ReportsQueue.MAX_CONSECUTIVE_FAILURES):
            queue.submit(STEP_ROUTE, StepReport(f"step {i}"))
        queue.stop()
        queue.run()

        queue.submit(STEP_ROUTE, StepReport("dropped"))
        assert queue.pending == 0
        assert len(recorder.bodies) == ReportsQueue.MAX_CONSECUTIVE_FAILURES

    def test_success_resets_failure_count(self):
        statuses = iter([500, 500, 500, 200, 500, 500, 500])

        def handle(request):
            return httpx.Response(next(statuses), json={})

        client = httpx.Client(base_url="http://agent", transport=httpx.MockTransport(handle))
        queue = ReportsQueue(client, "session-1")
        for i in range(7):
            queue.submit(STEP_ROUTE, StepReport(f"step {i}"))
        queue.stop()
        queue.run()

        queue.submit(STEP_ROUTE, StepReport("still accepted"))
        assert queue.pending == 1

    def test_transport_errors_are_logged(self, caplog):
        def handle(request):
            raise httpx.ConnectError("refused")

        client = httpx.Client(base_url="http://agent", transport=httpx.MockTransport(handle))
        queue = ReportsQueue(client, "session-1")
        queue.submit(STEP_ROUTE, StepReport("Step"))
        queue.stop()
        queue.run()
        assert "Failed to submit report" in caplog.text

    def test_cancel_discards_remaining(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.submit(STEP_ROUTE, StepReport("never sent"))
        queue.cancel()
        queue.run()
        assert recorder.bodies == []

    def test_unserializable_parameters(self, recorder):
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.submit(STEP_ROUTE, StepReport("Step", message=object()))
        queue.stop()
        queue.run()
        assert recorder.bodies[0]["message"].startswith("<object object")

    def test_unencodable_report_dropped(self, recorder, caplog):
        queue = ReportsQueue(recorder.client(), "session-1")
        queue.submit("/api/development/report/command", DriverCommandReport("perform", {(1, 2): "x"}, None, True))
        queue.submit(STEP_ROUTE, StepReport("after"))
        queue.stop()
        queue.run()

        assert [body["description"] for body in recorder.bodies] == ["after"]
        assert "Failed to encode report" in caplog.text


class TestBatchReportsQueue:
    """Test batched delivery and retry exhaustion."""

    def test_batches_respect_max_size(self, recorder):
        queue = BatchReportsQueue(recorder.client(), "session-1", BATCH_ROUTE, max_batch_size=10)
        for i in range(25):
            queue.submit(STEP_ROUTE, StepReport(f"step {i}"))
        queue.stop()
        queue.run()

        assert [len(batch) for batch in recorder.bodies] == [10, 10, 5]
        assert recorder.bodies[0][0]["type"] == "Step"
        assert recorder.bodies[2][-1]["description"] == "step 24"

    def test_retry_exhaustion(self):
        recorder = RecordingAgent(status=503)
        queue = BatchReportsQueue(recorder.client(), "session-1", BATCH_ROUTE, max_attempts=3)

        with pytest.raises(FailedReportError) as info:
            queue._send_batch([StepReport("Step")])

        assert len(recorder.bodies) == 3
        assert info.value.attempts == 3
        assert info.value.count == 1

    def test_default_attempts(self):
        recorder = RecordingAgent(status=500)
        queue = BatchReportsQueue(recorder.client(), "session-1", BATCH_ROUTE)
        with pytest.raises(FailedReportError):
            queue._send_batch([StepReport("Step")])
        assert len(recorder.bodies) == BatchReportsQueue.MAX_REPORT_FAILURE_ATTEMPTS

    def test_succeeds_after_retry(self):
        statuses = iter([500, 200])
        calls = []

        def handle(request):
            calls.append(request)
            return httpx.Response(next(statuses), json={})

        client = httpx.Client(base_url="http://agent", transport=httpx.MockTransport(handle))
        queue = BatchReportsQueue(client, "session-1", BATCH_ROUTE)
        queue._send_batch([StepReport("Step")])
        assert len(calls) == 2

    def test_loop_continues_after_failed_batch(self, caplog):
        recorder = RecordingAgent(status=500)
        queue = BatchReportsQueue(recorder.client(), "session-1", BATCH_ROUTE, max_batch_size=1, max_attempts=2)
        queue.submit(STEP_ROUTE, StepReport("first"))
        queue.submit(STEP_ROUTE, StepReport("second"))
        queue.stop()
        queue.run()

        assert [batch[0]["description"] for batch in recorder.bodies] == ["first", "first", "second", "second"]
        assert "All 2 attempts to send 1 reports have failed" in caplog.text

    def test_unencodable_report_dropped_from_batch(self, recorder):
        queue = BatchReportsQueue(recorder.client(), "session-1", BATCH_ROUTE)
        queue.submit(STEP_ROUTE, StepReport("before"))
        queue.submit("/api/development/report/command", DriverCommandReport("perform", {(1, 2): "x"}, None, True))
        queue.submit(STEP_ROUTE, StepReport("after"))
        queue.stop()
        queue.run()

        assert [[r["description"] for r in batch] for batch in recorder.bodies] == [["before", "after"]]
