"""
Unit tests for telemetry submission, batching and playback tracking
"""

import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from app.schemas.analytics import SourceType
from app.schemas.telemetry import (
    QueuedTelemetryEvent,
    SubmissionResult,
    SubmissionState,
    TelemetryPayload,
)
from app.services.telemetry import BatchedProgressTracker, PlaybackTracker, TelemetryClient

ENDPOINT = "http://testserver/api/v1/analytics/video-event"


def _client_with(handler, **kwargs) -> TelemetryClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelemetryClient(ENDPOINT, http_client=http_client, retry_delay=0, **kwargs)


def _payload() -> TelemetryPayload:
    return TelemetryPayload(event_type="video_started", video_id="v1", creator_id="c1", student_id="s1")


def _queued(i: int) -> QueuedTelemetryEvent:
    return QueuedTelemetryEvent(
        video_id="v1",
        creator_id="c1",
        student_id="s1",
        session_id="sess-1",
        percent_complete=min(10 * i, 100),
        current_time=float(i),
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestTelemetryClient:
    """Single-event submission with retry"""

    async def test_success_on_first_attempt(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(201, json={"success": True, "event_id": "evt-1"})

        result = await _client_with(handler).submit(_payload())

        assert result.success is True
        assert result.state == SubmissionState.SUCCEEDED
        assert result.attempts == 1
        assert result.event_id == "evt-1"
        assert requests[0]["event_type"] == "video_started"
        assert requests[0]["student_id"] == "s1"

    async def test_retries_then_succeeds(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(503, json={"success": False, "error": {"code": "X", "message": "busy"}})
            return httpx.Response(201, json={"event_id": "evt-3"})

        result = await _client_with(handler, max_retries=3).submit(_payload())

        assert result.success is True
        assert result.attempts == 3

    async def test_gives_up_after_max_retries_without_raising(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(500, json={"error": "boom"})

        result = await _client_with(handler, max_retries=2).submit(_payload())

        assert calls["n"] == 3
        assert result.success is False
        assert result.state == SubmissionState.FAILED
        assert result.attempts == 3
        assert "boom" in result.error

    async def test_network_errors_are_retried(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _client_with(handler, max_retries=1).submit(_payload())

        assert result.success is False
        assert result.attempts == 2

    async def test_backoff_is_linear(self):
        def handler(request):
            return httpx.Response(500)

        client = TelemetryClient(
            ENDPOINT,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            max_retries=3,
            retry_delay=0.5,
        )

        with patch("app.services.telemetry.asyncio.sleep", new=AsyncMock()) as sleep:
            await client.submit(_payload())

        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0, 1.5]

    async def test_single_shot_trackers_send_expected_metadata(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"event_id": "e"})

        client = _client_with(handler)
        await client.track_video_start("v1", "c1", "s1", "sess", source_type=SourceType.MUX)
        await client.track_video_progress("v1", "c1", "s1", "sess", 50, current_time=30.0)
        await client.track_video_complete("v1", "c1", "s1", "sess", watch_time_seconds=120)

        assert [body["event_type"] for body in bodies] == ["video_started", "video_progress", "video_completed"]
        assert bodies[0]["metadata"]["source_type"] == "mux"
        assert bodies[1]["metadata"]["percent_complete"] == 50
        assert bodies[1]["metadata"]["current_time_seconds"] == 30.0
        assert bodies[2]["metadata"]["watch_time_seconds"] == 120
        assert all(body["metadata"]["session_id"] == "sess" for body in bodies)

    async def test_tracker_failure_is_returned_not_raised(self):
        client = _client_with(lambda request: httpx.Response(404), max_retries=0)
        result = await client.track_video_complete("v1", "c1", "s1", "sess", 10)
        assert result.success is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestBatchedProgressTracker:
    """Size- and time-triggered flushing"""

    async def test_full_batch_triggers_one_flush(self):
        tracker = BatchedProgressTracker(TelemetryClient(ENDPOINT), batch_size=5, flush_interval=10)
        events = [_queued(i) for i in range(5)]

        with patch.object(tracker, "_send_batch", new=AsyncMock()) as send:
            for event in events:
                tracker.track(event)
            await asyncio.sleep(0)
            await asyncio.sleep(0)

            send.assert_awaited_once_with(events)
            assert tracker.pending == 0
            await tracker.destroy()

        send.assert_awaited_once()

    async def test_partial_batch_flushes_on_interval(self):
        tracker = BatchedProgressTracker(TelemetryClient(ENDPOINT), batch_size=5, flush_interval=0.05)
        events = [_queued(i) for i in range(4)]

        with patch.object(tracker, "_send_batch", new=AsyncMock()) as send:
            for event in events:
                tracker.track(event)
            send.assert_not_awaited()

            await asyncio.sleep(0.2)

            send.assert_awaited_once_with(events)
            await tracker.destroy()

        send.assert_awaited_once()

    async def test_events_tracked_during_send_go_to_next_batch(self):
        tracker = BatchedProgressTracker(TelemetryClient(ENDPOINT), batch_size=2, flush_interval=10)
        sent = []

        async def slow_send(batch):
            sent.append(list(batch))
            await asyncio.sleep(0.01)

        with patch.object(tracker, "_send_batch", side_effect=slow_send):
            tracker.track(_queued(1))
            tracker.track(_queued(2))
            await asyncio.sleep(0)
            tracker.track(_queued(3))
            await tracker.destroy()

        assert [len(batch) for batch in sent] == [2, 1]

    async def test_destroy_flushes_remaining_and_stops_timer(self):
        tracker = BatchedProgressTracker(TelemetryClient(ENDPOINT), batch_size=10, flush_interval=0.01)

        with patch.object(tracker, "_send_batch", new=AsyncMock()) as send:
            tracker.track(_queued(1))
            await tracker.destroy()
            send.assert_awaited_once()

            await asyncio.sleep(0.05)
            send.assert_awaited_once()

    async def test_destroy_waits_for_interval_flush_in_flight(self):
        delivered = []

        async def slow_handler(request):
            await asyncio.sleep(0.05)
            delivered.append(json.loads(request.content))
            return httpx.Response(201, json={"success": True})

        tracker = BatchedProgressTracker(_client_with(slow_handler), batch_size=10, flush_interval=0.01)
        for i in range(3):
            tracker.track(_queued(i))

        # Interval flush has taken the batch and is mid-request
        await asyncio.sleep(0.02)
        assert tracker.pending == 0

        await tracker.destroy()

        assert len(delivered) == 3
        assert {body["metadata"]["current_time_seconds"] for body in delivered} == {0.0, 1.0, 2.0}

    async def test_flush_on_empty_queue_is_noop(self):
        tracker = BatchedProgressTracker(TelemetryClient(ENDPOINT), batch_size=5, flush_interval=10)
        with patch.object(tracker, "_send_batch", new=AsyncMock()) as send:
            await tracker.flush()
        send.assert_not_awaited()

    async def test_failed_events_are_dropped(self):
        client = TelemetryClient(ENDPOINT)
        client.track_video_progress = AsyncMock(side_effect=[
            SubmissionResult(success=False, state=SubmissionState.FAILED, attempts=4, error="down"),
            SubmissionResult(success=True, state=SubmissionState.SUCCEEDED, attempts=1),
        ])
        tracker = BatchedProgressTracker(client, batch_size=5, flush_interval=10)

        tracker.track(_queued(1))
        tracker.track(_queued(2))
        await tracker.destroy()

        assert client.track_video_progress.await_count == 2
        assert tracker.pending == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestPlaybackTracker:
    """Milestones, completion and watch time"""

    @pytest.fixture
    def recorder(self):
        client = TelemetryClient(ENDPOINT)
        client.submit = AsyncMock(
            return_value=SubmissionResult(success=True, state=SubmissionState.SUCCEEDED, attempts=1)
        )
        return client

    @staticmethod
    def _sent(client):
        return [call.args[0] for call in client.submit.await_args_list]

    async def test_start_is_sent_once(self, recorder):
        tracker = PlaybackTracker(recorder, "v1", "c1", student_id="s1", source_type=SourceType.UPLOAD)
        await tracker.start()
        await tracker.start()

        sent = self._sent(recorder)
        assert len(sent) == 1
        assert sent[0].event_type == "video_started"
        assert sent[0].metadata["source_type"] == "upload"

    async def test_milestones_and_completion_sent_once(self, recorder):
        tracker = PlaybackTracker(recorder, "v1", "c1", student_id="s1")
        await tracker.start()

        await tracker.progress(30, 30.0)
        await tracker.progress(30, 31.0)
        await tracker.progress(95, 95.0)
        await tracker.complete(100.0)

        sent = self._sent(recorder)
        progress = [p.metadata["percent_complete"] for p in sent if p.event_type == "video_progress"]
        completed = [p for p in sent if p.event_type == "video_completed"]

        assert progress == [10, 25, 50, 75, 90]
        assert len(completed) == 1
        assert completed[0].metadata["percent_complete"] == 100

    async def test_watch_time_excludes_paused_time(self, recorder):
        clock = iter([0.0, 10.0, 50.0, 55.0]).__next__
        tracker = PlaybackTracker(recorder, "v1", "c1", clock=clock)

        await tracker.start()   # t=0
        tracker.pause()         # t=10
        tracker.resume()        # t=50
        assert tracker.watch_time_seconds == pytest.approx(15.0)  # t=55

    async def test_resume_before_start_is_ignored(self, recorder):
        tracker = PlaybackTracker(recorder, "v1", "c1")
        tracker.resume()
        assert tracker.playing is False
        assert tracker.watch_time_seconds == 0
