"""
Client-side video telemetry submission

Events are posted one per request to the ingestion endpoint. Each
submission retries with linear backoff and never raises to the caller;
a failed event is logged and dropped.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from app.config import settings
from app.core.exceptions import ExternalServiceError
from app.core.metrics import TELEMETRY_SUBMISSIONS
from app.schemas.analytics import SourceType, VideoEventType
from app.schemas.telemetry import (
    QueuedTelemetryEvent,
    SubmissionResult,
    SubmissionState,
    TelemetryPayload,
)

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "unknown error"

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or response.reason_phrase
    return error or response.reason_phrase


class TelemetryClient:
    """Posts single analytics events with bounded retries"""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        self.endpoint_url = endpoint_url or settings.TELEMETRY_ENDPOINT_URL
        self.max_retries = settings.TELEMETRY_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = (
            settings.TELEMETRY_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        )
        self.timeout = settings.TELEMETRY_TIMEOUT_SECONDS if timeout is None else timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self.logger = logging.getLogger(__name__)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def _post(self, payload: TelemetryPayload) -> Optional[str]:
        response = await self._client().post(
            self.endpoint_url,
            json=payload.model_dump(mode="json", exclude_none=True)
        )
        if not response.is_success:
            raise ExternalServiceError(
                "telemetry",
                f"HTTP {response.status_code}: {_error_detail(response)}"
            )
        return response.json().get("event_id")

    async def submit(self, payload: TelemetryPayload) -> SubmissionResult:
        """
        Submit one event, retrying up to max_retries times after the first
        attempt. Attempt n (1-based) that fails waits retry_delay * n before
        the next one.
        """
        state = SubmissionState.PENDING
        attempts = 0
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            state = SubmissionState.ATTEMPTING
            attempts = attempt + 1

            try:
                event_id = await self._post(payload)
                state = SubmissionState.SUCCEEDED
                TELEMETRY_SUBMISSIONS.labels(outcome=state.value).inc()
                return SubmissionResult(
                    success=True,
                    state=state,
                    attempts=attempts,
                    event_id=event_id
                )

            except Exception as e:
                last_error = str(e) or e.__class__.__name__
                self.logger.warning(
                    f"Telemetry {payload.event_type} attempt {attempts}/{self.max_retries + 1} "
                    f"failed: {last_error}"
                )

                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        state = SubmissionState.FAILED
        TELEMETRY_SUBMISSIONS.labels(outcome=state.value).inc()
        return SubmissionResult(success=False, state=state, attempts=attempts, error=last_error)

    async def _track(
        self,
        event_type: VideoEventType,
        video_id: str,
        creator_id: str,
        student_id: Optional[str],
        metadata: Dict[str, Any]
    ) -> SubmissionResult:
        metadata = {key: value for key, value in metadata.items() if value is not None}
        metadata.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

        result = await self.submit(TelemetryPayload(
            event_type=event_type.value,
            video_id=video_id,
            creator_id=creator_id,
            student_id=student_id,
            metadata=metadata,
        ))
        if not result.success:
            self.logger.error(f"Failed to track {event_type.value} for video {video_id}: {result.error}")
        return result

    async def track_video_start(
        self,
        video_id: str,
        creator_id: str,
        student_id: str,
        session_id: str,
        source_type: Optional[SourceType] = None
    ) -> SubmissionResult:
        return await self._track(
            VideoEventType.VIDEO_STARTED, video_id, creator_id, student_id,
            {
                "session_id": session_id,
                "source_type": SourceType(source_type).value if source_type else None,
            }
        )

    async def track_video_progress(
        self,
        video_id: str,
        creator_id: str,
        student_id: str,
        session_id: str,
        percent_complete: float,
        current_time: Optional[float] = None
    ) -> SubmissionResult:
        return await self._track(
            VideoEventType.VIDEO_PROGRESS, video_id, creator_id, student_id,
            {
                "session_id": session_id,
                "percent_complete": percent_complete,
                "current_time_seconds": current_time,
            }
        )

    async def track_video_complete(
        self,
        video_id: str,
        creator_id: str,
        student_id: str,
        session_id: str,
        watch_time_seconds: float
    ) -> SubmissionResult:
        return await self._track(
            VideoEventType.VIDEO_COMPLETED, video_id, creator_id, student_id,
            {
                "session_id": session_id,
                "watch_time_seconds": watch_time_seconds,
            }
        )

    async def aclose(self):
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class BatchedProgressTracker:
    """
    Queues progress events and flushes them when the queue reaches
    batch_size or every flush_interval seconds, whichever comes first.

    Must be used from inside a running event loop. Delivery is at most
    once: events that fail after retries are not re-queued.
    """

    def __init__(
        self,
        client: TelemetryClient,
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None
    ):
        self.client = client
        self.batch_size = batch_size or settings.TELEMETRY_BATCH_SIZE
        self.flush_interval = (
            settings.TELEMETRY_FLUSH_INTERVAL_SECONDS if flush_interval is None else flush_interval
        )
        self._queue: List[QueuedTelemetryEvent] = []
        self._timer_task: Optional[asyncio.Task] = None
        self._timer_started = False
        self._flush_tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def track(self, event: QueuedTelemetryEvent):
        self._queue.append(event)

        if len(self._queue) >= self.batch_size:
            self._schedule_flush()

        # Timer starts once per instance lifetime
        if not self._timer_started:
            self._timer_started = True
            self._timer_task = asyncio.get_running_loop().create_task(self._run_timer())

    def _schedule_flush(self):
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _run_timer(self):
        while True:
            await asyncio.sleep(self.flush_interval)
            self._schedule_flush()

    async def flush(self):
        if not self._queue:
            return

        # Swap first so events tracked while sending go to the next batch
        batch, self._queue = self._queue, []
        await self._send_batch(batch)

    async def _send_batch(self, batch: List[QueuedTelemetryEvent]):
        results = await asyncio.gather(*(
            self.client.track_video_progress(
                event.video_id,
                event.creator_id,
                event.student_id,
                event.session_id,
                event.percent_complete,
                event.current_time,
            )
            for event in batch
        ))

        failed = sum(1 for result in results if not result.success)
        if failed:
            self.logger.error(f"Dropped {failed}/{len(batch)} progress events after retries")

    async def destroy(self):
        """Stop the timer, wait for in-flight flushes, then flush what is left"""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)

        await self.flush()


class PlaybackTracker:
    """
    Tracks one playback session: start, milestone progress, completion and
    locally accumulated watch time across pauses.
    """

    MILESTONES = (10, 25, 50, 75, 90)
    COMPLETION_MILESTONE = 90

    def __init__(
        self,
        client: TelemetryClient,
        video_id: str,
        creator_id: str,
        student_id: Optional[str] = None,
        session_id: Optional[str] = None,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
        source_type: Optional[SourceType] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.video_id = video_id
        self.creator_id = creator_id
        self.student_id = student_id
        self.session_id = session_id
        self.course_id = course_id
        self.module_id = module_id
        self.source_type = SourceType(source_type) if source_type else None
        self._clock = clock

        self.started = False
        self.completed = False
        self.playing = False
        self.milestones_reached: Set[int] = set()
        self._accumulated = 0.0
        self._resumed_at = 0.0

    @property
    def watch_time_seconds(self) -> float:
        if self.playing:
            return self._accumulated + (self._clock() - self._resumed_at)
        return self._accumulated

    async def _emit(self, event_type: VideoEventType, metadata: Dict[str, Any]) -> SubmissionResult:
        metadata = {
            "source_type": self.source_type.value if self.source_type else None,
            "session_id": self.session_id,
            **metadata,
        }
        result = await self.client.submit(TelemetryPayload(
            event_type=event_type.value,
            video_id=self.video_id,
            creator_id=self.creator_id,
            student_id=self.student_id,
            course_id=self.course_id,
            module_id=self.module_id,
            metadata={key: value for key, value in metadata.items() if value is not None},
        ))
        if not result.success:
            logger.error(f"Playback {event_type.value} for video {self.video_id} not recorded: {result.error}")
        return result

    async def start(self, device: Optional[str] = None):
        if self.started:
            return
        self.started = True
        self.playing = True
        self._resumed_at = self._clock()
        await self._emit(VideoEventType.VIDEO_STARTED, {"device": device})

    async def progress(self, percent_complete: float, current_time: float):
        """Emit each milestone the first time playback reaches it"""
        for milestone in self.MILESTONES:
            if percent_complete < milestone or milestone in self.milestones_reached:
                continue
            self.milestones_reached.add(milestone)

            await self._emit(VideoEventType.VIDEO_PROGRESS, {
                "percent_complete": milestone,
                "watch_time_seconds": self.watch_time_seconds,
                "current_time_seconds": current_time,
            })

            if milestone == self.COMPLETION_MILESTONE:
                await self.complete(current_time)

    async def complete(self, current_time: Optional[float] = None):
        if self.completed:
            return
        self.completed = True
        await self._emit(VideoEventType.VIDEO_COMPLETED, {
            "percent_complete": 100,
            "watch_time_seconds": self.watch_time_seconds,
            "current_time_seconds": current_time,
        })

    def pause(self):
        if not self.playing:
            return
        self._accumulated += self._clock() - self._resumed_at
        self.playing = False

    def resume(self):
        if self.playing or not self.started:
            return
        self.playing = True
        self._resumed_at = self._clock()
