"""Server-Sent-Events framing for build progress."""

import json
import queue
import threading

import structlog

from core.codec import to_wire
from core.state import BuildResult

logger = structlog.get_logger(__name__)


def format_sse(event, data):
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class ProgressStream:
    """Progress sink for one build, backed by an unbounded queue.

    Calling the instance never blocks, so it is safe to hand to the
    pipeline as `on_progress`. `events()` drains it from another thread
    and stops after the single `complete` event.
    """

    def __init__(self):
        self._queue = queue.Queue()
        self._logs = []
        self._last_status = None
        self._completed = False

    def __call__(self, status, message, iteration):
        self._logs.append(message)
        if status != self._last_status:
            self._last_status = status
            self._queue.put_nowait(("status", {"status": status, "iteration": iteration}))
        self._queue.put_nowait(("progress", {
            "status": status,
            "message": message,
            "iteration": iteration,
            "logs": list(self._logs),
        }))

    def complete(self, result):
        if self._completed:
            return
        self._completed = True
        self._queue.put_nowait(("complete", to_wire(result)))

    def events(self, timeout=None):
        """Yield (event, data) pairs until `complete`."""
        while True:
            event, data = self._queue.get(timeout=timeout)
            yield event, data
            if event == "complete":
                return


def stream_build(pipeline, request):
    """Run a build on a worker thread and yield its SSE frames.

    If the client goes away the generator is closed; the build itself
    runs to completion and its remaining events are dropped.
    """
    stream = ProgressStream()

    def worker():
        try:
            result = pipeline.build(request, stream)
        except Exception as e:
            logger.exception("stream_build_crashed")
            result = BuildResult(success=False, logs=[], iterations=0, error=str(e))
        stream.complete(result)

    threading.Thread(target=worker, name="build-worker", daemon=True).start()
    for event, data in stream.events():
        yield format_sse(event, data)
