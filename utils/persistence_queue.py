"""Write-coalescing persistence queue for score edits.

Edits land in a pending map keyed by ``"student_id:assessment_id"`` so that
repeated edits to the same cell collapse into the latest value. A single
debounce timer flushes the map as one bulk upsert. A failed upsert puts the
batch back (newer edits win) and retries after a fixed back-off until it
succeeds or the queue is closed.

Timers go through a scheduler object with a ``call_later(delay, callback)``
method returning something with ``cancel()``. The app uses
``ThreadingScheduler``; tests pass a manual clock.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_DELAY = 1.0
DEFAULT_RETRY_DELAY = 5.0
# Upper bound for force_flush waiting on a flush already in flight
DEFAULT_DRAIN_TIMEOUT = 10.0

RETRY_WARNING = "Failed to save grades. Retrying..."


def write_key(student_id, assessment_id) -> str:
    return f"{student_id}:{assessment_id}"


@dataclass(frozen=True)
class PendingWrite:
    student_id: str
    assessment_id: str
    score: Optional[float]

    @property
    def key(self) -> str:
        return write_key(self.student_id, self.assessment_id)

    def to_payload(self) -> dict:
        return {
            "studentId": self.student_id,
            "assessmentId": self.assessment_id,
            "score": self.score,
        }


def validate_write(write: PendingWrite) -> Optional[str]:
    """Return why a write cannot be sent, or None if it is valid."""
    if not write.student_id or not write.assessment_id:
        return "missing student or assessment id"
    score = write.score
    if score is None:
        return None
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return f"score {score!r} is not a number"
    if not math.isfinite(score):
        return f"score {score!r} is not finite"
    if score < 0:
        return f"score {score!r} is negative"
    return None


@dataclass
class FlushResult:
    sent: list = field(default_factory=list)
    rejected: list = field(default_factory=list)
    ok: bool = True
    error: Optional[BaseException] = None
    deferred: bool = False

    @property
    def called_remote(self) -> bool:
        return bool(self.sent)


# -----------------------------
# Scheduler
# -----------------------------
class ThreadingScheduler:
    """Run callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]):
        def _run():
            try:
                callback()
            except Exception as e:
                logger.error(f"Scheduled callback failed: {str(e)}")

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        timer.start()
        return timer


# -----------------------------
# Queue
# -----------------------------
class WriteQueue:
    """Coalesce score writes and persist them in debounced bulk upserts.

    ``sink`` receives a list of ``{"studentId", "assessmentId", "score"}`` dicts
    and must raise on failure; the whole batch is treated as failed.
    """

    def __init__(
        self,
        sink: Callable[[list], None],
        scheduler=None,
        flush_delay: float = DEFAULT_FLUSH_DELAY,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        on_warning: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[PendingWrite, str], None]] = None,
    ):
        self._sink = sink
        self._scheduler = scheduler or ThreadingScheduler()
        self.flush_delay = float(flush_delay)
        self.retry_delay = float(retry_delay)
        self._on_warning = on_warning
        self._on_error = on_error

        self._pending = {}
        self._timer = None
        self._in_flight = False
        self._closed = False
        # Set after the first failure of a retry streak, cleared on success
        self._retry_warned = False
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._listeners = []

    # --- observers -------------------------------------------------------
    def add_listener(self, callback: Callable[[FlushResult], None]):
        """Register a "grades updated" observer, called after each successful flush."""
        self._listeners.append(callback)
        return callback

    def remove_listener(self, callback):
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    # --- inspection -----------------------------------------------------
    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_snapshot(self) -> dict:
        with self._lock:
            return dict(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- writes ---------------------------------------------------------
    def enqueue(self, student_id, assessment_id, score) -> None:
        write = PendingWrite(
            "" if student_id is None else str(student_id),
            "" if assessment_id is None else str(assessment_id),
            score,
        )
        with self._lock:
            self._pending[write.key] = write
            if self._closed:
                logger.warning(
                    f"Score write {write.key} queued after close; it will not be flushed automatically"
                )
                return
            self._schedule(self.flush_delay)

    def _schedule(self, delay: float):
        # Single owner: any previous timer is replaced
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._scheduler.call_later(delay, self._on_timer)

    def _cancel_timer(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _on_timer(self):
        with self._lock:
            self._timer = None
        self.flush()

    def flush(self) -> FlushResult:
        """Send everything pending as one bulk upsert."""
        with self._lock:
            if self._in_flight:
                # One flush at a time; try again once the current one settles
                if not self._closed:
                    self._schedule(self.flush_delay)
                return FlushResult(deferred=True)
            self._cancel_timer()
            snapshot = self._pending
            self._pending = {}
            if not snapshot:
                return FlushResult()
            self._in_flight = True

        valid = {}
        rejected = []
        for key, write in snapshot.items():
            reason = validate_write(write)
            if reason is None:
                valid[key] = write
            else:
                rejected.append((write, reason))

        result = FlushResult(sent=list(valid.values()), rejected=rejected)
        for write, reason in rejected:
            logger.error(f"Dropping invalid score write {write.key}: {reason}")
            if self._on_error is not None:
                self._on_error(write, reason)

        try:
            if valid:
                self._sink([w.to_payload() for w in valid.values()])
        except Exception as e:
            result.ok = False
            result.error = e
            with self._lock:
                # Newer edits made during the call take precedence
                restored = dict(valid)
                restored.update(self._pending)
                self._pending = restored
                self._in_flight = False
                self._idle.notify_all()
                if not self._closed:
                    self._schedule(self.retry_delay)
                first_failure = not self._retry_warned
                self._retry_warned = True
            logger.warning(
                f"Failed to save {len(valid)} score(s), retrying in {self.retry_delay:g}s: {str(e)}"
            )
            if first_failure and self._on_warning is not None:
                self._on_warning(RETRY_WARNING)
            return result

        with self._lock:
            self._in_flight = False
            if valid:
                self._retry_warned = False
            self._idle.notify_all()

        if valid:
            logger.info(f"Saved {len(valid)} score(s)")
            self._notify(result)
        return result

    def _notify(self, result: FlushResult):
        for callback in list(self._listeners):
            try:
                callback(result)
            except Exception as e:
                # Observers are fire-and-forget
                logger.error(f"Grades-updated listener failed: {str(e)}")

    def force_flush(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> FlushResult:
        """Flush immediately, e.g. before the host discards its state.

        A flush already in flight is not cancelled; this waits for it to settle
        (up to ``timeout``) and then sends whatever is still pending.
        """
        with self._lock:
            self._cancel_timer()
            if self._in_flight:
                settled = self._idle.wait_for(lambda: not self._in_flight, timeout)
                if not settled:
                    logger.warning(
                        "A score flush is still in flight; pending writes stay queued"
                    )
                    if not self._closed:
                        self._schedule(self.flush_delay)
                    return FlushResult(deferred=True)
            # A rollback may have scheduled a retry while we waited
            self._cancel_timer()
        return self.flush()

    def close(self) -> FlushResult:
        """Drain once and stop scheduling further flushes."""
        result = self.force_flush()
        with self._lock:
            self._closed = True
            self._cancel_timer()
            left = len(self._pending)
        if left:
            logger.error(f"Score queue closed with {left} unsaved write(s)")
        return result
