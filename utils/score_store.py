import logging
import math
import threading
from collections import deque
from typing import Callable, Iterable, Optional

from utils.persistence_queue import write_key
from utils.term_config import Assessment

logger = logging.getLogger(__name__)

# Most recent warnings kept for display; older ones are only in the log
MAX_RETAINED_WARNINGS = 50


class WarningNotifier:
    """Deliver user-visible warnings, each distinct message at most once per session."""

    def __init__(self, sink: Optional[Callable[[str], None]] = None):
        self._sink = sink
        self._shown = set()
        self.messages = deque(maxlen=MAX_RETAINED_WARNINGS)

    def notify_once(self, message: str) -> bool:
        if message in self._shown:
            return False
        self._shown.add(message)
        self.warn(message)
        return True

    def warn(self, message: str) -> None:
        """Deliver a warning without deduplication (transient failures)."""
        self.messages.append(message)
        logger.warning(message)
        if self._sink is not None:
            self._sink(message)

    def reset(self):
        self._shown.clear()
        self.messages.clear()


def coerce_score(raw):
    """Turn a cell value into a float, None for blank, or raise ValueError."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"{raw!r} is not a number")
    if isinstance(raw, str):
        text = raw.strip()
        if text == "":
            return None
        raw = text
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{raw!r} is not a number")
    if not math.isfinite(value):
        raise ValueError(f"{raw!r} is not a finite number")
    return value


class ScoreStore:
    """In-memory scores keyed by (student, assessment).

    Every accepted write is applied locally first and then handed to the
    persistence queue. ``assessment_lookup`` resolves an assessment id to its
    configuration (for the max score); ``criteria_source`` supplies the
    externally graded percentage for linked assessments.
    """

    def __init__(
        self,
        assessment_lookup: Callable[[str], Optional[Assessment]],
        queue=None,
        notifier: Optional[WarningNotifier] = None,
        criteria_source: Optional[Callable[[str, str], Optional[float]]] = None,
    ):
        self._lookup = assessment_lookup
        self._queue = queue
        self._criteria_source = criteria_source
        self.notifier = notifier or WarningNotifier()
        self._scores = {}
        self._lock = threading.RLock()

    def load(self, entries: Iterable) -> int:
        """Seed scores from the remote store without queueing them."""
        count = 0
        with self._lock:
            for entry in entries:
                sid = entry.get("studentId", entry.get("student_id"))
                aid = entry.get("assessmentId", entry.get("assessment_id"))
                score = entry.get("score")
                if not sid or not aid:
                    continue
                try:
                    value = coerce_score(score)
                except ValueError:
                    logger.warning(f"Skipping stored score for {sid}:{aid}: {score!r}")
                    continue
                key = write_key(sid, aid)
                if value is None:
                    self._scores.pop(key, None)
                else:
                    self._scores[key] = value
                count += 1
        return count

    def set_score(self, student_id, assessment_id, raw) -> None:
        try:
            value = coerce_score(raw)
        except ValueError as e:
            logger.warning(
                f"Rejected score for {student_id}:{assessment_id}: {str(e)}"
            )
            return

        assessment = self._lookup(str(assessment_id))
        if assessment is None:
            logger.warning(f"Rejected score for unknown assessment {assessment_id}")
            return

        if value is not None:
            if value < 0:
                self.notifier.notify_once("Score cannot be negative.")
                value = 0.0
            elif value > assessment.max_score:
                self.notifier.notify_once(
                    f"Score cannot exceed max ({assessment.max_score:g})."
                )
                value = float(assessment.max_score)

        key = write_key(student_id, assessment_id)
        with self._lock:
            if value is None:
                self._scores.pop(key, None)
            else:
                self._scores[key] = value
        if self._queue is not None:
            self._queue.enqueue(str(student_id), str(assessment_id), value)

    def set_scores(self, entries: Iterable) -> None:
        """Apply a pasted block of ``(student_id, assessment_id, raw)`` rows in order."""
        for student_id, assessment_id, raw in entries:
            self.set_score(student_id, assessment_id, raw)

    def get_score(self, student_id, assessment_id) -> Optional[float]:
        return self._scores.get(write_key(student_id, assessment_id))

    def get_effective_score(self, student_id, assessment: Assessment) -> Optional[float]:
        if assessment.linked_criteria_id:
            return self._linked_score(student_id, assessment)
        return self.get_score(student_id, assessment.id)

    def _linked_score(self, student_id, assessment: Assessment) -> Optional[float]:
        if self._criteria_source is None:
            return None
        pct = self._criteria_source(str(student_id), assessment.linked_criteria_id)
        if pct is None:
            return None
        try:
            pct = float(pct)
        except (TypeError, ValueError):
            logger.warning(
                f"Ignoring non-numeric criteria percentage for {student_id}: {pct!r}"
            )
            return None
        if not math.isfinite(pct):
            return None
        pct = min(max(pct, 0.0), 100.0)
        return round(pct / 100 * assessment.max_score, 2)

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._scores)

    def __len__(self):
        return len(self._scores)
