import logging
import os
from collections import deque
from typing import Callable, Optional

from dotenv import load_dotenv

from utils.grade_calculation import FinalGrade, TermGrade, final_grade, term_grade
from utils.persistence_queue import (
    DEFAULT_FLUSH_DELAY,
    DEFAULT_RETRY_DELAY,
    FlushResult,
    PendingWrite,
    WriteQueue,
)
from utils.score_store import ScoreStore, WarningNotifier
from utils.term_config import Assessment, ConfigStore

logger = logging.getLogger(__name__)

MAX_RETAINED_ERRORS = 100


def _delay_from_env(name: str, default: float) -> float:
    load_dotenv()
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default:g}s")
        return default


class ClassRecordSession:
    """One editor's view of a course's class record.

    Owns the score store and its write queue for the lifetime of an editing
    session. Hosts call ``set_score`` on every cell edit, read grades back with
    ``term_grade`` / ``final_grade``, and call ``close`` before discarding the
    session so outstanding writes are sent.
    """

    def __init__(
        self,
        configs: ConfigStore,
        sink: Callable[[list], None],
        scheduler=None,
        criteria_source=None,
        on_warning: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[PendingWrite, str], None]] = None,
        flush_delay: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        self.configs = configs
        self.notifier = WarningNotifier(on_warning)
        self.errors = deque(maxlen=MAX_RETAINED_ERRORS)
        self._on_error = on_error
        self.queue = WriteQueue(
            sink,
            scheduler=scheduler,
            flush_delay=(
                flush_delay
                if flush_delay is not None
                else _delay_from_env("SCORE_FLUSH_DELAY", DEFAULT_FLUSH_DELAY)
            ),
            retry_delay=(
                retry_delay
                if retry_delay is not None
                else _delay_from_env("SCORE_RETRY_DELAY", DEFAULT_RETRY_DELAY)
            ),
            on_warning=self.notifier.warn,
            on_error=self._report_error,
        )
        self.scores = ScoreStore(
            configs.assessment,
            queue=self.queue,
            notifier=self.notifier,
            criteria_source=criteria_source,
        )

    def _report_error(self, write: PendingWrite, reason: str):
        self.errors.append((write, reason))
        if self._on_error is not None:
            self._on_error(write, reason)

    # --- scores ---------------------------------------------------------
    def load_scores(self, entries) -> int:
        return self.scores.load(entries)

    def set_score(self, student_id, assessment_id, raw) -> None:
        self.scores.set_score(student_id, assessment_id, raw)

    def set_scores(self, entries) -> None:
        self.scores.set_scores(entries)

    def get_score(self, student_id, assessment_id) -> Optional[float]:
        return self.scores.get_score(student_id, assessment_id)

    def get_effective_score(self, student_id, assessment: Assessment) -> Optional[float]:
        return self.scores.get_effective_score(student_id, assessment)

    # --- grades ---------------------------------------------------------
    def term_grade(self, student_id, term) -> TermGrade:
        return term_grade(student_id, self.configs.get(term), self.scores)

    def final_grade(self, student_id) -> FinalGrade:
        return final_grade(student_id, self.configs, self.scores)

    # --- persistence ----------------------------------------------------
    def on_grades_updated(self, callback: Callable[[FlushResult], None]):
        return self.queue.add_listener(callback)

    @property
    def has_unsaved_changes(self) -> bool:
        return self.queue.pending_count > 0

    def force_flush(self) -> FlushResult:
        return self.queue.force_flush()

    def close(self) -> FlushResult:
        return self.queue.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
