"""Bulk score upsert sinks used by the write queue.

A sink takes the batch ``[{"studentId", "assessmentId", "score"}, ...]`` and
raises when the batch was not stored.
"""

import logging
import os
from typing import Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """The remote store refused or failed to store a batch."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpScoreSink:
    """POST batches to the class-record bulk endpoint of a running portal."""

    def __init__(
        self,
        course_slug: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        headers: Optional[dict] = None,
    ):
        load_dotenv()
        self.course_slug = course_slug
        self.base_url = (
            base_url or os.getenv("CLASS_RECORD_API_URL", "http://127.0.0.1:5000")
        ).rstrip("/")
        self.timeout = float(
            timeout
            if timeout is not None
            else os.getenv("CLASS_RECORD_API_TIMEOUT", "15")
        )
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/courses/{self.course_slug}/assessment-scores/bulk"

    def __call__(self, batch: list) -> None:
        try:
            response = self.session.post(
                self.url, json={"scores": batch}, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteStoreError(f"Bulk score upsert failed: {str(e)}") from e
        if response.status_code >= 400:
            try:
                message = (response.json() or {}).get("error")
            except ValueError:
                message = None
            raise RemoteStoreError(
                message or f"Bulk score upsert returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.info(f"Posted {len(batch)} score(s) to {self.url}")


class DatabaseScoreSink:
    """Store batches through the grading service inside the given Flask app."""

    def __init__(self, app, course_slug: str):
        self.app = app
        self.course_slug = course_slug

    def __call__(self, batch: list) -> None:
        from utils.grading_service import save_assessment_scores_bulk
        from utils.live import emit_grades_updated

        # Queue flushes run on timer threads, outside any request
        with self.app.app_context():
            save_assessment_scores_bulk(self.course_slug, batch)
            emit_grades_updated(self.course_slug, len(batch))
