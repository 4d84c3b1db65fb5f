import os
import sys

import pytest

# Ensure project root is on sys.path so tests can import app.py
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Must be set before app.py is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from app import app as flask_app  # noqa: E402
from models import (  # noqa: E402
    db,
    Course,
    Student,
    TermConfiguration,
    Assessment,
)
from utils.term_config import Term  # noqa: E402

from factories import COURSE_SLUG, ManualScheduler  # noqa: E402


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["user_id"] = 1
    return client


@pytest.fixture
def course(app):
    """A course with two students and all four terms configured 30/20/50.

    Each term has PT1 (max 50), Q1 (max 20) and an exam (max 100).
    """
    course = Course(slug=COURSE_SLUG, code="IT 101", section="1A")
    db.session.add(course)
    db.session.flush()
    db.session.add_all(
        [
            Student(course_id=course.id, last_name="Dela Cruz", first_name="Juan"),
            Student(
                course_id=course.id,
                last_name="Santos",
                first_name="Maria",
                middle_initial="L",
            ),
        ]
    )
    for term in Term:
        tc = TermConfiguration(
            course_id=course.id,
            term=term.value,
            pt_weight=30,
            quiz_weight=20,
            exam_weight=50,
        )
        db.session.add(tc)
        db.session.flush()
        db.session.add_all(
            [
                Assessment(term_config_id=tc.id, name="PT1", type="PT", max_score=50, position=0),
                Assessment(term_config_id=tc.id, name="Q1", type="QUIZ", max_score=20, position=0),
                Assessment(term_config_id=tc.id, name="Exam", type="EXAM", max_score=100, position=0),
            ]
        )
    db.session.commit()
    return course


@pytest.fixture
def course_ids(course):
    """Students and assessment ids of the seeded course, keyed for readability."""
    students = sorted(course.students, key=lambda s: s.last_name)
    assessments = {}
    for tc in TermConfiguration.query.filter_by(course_id=course.id).all():
        for a in tc.assessments:
            assessments[(tc.term, a.type)] = a
    return students, assessments


@pytest.fixture
def scheduler():
    return ManualScheduler()
