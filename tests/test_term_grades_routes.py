import pytest

from factories import COURSE_SLUG, add_criteria_score
from models import db, Assessment
from utils import grading_service

BASE = f"/api/courses/{COURSE_SLUG}"

# Percent per term chosen to land on 1.50, 2.00, 1.75, 1.25
TERM_PERCENT = {"PRELIM": 93, "MIDTERM": 85, "PREFINALS": 90, "FINALS": 96}
MAX = {"PT": 50, "QUIZ": 20, "EXAM": 100}


def _grade_everything(client, student, assessments, terms=TERM_PERCENT):
    scores = [
        {
            "studentId": str(student.id),
            "assessmentId": str(assessments[(term, kind)].id),
            "score": MAX[kind] * pct / 100,
        }
        for term, pct in terms.items()
        for kind in ("PT", "QUIZ", "EXAM")
    ]
    resp = client.post(f"{BASE}/assessment-scores/bulk", json={"scores": scores})
    assert resp.status_code == 200


def _row(data, student):
    return next(r for r in data["students"] if r["id"] == str(student.id))


def test_term_grades(client, course_ids):
    students, assessments = course_ids
    juan, maria = students
    _grade_everything(client, juan, assessments)

    resp = client.get(f"{BASE}/term-grades/prelims")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["term"] == "PRELIM"
    assert data["termConfig"]["ptWeight"] == 30

    graded = _row(data, juan)
    assert graded["name"] == "Dela Cruz, Juan"
    assert graded["termGrade"]["numericGrade"] == "1.50"
    assert graded["termGrade"]["totalPercent"] == "93.00"
    assert graded["termGrade"]["remarks"] == "PASSED"

    ungraded = _row(data, maria)
    assert ungraded["name"] == "Santos, Maria L."
    assert ungraded["termGrade"]["numericGrade"] == "-"
    assert ungraded["termGrade"]["remarks"] is None


def test_term_grades_unknown_term(client, course):
    resp = client.get(f"{BASE}/term-grades/summer")
    assert resp.status_code == 400


def test_final_grades(client, course_ids):
    students, assessments = course_ids
    juan, maria = students
    _grade_everything(client, juan, assessments)
    _grade_everything(client, maria, assessments, {"PRELIM": 93, "MIDTERM": 85})

    data = client.get(f"{BASE}/final-grades").get_json()
    assert data["terms"] == ["PRELIM", "MIDTERM", "PREFINALS", "FINALS"]

    final = _row(data, juan)["finalGrade"]
    assert final["grade"] == "1.55"
    assert final["remarks"] == "PASSED"
    assert final["terms"] == {
        "PRELIM": "1.50",
        "MIDTERM": "2.00",
        "PREFINALS": "1.75",
        "FINALS": "1.25",
    }

    incomplete = _row(data, maria)["finalGrade"]
    assert incomplete["grade"] == "-"
    assert incomplete["remarks"] is None


def test_transmutation_applies_to_stored_scores(client, course_ids):
    students, assessments = course_ids
    pt = assessments[("PRELIM", "PT")]
    pt.transmutation_base = 60
    db.session.commit()

    scores = [
        {"studentId": str(students[0].id), "assessmentId": str(assessments[("PRELIM", k)].id), "score": s}
        for k, s in (("PT", 20), ("QUIZ", 20), ("EXAM", 100))
    ]
    client.post(f"{BASE}/assessment-scores/bulk", json={"scores": scores})

    row = _row(client.get(f"{BASE}/term-grades/T1").get_json(), students[0])
    # PT 20/50 raised to 30/50 = 60% -> 18 of 30, plus 20 + 50
    assert row["termGrade"]["ptWeighted"] == "18.00"
    assert row["termGrade"]["totalPercent"] == "88.00"


def test_lowered_max_score_shows_error_sentinel(client, course_ids):
    students, assessments = course_ids
    _grade_everything(client, students[0], assessments)
    exam = db.session.get(Assessment, assessments[("FINALS", "EXAM")].id)
    exam.max_score = 90
    db.session.commit()

    row = _row(client.get(f"{BASE}/term-grades/finals").get_json(), students[0])
    assert row["termGrade"]["numericGrade"] == "(error)"

    final = _row(client.get(f"{BASE}/final-grades").get_json(), students[0])
    assert final["finalGrade"]["grade"] == "-"


@pytest.mark.parametrize("pct,band", [(100, "1.00"), (45, "5.00")])
def test_linked_criteria_feeds_term_grade(client, course_ids, pct, band):
    students, assessments = course_ids
    course = students[0].course
    pt = assessments[("PRELIM", "PT")]
    pt.linked_criteria_id = "rec-1"
    db.session.commit()
    add_criteria_score(course, students[0], "rec-1", pct)

    scores = [
        {"studentId": str(students[0].id), "assessmentId": str(assessments[("PRELIM", k)].id), "score": MAX[k] * pct / 100}
        for k in ("QUIZ", "EXAM")
    ]
    client.post(f"{BASE}/assessment-scores/bulk", json={"scores": scores})

    row = _row(client.get(f"{BASE}/term-grades/prelim").get_json(), students[0])
    assert row["termGrade"]["numericGrade"] == band


@pytest.mark.parametrize(
    "compute,args",
    [
        (grading_service.compute_term_grades, ("PRELIM",)),
        (grading_service.compute_final_grades, ()),
    ],
)
def test_grade_computation_looks_up_course_once(monkeypatch, course, compute, args):
    lookups = []
    real_get_course = grading_service.get_course

    def counting_get_course(slug):
        lookups.append(slug)
        return real_get_course(slug)

    monkeypatch.setattr(grading_service, "get_course", counting_get_course)
    data = compute(COURSE_SLUG, *args)

    assert lookups == [COURSE_SLUG]
    assert len(data["students"]) == 2
