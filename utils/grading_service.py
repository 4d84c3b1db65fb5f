"""Database-backed remote store for term configurations and assessment scores.

These functions are what the class-record API blueprints call. They raise
``GradingError`` subclasses for caller mistakes; the blueprints map them to
HTTP status codes.
"""

import logging
import math

from models import (
    db,
    Course,
    Student,
    TermConfiguration,
    Assessment as AssessmentRow,
    AssessmentScore,
    CriteriaScore,
)
from utils.grade_calculation import final_grade, term_grade
from utils.score_store import ScoreStore
from utils.term_config import (
    ConfigStore,
    InvalidTermConfig,
    Term,
    TermConfig,
    parse_term,
    validate_term_config,
)

logger = logging.getLogger(__name__)


class GradingError(Exception):
    """Base class for remote-store errors caused by the request."""


class CourseNotFound(GradingError):
    pass


class InvalidAssessment(GradingError):
    pass


class ScoreExceedsMax(GradingError):
    pass


def get_course(course_slug: str) -> Course:
    course = Course.query.filter_by(slug=course_slug).first()
    if course is None:
        raise CourseNotFound(f"Course {course_slug} not found")
    return course


# -----------------------------
# Term configurations
# -----------------------------
def _assessment_record(a: AssessmentRow) -> dict:
    return {
        "id": str(a.id),
        "name": a.name,
        "type": a.type,
        "maxScore": a.max_score,
        "transmutationBase": a.transmutation_base or 0,
        "enabled": bool(a.enabled),
        "order": a.position,
        "linkedCriteriaId": a.linked_criteria_id,
    }


def get_term_configs(course_slug: str) -> dict:
    """Return ``{term: {id, term, ptWeight, quizWeight, examWeight, assessments}}``."""
    return _term_config_records(get_course(course_slug))


def _term_config_records(course: Course) -> dict:
    configs = {}
    for tc in TermConfiguration.query.filter_by(course_id=course.id).all():
        configs[tc.term] = {
            "id": str(tc.id),
            "term": tc.term,
            "ptWeight": tc.pt_weight,
            "quizWeight": tc.quiz_weight,
            "examWeight": tc.exam_weight,
            "assessments": [_assessment_record(a) for a in tc.assessments],
        }
    return configs


def load_config_store(course_slug: str) -> ConfigStore:
    return ConfigStore.from_records(get_term_configs(course_slug))


def _is_new_id(value) -> bool:
    return value is None or str(value) == "" or str(value).startswith("temp")


def save_term_configs(course_slug: str, term_configs: dict) -> dict:
    """Replace the course's term configurations.

    Every term is validated before anything is written. Assessments missing
    from the payload are deleted; ids starting with ``temp`` are created.
    """
    course = get_course(course_slug)
    if not isinstance(term_configs, dict):
        raise InvalidTermConfig("termConfigs must be an object keyed by term")

    parsed = []
    for term_key, data in term_configs.items():
        config = TermConfig.from_dict(data or {}, term=term_key)
        problems = validate_term_config(config)
        if problems:
            raise InvalidTermConfig("; ".join(problems))
        parsed.append((config, data or {}))

    for config, data in parsed:
        row = TermConfiguration.query.filter_by(
            course_id=course.id, term=config.term.value
        ).first()
        if row is None:
            row = TermConfiguration(course_id=course.id, term=config.term.value)
            db.session.add(row)
        row.pt_weight = config.pt_weight
        row.quiz_weight = config.quiz_weight
        row.exam_weight = config.exam_weight
        db.session.flush()

        existing = {str(a.id): a for a in row.assessments}
        incoming_ids = {
            str(a.get("id"))
            for a in data.get("assessments") or []
            if not _is_new_id(a.get("id"))
        }
        for aid, a in existing.items():
            if aid not in incoming_ids:
                db.session.delete(a)

        for a, raw in zip(config.assessments, _sorted_raw(data)):
            target = None if _is_new_id(raw.get("id")) else existing.get(a.id)
            if target is None:
                target = AssessmentRow(term_config_id=row.id, type=a.category.value)
                db.session.add(target)
            target.name = a.name
            target.max_score = a.max_score
            target.transmutation_base = a.transmutation_base
            target.enabled = a.enabled
            target.position = a.order
            target.linked_criteria_id = a.linked_criteria_id

    db.session.commit()
    logger.info(f"Saved {len(parsed)} term config(s) for course {course_slug}")
    return {"success": True}


def _sorted_raw(data: dict) -> list:
    # Same ordering TermConfig applies, so raw payload rows line up with parsed ones
    return sorted(data.get("assessments") or [], key=lambda a: int(a.get("order") or 0))


# -----------------------------
# Scores
# -----------------------------
def get_assessment_scores(course_slug: str) -> dict:
    """Scores keyed ``student:assessment`` plus criteria percentages keyed ``student:criteria:<id>``."""
    course = get_course(course_slug)
    scores = _stored_scores(course)
    for c in CriteriaScore.query.filter_by(course_id=course.id).all():
        key = f"{c.student_id}:criteria:{c.criteria_id}"
        scores[key] = {
            "studentId": str(c.student_id),
            "assessmentId": f"criteria:{c.criteria_id}",
            "score": c.value,
        }
    return scores


def _stored_scores(course: Course) -> dict:
    scores = {}
    rows = (
        db.session.query(AssessmentScore)
        .join(AssessmentRow, AssessmentScore.assessment_id == AssessmentRow.id)
        .join(TermConfiguration, AssessmentRow.term_config_id == TermConfiguration.id)
        .filter(TermConfiguration.course_id == course.id)
        .all()
    )
    for s in rows:
        key = f"{s.student_id}:{s.assessment_id}"
        scores[key] = {
            "studentId": str(s.student_id),
            "assessmentId": str(s.assessment_id),
            "score": s.score,
        }
    return scores


def _course_assessments(course: Course) -> dict:
    rows = (
        db.session.query(AssessmentRow)
        .join(TermConfiguration, AssessmentRow.term_config_id == TermConfiguration.id)
        .filter(TermConfiguration.course_id == course.id)
        .all()
    )
    return {str(a.id): a for a in rows}


def _to_int(value, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidAssessment(f"Invalid {what} id: {value!r}")


def _check_entry(entry: dict, assessments: dict, student_ids: set) -> tuple:
    sid = entry.get("studentId", entry.get("student_id"))
    aid = entry.get("assessmentId", entry.get("assessment_id"))
    if sid in (None, "") or aid in (None, ""):
        raise InvalidAssessment("studentId and assessmentId are required")
    assessment = assessments.get(str(aid))
    if assessment is None:
        raise InvalidAssessment(f"Invalid assessment: {aid} not found in course")
    student_id = _to_int(sid, "student")
    if student_id not in student_ids:
        raise InvalidAssessment(f"Invalid assessment entry: student {sid} not found in course")
    score = entry.get("score")
    if score is not None:
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise InvalidAssessment(f"Invalid assessment score: {score!r}")
        if not math.isfinite(score) or score < 0:
            raise InvalidAssessment(f"Invalid assessment score: {score!r}")
        if score > assessment.max_score:
            raise ScoreExceedsMax(
                f"Score {score:g} exceeds max score of {assessment.max_score:g} for {assessment.name}"
            )
        score = float(score)
    return student_id, assessment.id, score


def _apply(student_id: int, assessment_id: int, score) -> bool:
    """Upsert one score, or delete it when ``score`` is None. Returns True when deleted."""
    row = AssessmentScore.query.filter_by(
        assessment_id=assessment_id, student_id=student_id
    ).first()
    if score is None:
        if row is not None:
            db.session.delete(row)
        return True
    if row is None:
        db.session.add(
            AssessmentScore(
                assessment_id=assessment_id, student_id=student_id, score=score
            )
        )
    else:
        row.score = score
    return False


def save_assessment_scores_bulk(course_slug: str, scores: list) -> dict:
    """Validate the whole batch, then upsert it in one transaction."""
    course = get_course(course_slug)
    if not isinstance(scores, list):
        raise InvalidAssessment("scores must be an array")
    assessments = _course_assessments(course)
    student_ids = {s.id for s in course.students}
    checked = [_check_entry(e or {}, assessments, student_ids) for e in scores]

    saved = deleted = 0
    try:
        for student_id, assessment_id, score in checked:
            if _apply(student_id, assessment_id, score):
                deleted += 1
            else:
                saved += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        f"Bulk score save for {course_slug}: {saved} saved, {deleted} cleared"
    )
    return {"success": True, "saved": saved, "deleted": deleted}


def save_assessment_score(course_slug: str, data: dict) -> dict:
    result = save_assessment_scores_bulk(course_slug, [data])
    return {"success": True, "deleted": bool(result["deleted"])}


# -----------------------------
# Derived grades
# -----------------------------
def criteria_lookup(course: Course):
    """Return a ``(student_id, criteria_id) -> percentage`` callable for one course."""
    values = {
        (str(c.student_id), str(c.criteria_id)): c.value
        for c in CriteriaScore.query.filter_by(course_id=course.id).all()
    }

    def _lookup(student_id, criteria_id):
        return values.get((str(student_id), str(criteria_id)))

    return _lookup


def _load_grading_state(course_slug: str):
    course = get_course(course_slug)
    configs = ConfigStore.from_records(_term_config_records(course))
    scores = ScoreStore(configs.assessment, criteria_source=criteria_lookup(course))
    scores.load(_stored_scores(course).values())
    students = sorted(course.students, key=lambda s: (s.last_name, s.first_name))
    return course, configs, scores, students


def compute_term_grades(course_slug: str, term) -> dict:
    term = parse_term(term)
    course, configs, scores, students = _load_grading_state(course_slug)
    config = configs.get(term)
    rows = []
    for student in students:
        grade = term_grade(str(student.id), config, scores)
        rows.append(
            {
                "id": str(student.id),
                "studentNumber": student.student_number,
                "name": student.display_name,
                "termGrade": grade.to_dict(),
            }
        )
    return {
        "term": term.value,
        "termConfig": config.to_dict() if config is not None else None,
        "students": rows,
    }


def compute_final_grades(course_slug: str) -> dict:
    course, configs, scores, students = _load_grading_state(course_slug)
    rows = []
    for student in students:
        grade = final_grade(str(student.id), configs, scores)
        rows.append(
            {
                "id": str(student.id),
                "studentNumber": student.student_number,
                "name": student.display_name,
                "finalGrade": grade.to_dict(),
            }
        )
    return {"terms": [t.value for t in Term], "students": rows}
