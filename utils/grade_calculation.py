"""Grade derivation for the class record.

Everything here is pure: results are recomputed from the score store and the
term configuration on every call and never cached. "Not yet computable" is
expressed as ``None`` (numbers) or ``"-"`` (grade strings), and a score above
its assessment's maximum yields the ``"(error)"`` sentinel instead of raising.
"""

from dataclasses import dataclass, field
from typing import Optional

from utils.term_config import TERM_WEIGHTS, Category, Term, TermConfig

ERROR_GRADE = "(error)"
NO_GRADE = "-"
PASSING_GRADE = 3.00

# Descending (minimum total percent, numeric grade)
GRADE_BANDS = (
    (97.5, "1.00"),
    (94.5, "1.25"),
    (91.5, "1.50"),
    (86.5, "1.75"),
    (81.5, "2.00"),
    (76.0, "2.25"),
    (70.5, "2.50"),
    (65.0, "2.75"),
    (59.5, "3.00"),
)
FAILING_GRADE = "5.00"


def get_equivalent(total_percent: float) -> str:
    """Map a term total percentage to its numeric grade band."""
    for minimum, grade in GRADE_BANDS:
        if total_percent >= minimum:
            return grade
    return FAILING_GRADE


def percent(score: Optional[float], max_score: Optional[float]) -> Optional[float]:
    if score is None or max_score is None or max_score <= 0:
        return None
    return min(max(score / max_score * 100, 0.0), 100.0)


def transmute(raw: Optional[float], max_score: float, base: float) -> Optional[float]:
    """Raise a raw score to ``base`` percent of ``max_score`` if it falls below it.

    Never lowers a score; a base of 0 disables transmutation.
    """
    if raw is None or not base:
        return raw
    threshold = base / 100 * max_score
    if raw < threshold:
        return threshold
    return raw


@dataclass
class CategoryResult:
    average: Optional[float]
    assessed: int
    over_max: bool = False


def _category(student_id, assessments, scores) -> CategoryResult:
    enabled = [a for a in assessments if a.enabled]
    percentages = []
    over_max = False
    complete = True
    for a in enabled:
        score = scores.get_effective_score(student_id, a)
        if score is None:
            complete = False
            continue
        if score > a.max_score:
            over_max = True
        pct = percent(transmute(score, a.max_score, a.transmutation_base), a.max_score)
        if pct is None:
            complete = False
            continue
        percentages.append(pct)
    if not enabled or not complete:
        return CategoryResult(None, len(enabled), over_max)
    return CategoryResult(sum(percentages) / len(percentages), len(enabled), over_max)


def category_average(student_id, assessments, scores) -> Optional[float]:
    """Mean percentage of the enabled assessments, or None until all are scored."""
    return _category(student_id, assessments, scores).average


def weighted(average: Optional[float], weight: float) -> Optional[float]:
    if average is None:
        return None
    return average / 100 * weight


@dataclass
class TermGrade:
    total_percent: Optional[float]
    numeric_grade: str
    category_weighted: dict = field(default_factory=dict)
    category_average: dict = field(default_factory=dict)

    @property
    def has_grade(self) -> bool:
        return self.numeric_grade not in (NO_GRADE, ERROR_GRADE)

    def to_dict(self) -> dict:
        return {
            "totalPercent": format_grade(self.total_percent),
            "numericGrade": self.numeric_grade,
            "ptWeighted": format_grade(self.category_weighted.get("pt")),
            "quizWeighted": format_grade(self.category_weighted.get("quiz")),
            "examWeighted": format_grade(self.category_weighted.get("exam")),
            "remarks": term_remarks(self.numeric_grade),
        }


_CATEGORY_KEYS = (
    (Category.PT, "pt"),
    (Category.QUIZ, "quiz"),
    (Category.EXAM, "exam"),
)


def term_grade(student_id, config: Optional[TermConfig], scores) -> TermGrade:
    if config is None:
        return TermGrade(None, NO_GRADE, {k: None for _, k in _CATEGORY_KEYS})

    averages = {}
    weighted_values = {}
    over_max = False
    blocked = False
    graded_categories = 0
    for category, key in _CATEGORY_KEYS:
        if category == Category.EXAM:
            exam = config.exam
            assessments = [exam] if exam is not None else []
        else:
            assessments = config.enabled(category)
        result = _category(student_id, assessments, scores)
        over_max = over_max or result.over_max
        averages[key] = result.average
        weighted_values[key] = weighted(result.average, config.weight_for(category))
        if result.assessed:
            graded_categories += 1
            if weighted_values[key] is None:
                blocked = True

    total = None
    if graded_categories and not blocked:
        total = sum(v for v in weighted_values.values() if v is not None)

    if over_max:
        numeric = ERROR_GRADE
    elif total is None:
        numeric = NO_GRADE
    else:
        numeric = get_equivalent(total)
    return TermGrade(total, numeric, weighted_values, averages)


@dataclass
class FinalGrade:
    grade: Optional[float]
    remarks: Optional[str]
    terms: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "grade": format_grade(self.grade),
            "remarks": self.remarks,
            "terms": {t.value: g.numeric_grade for t, g in self.terms.items()},
        }


def final_grade(student_id, configs, scores) -> FinalGrade:
    """Weighted combination of the four term grades; None until all four are graded."""
    terms = {term: term_grade(student_id, configs.get(term), scores) for term in Term}
    if not all(g.has_grade for g in terms.values()):
        return FinalGrade(None, None, terms)
    total = sum(float(terms[t].numeric_grade) * w for t, w in TERM_WEIGHTS.items())
    final = round(total, 2)
    return FinalGrade(final, "PASSED" if final <= PASSING_GRADE else "FAILED", terms)


def term_remarks(numeric_grade: str) -> Optional[str]:
    if numeric_grade in (NO_GRADE, ERROR_GRADE):
        return None
    return "PASSED" if float(numeric_grade) <= PASSING_GRADE else "FAILED"


def format_grade(value: Optional[float]) -> str:
    return NO_GRADE if value is None else f"{value:.2f}"
