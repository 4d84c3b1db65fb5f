import pytest

from factories import make_assessment, make_config, standard_store
from utils.grade_calculation import (
    ERROR_GRADE,
    NO_GRADE,
    category_average,
    final_grade,
    format_grade,
    get_equivalent,
    percent,
    term_grade,
    term_remarks,
    transmute,
)
from utils.score_store import ScoreStore
from utils.term_config import Category, ConfigStore, Term


def _scores(configs: ConfigStore, entries=(), criteria=None) -> ScoreStore:
    store = ScoreStore(configs.assessment, criteria_source=criteria)
    store.load(
        {"studentId": sid, "assessmentId": aid, "score": score}
        for sid, aid, score in entries
    )
    return store


def test_percent_of_valid_scores_is_exact_ratio():
    for score in (0, 1, 12.5, 37, 50):
        assert percent(score, 50) == pytest.approx(score / 50 * 100)


def test_percent_not_computable():
    assert percent(None, 50) is None
    assert percent(10, None) is None
    assert percent(10, 0) is None
    assert percent(10, -5) is None


def test_percent_is_clamped():
    assert percent(60, 50) == 100.0
    assert percent(-3, 50) == 0.0


def test_transmute_never_lowers_a_score():
    for base in (0, 25, 50, 60, 75):
        for raw in range(0, 51):
            assert transmute(raw, 50, base) >= raw


def test_transmute_raises_to_threshold():
    assert transmute(20, 50, 60) == pytest.approx(30)
    assert transmute(30, 50, 60) == 30
    assert transmute(45, 50, 60) == 45


def test_transmute_disabled_or_missing():
    assert transmute(20, 50, 0) == 20
    assert transmute(None, 50, 60) is None


@pytest.mark.parametrize(
    "total,grade",
    [
        (100, "1.00"),
        (97.5, "1.00"),
        (97.49, "1.25"),
        (94.5, "1.25"),
        (91.5, "1.50"),
        (86.5, "1.75"),
        (81.5, "2.00"),
        (76.0, "2.25"),
        (70.5, "2.50"),
        (65.0, "2.75"),
        (59.5, "3.00"),
        (59.49, "5.00"),
        (0, "5.00"),
    ],
)
def test_grade_bands(total, grade):
    assert get_equivalent(total) == grade


def test_category_average_requires_every_enabled_assessment():
    q1 = make_assessment("q1", Category.QUIZ, 20)
    q2 = make_assessment("q2", Category.QUIZ, 20)
    configs = ConfigStore([make_config(assessments=[q1, q2])])
    scores = _scores(configs, [("s1", "q1", 20)])

    assert category_average("s1", [q1, q2], scores) is None

    scores = _scores(configs, [("s1", "q1", 20), ("s1", "q2", 10)])
    assert category_average("s1", [q1, q2], scores) == pytest.approx(75.0)


def test_category_average_ignores_disabled_assessments():
    q1 = make_assessment("q1", Category.QUIZ, 20)
    q2 = make_assessment("q2", Category.QUIZ, 20, enabled=False)
    configs = ConfigStore([make_config(assessments=[q1, q2])])
    scores = _scores(configs, [("s1", "q1", 10)])

    assert category_average("s1", [q1, q2], scores) == pytest.approx(50.0)


def test_category_average_empty_category():
    configs = ConfigStore([])
    assert category_average("s1", [], _scores(configs)) is None


def test_scenario_untransmuted_score():
    pt = make_assessment("pt1", Category.PT, 50, base=0)
    config = make_config(pt=100, quiz=0, exam=0, assessments=[pt])
    scores = _scores(ConfigStore([config]), [("s1", "pt1", 40)])

    assert category_average("s1", [pt], scores) == pytest.approx(80.0)
    grade = term_grade("s1", config, scores)
    assert grade.total_percent == pytest.approx(80.0)
    assert grade.numeric_grade == get_equivalent(80.0) == "2.25"


def test_scenario_transmuted_score_is_higher():
    pt = make_assessment("pt1", Category.PT, 50, base=60)
    config = make_config(pt=100, quiz=0, exam=0, assessments=[pt])
    scores = _scores(ConfigStore([config]), [("s1", "pt1", 20)])

    avg = category_average("s1", [pt], scores)
    assert avg == pytest.approx(60.0)
    assert avg > percent(20, 50)
    assert term_grade("s1", config, scores).numeric_grade == "3.00"


def test_scenario_incomplete_quiz_blocks_term_total():
    pt = make_assessment("pt1", Category.PT, 50)
    q1 = make_assessment("q1", Category.QUIZ, 20)
    q2 = make_assessment("q2", Category.QUIZ, 20)
    exam = make_assessment("exam", Category.EXAM, 100)
    config = make_config(pt=30, quiz=20, exam=50, assessments=[pt, q1, q2, exam])
    scores = _scores(
        ConfigStore([config]),
        [("s1", "pt1", 40), ("s1", "q1", 15), ("s1", "exam", 90)],
    )

    grade = term_grade("s1", config, scores)
    assert grade.total_percent is None
    assert grade.numeric_grade == NO_GRADE
    assert grade.category_average["pt"] == pytest.approx(80.0)
    assert grade.category_average["quiz"] is None
    assert grade.category_weighted["pt"] == pytest.approx(24.0)
    assert grade.category_weighted["quiz"] is None
    assert grade.category_weighted["exam"] == pytest.approx(45.0)


def test_term_total_skips_categories_without_assessments():
    pt = make_assessment("pt1", Category.PT, 50)
    exam = make_assessment("exam", Category.EXAM, 100)
    config = make_config(pt=30, quiz=20, exam=50, assessments=[pt, exam])
    scores = _scores(ConfigStore([config]), [("s1", "pt1", 50), ("s1", "exam", 100)])

    grade = term_grade("s1", config, scores)
    assert grade.category_weighted["quiz"] is None
    assert grade.total_percent == pytest.approx(80.0)
    assert grade.numeric_grade == "2.25"


def test_term_without_assessments_has_no_grade():
    config = make_config()
    grade = term_grade("s1", config, _scores(ConfigStore([config])))
    assert grade.total_percent is None
    assert grade.numeric_grade == NO_GRADE


def test_missing_term_config_has_no_grade():
    grade = term_grade("s1", None, _scores(ConfigStore([])))
    assert grade.numeric_grade == NO_GRADE
    assert grade.to_dict()["totalPercent"] == "-"


def test_only_first_enabled_exam_counts():
    exam = make_assessment("exam", Category.EXAM, 100, order=0)
    old_exam = make_assessment("old-exam", Category.EXAM, 100, enabled=False, order=1)
    config = make_config(pt=0, quiz=0, exam=100, assessments=[exam, old_exam])
    scores = _scores(ConfigStore([config]), [("s1", "exam", 88)])

    assert term_grade("s1", config, scores).total_percent == pytest.approx(88.0)


def test_score_above_max_yields_error_sentinel():
    pt = make_assessment("pt1", Category.PT, 50)
    exam = make_assessment("exam", Category.EXAM, 100)
    config = make_config(pt=50, quiz=0, exam=50, assessments=[pt, exam])
    # Stored before the max score was lowered to 50
    scores = _scores(ConfigStore([config]), [("s1", "pt1", 60), ("s1", "exam", 90)])

    grade = term_grade("s1", config, scores)
    assert grade.numeric_grade == ERROR_GRADE
    assert grade.total_percent is not None
    assert term_remarks(grade.numeric_grade) is None


def test_error_sentinel_even_when_term_incomplete():
    pt = make_assessment("pt1", Category.PT, 50)
    exam = make_assessment("exam", Category.EXAM, 100)
    config = make_config(pt=50, quiz=0, exam=50, assessments=[pt, exam])
    scores = _scores(ConfigStore([config]), [("s1", "pt1", 75)])

    assert term_grade("s1", config, scores).numeric_grade == ERROR_GRADE


def test_linked_assessment_uses_external_percentage():
    pt = make_assessment("pt1", Category.PT, 30, linked_criteria_id="rec-1")
    config = make_config(pt=100, quiz=0, exam=0, assessments=[pt])
    percentages = {("s1", "rec-1"): 90}
    scores = _scores(
        ConfigStore([config]), criteria=lambda sid, cid: percentages.get((sid, cid))
    )

    grade = term_grade("s1", config, scores)
    assert grade.total_percent == pytest.approx(90.0)
    assert grade.numeric_grade == "1.75"


def _fill_term(entries, n, pct):
    entries += [
        ("s1", f"pt-{n}", 50 * pct / 100),
        ("s1", f"q-{n}", 20 * pct / 100),
        ("s1", f"exam-{n}", pct),
    ]


def test_scenario_final_grade_weighted_across_terms():
    configs = standard_store()
    entries = []
    for n, pct in enumerate((93, 85, 90, 96), start=1):
        _fill_term(entries, n, pct)
    scores = _scores(configs, entries)

    bands = [term_grade("s1", configs.get(t), scores).numeric_grade for t in Term]
    assert bands == ["1.50", "2.00", "1.75", "1.25"]

    result = final_grade("s1", configs, scores)
    assert result.grade == pytest.approx(1.55)
    assert result.remarks == "PASSED"
    assert result.to_dict()["grade"] == "1.55"


def test_final_grade_failed():
    configs = standard_store()
    entries = []
    for n, pct in enumerate((50, 50, 50, 90), start=1):
        _fill_term(entries, n, pct)
    scores = _scores(configs, entries)

    # 5.0*0.2*3 + 1.75*0.4 = 3.70
    result = final_grade("s1", configs, scores)
    assert result.grade == pytest.approx(3.70)
    assert result.remarks == "FAILED"


def test_final_grade_requires_all_terms():
    configs = standard_store()
    entries = []
    for n, pct in enumerate((93, 85, 90), start=1):
        _fill_term(entries, n, pct)
    scores = _scores(configs, entries)

    result = final_grade("s1", configs, scores)
    assert result.grade is None
    assert result.remarks is None
    assert result.to_dict()["grade"] == NO_GRADE
    assert result.terms[Term.FINALS].numeric_grade == NO_GRADE


def test_final_grade_blocked_by_error_sentinel():
    configs = standard_store()
    entries = []
    for n, pct in enumerate((93, 85, 90, 96), start=1):
        _fill_term(entries, n, pct)
    entries.append(("s1", "q-2", 25))
    scores = _scores(configs, entries)

    assert final_grade("s1", configs, scores).grade is None


def test_format_grade():
    assert format_grade(None) == "-"
    assert format_grade(1.5) == "1.50"
    assert format_grade(82.456) == "82.46"
