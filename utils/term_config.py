import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class Term(str, Enum):
    PRELIM = "PRELIM"
    MIDTERM = "MIDTERM"
    PREFINALS = "PREFINALS"
    FINALS = "FINALS"


class Category(str, Enum):
    PT = "PT"
    QUIZ = "QUIZ"
    EXAM = "EXAM"


# Weight of each term's numeric grade in the final grade
TERM_WEIGHTS = {
    Term.PRELIM: 0.20,
    Term.MIDTERM: 0.20,
    Term.PREFINALS: 0.20,
    Term.FINALS: 0.40,
}

# Accepted spellings -> Term. T1..T4 are the positional names.
_TERM_ALIASES = {
    "t1": Term.PRELIM,
    "prelim": Term.PRELIM,
    "prelims": Term.PRELIM,
    "t2": Term.MIDTERM,
    "midterm": Term.MIDTERM,
    "midterms": Term.MIDTERM,
    "t3": Term.PREFINALS,
    "prefinal": Term.PREFINALS,
    "prefinals": Term.PREFINALS,
    "pre-finals": Term.PREFINALS,
    "pre_finals": Term.PREFINALS,
    "t4": Term.FINALS,
    "final": Term.FINALS,
    "finals": Term.FINALS,
}

MAX_TRANSMUTATION_BASE = 75.0


class InvalidTermConfig(ValueError):
    """Raised when a term configuration cannot be used for grading."""


def parse_term(value) -> Term:
    """Map any accepted term spelling (PRELIM, T1, prelims, preFinals...) to a Term."""
    if isinstance(value, Term):
        return value
    key = str(value or "").strip().lower()
    term = _TERM_ALIASES.get(key)
    if term is None:
        raise InvalidTermConfig(f"Unknown term: {value!r}")
    return term


@dataclass(frozen=True)
class Assessment:
    id: str
    name: str
    category: Category
    max_score: float
    transmutation_base: float = 0.0
    enabled: bool = True
    order: int = 0
    linked_criteria_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Assessment":
        """Build an Assessment from a JSON-ish dict (camelCase or snake_case keys)."""
        try:
            category = Category(str(data.get("type") or data.get("category")).upper())
        except ValueError:
            raise InvalidTermConfig(
                f"Assessment {data.get('id')!r} has invalid category {data.get('type') or data.get('category')!r}"
            )
        max_score = data.get("maxScore", data.get("max_score"))
        base = data.get("transmutationBase", data.get("transmutation_base")) or 0
        linked = data.get("linkedCriteriaId", data.get("linked_criteria_id"))
        return cls(
            id=str(data.get("id")),
            name=str(data.get("name") or ""),
            category=category,
            max_score=float(max_score) if max_score is not None else 0.0,
            transmutation_base=float(base),
            enabled=bool(data.get("enabled", True)),
            order=int(data.get("order") or 0),
            linked_criteria_id=str(linked) if linked else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.category.value,
            "maxScore": self.max_score,
            "transmutationBase": self.transmutation_base,
            "enabled": self.enabled,
            "order": self.order,
            "linkedCriteriaId": self.linked_criteria_id,
        }


@dataclass(frozen=True)
class TermConfig:
    term: Term
    pt_weight: float
    quiz_weight: float
    exam_weight: float
    assessments: tuple = field(default_factory=tuple)

    def __post_init__(self):
        # Keep assessments ordered by `order`; sorted() is stable for ties
        ordered = tuple(sorted(self.assessments, key=lambda a: a.order))
        object.__setattr__(self, "assessments", ordered)

    def enabled(self, category: Category) -> list:
        """Enabled assessments of one category, in display order."""
        return [a for a in self.assessments if a.category == category and a.enabled]

    @property
    def exam(self) -> Optional[Assessment]:
        exams = self.enabled(Category.EXAM)
        return exams[0] if exams else None

    def weight_for(self, category: Category) -> float:
        return {
            Category.PT: self.pt_weight,
            Category.QUIZ: self.quiz_weight,
            Category.EXAM: self.exam_weight,
        }[category]

    def find(self, assessment_id: str) -> Optional[Assessment]:
        for a in self.assessments:
            if a.id == assessment_id:
                return a
        return None

    @classmethod
    def from_dict(cls, data: dict, term=None) -> "TermConfig":
        term_value = term if term is not None else data.get("term")
        return cls(
            term=parse_term(term_value),
            pt_weight=float(data.get("ptWeight", data.get("pt_weight")) or 0),
            quiz_weight=float(data.get("quizWeight", data.get("quiz_weight")) or 0),
            exam_weight=float(data.get("examWeight", data.get("exam_weight")) or 0),
            assessments=tuple(
                Assessment.from_dict(a) for a in (data.get("assessments") or [])
            ),
        )

    def to_dict(self) -> dict:
        return {
            "term": self.term.value,
            "ptWeight": self.pt_weight,
            "quizWeight": self.quiz_weight,
            "examWeight": self.exam_weight,
            "assessments": [a.to_dict() for a in self.assessments],
        }


def validate_term_config(config: TermConfig) -> list:
    """Return a list of human-readable problems; empty when the config is usable."""
    errors = []
    total = config.pt_weight + config.quiz_weight + config.exam_weight
    # Allow small floating point tolerance
    if abs(total - 100.0) > 0.01:
        errors.append(f"{config.term.value}: Weights must total 100% (got {total:g})")
    for a in config.assessments:
        if not math.isfinite(a.max_score) or a.max_score <= 0:
            errors.append(f"{config.term.value}: {a.name or a.id} max score must be > 0")
        if not 0 <= a.transmutation_base <= MAX_TRANSMUTATION_BASE:
            errors.append(
                f"{config.term.value}: {a.name or a.id} transmutation base must be between 0 and {MAX_TRANSMUTATION_BASE:g}"
            )
    if len(config.enabled(Category.EXAM)) > 1:
        errors.append(f"{config.term.value}: only one exam may be enabled")
    return errors


class ConfigStore:
    """Read-only view over the term configurations of one course."""

    def __init__(self, configs: Iterable[TermConfig] = ()):
        self._configs = {}
        self._assessments = {}
        for config in configs:
            self._configs[config.term] = config
            for a in config.assessments:
                self._assessments[a.id] = a

    @classmethod
    def from_records(cls, records: dict) -> "ConfigStore":
        """Build from the `{term: {...}}` payload served by the term-configs endpoint."""
        configs = []
        for term_key, data in (records or {}).items():
            config = TermConfig.from_dict(data, term=term_key)
            problems = validate_term_config(config)
            if problems:
                # Keep loading; an unusable term just grades as incomplete
                logger.warning(f"Term config problems: {'; '.join(problems)}")
            configs.append(config)
        return cls(configs)

    def get(self, term) -> Optional[TermConfig]:
        return self._configs.get(parse_term(term))

    def assessment(self, assessment_id: str) -> Optional[Assessment]:
        return self._assessments.get(assessment_id)

    def terms(self) -> list:
        return [t for t in Term if t in self._configs]

    def __contains__(self, term) -> bool:
        try:
            return parse_term(term) in self._configs
        except InvalidTermConfig:
            return False
