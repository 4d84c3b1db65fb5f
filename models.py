from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Course(db.Model):
    __tablename__ = "courses"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    code = db.Column(db.String(20), nullable=False)  # e.g., "IT 101"
    section = db.Column(db.String(10), nullable=True)  # e.g., "1A"
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    # Relationships
    students = db.relationship(
        "Student", backref="course", cascade="all, delete-orphan"
    )
    term_configs = db.relationship(
        "TermConfiguration", backref="course", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Course {self.code} {self.section}>"


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    student_number = db.Column(db.String(20), nullable=True)
    last_name = db.Column(db.String(50), nullable=False)
    first_name = db.Column(db.String(50), nullable=False)
    middle_initial = db.Column(db.String(5), nullable=True)

    def __repr__(self):
        return f"<Student {self.last_name}, {self.first_name}>"

    @property
    def display_name(self):
        """Return 'Last, First M.' as shown in the class record."""
        if self.middle_initial:
            return f"{self.last_name}, {self.first_name} {self.middle_initial}."
        return f"{self.last_name}, {self.first_name}"


class TermConfiguration(db.Model):
    __tablename__ = "term_configurations"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    term = db.Column(db.String(20), nullable=False)  # PRELIM, MIDTERM, PREFINALS, FINALS
    pt_weight = db.Column(db.Float, nullable=False, default=30)
    quiz_weight = db.Column(db.Float, nullable=False, default=20)
    exam_weight = db.Column(db.Float, nullable=False, default=50)
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    # Relationships
    assessments = db.relationship(
        "Assessment",
        backref="term_config",
        cascade="all, delete-orphan",
        order_by="Assessment.position",
    )

    # Constraints
    __table_args__ = (
        db.UniqueConstraint("course_id", "term", name="unique_course_term"),
    )

    def __repr__(self):
        return f"<TermConfiguration {self.term} ({self.pt_weight}/{self.quiz_weight}/{self.exam_weight})>"


class Assessment(db.Model):
    __tablename__ = "assessments"

    id = db.Column(db.Integer, primary_key=True)
    term_config_id = db.Column(
        db.Integer, db.ForeignKey("term_configurations.id"), nullable=False
    )
    name = db.Column(db.String(100), nullable=False)
    type = db.Column(db.String(10), nullable=False)  # PT, QUIZ, EXAM
    max_score = db.Column(db.Float, nullable=False)
    transmutation_base = db.Column(db.Float, nullable=False, default=0)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    linked_criteria_id = db.Column(db.String(50), nullable=True)

    # Relationships
    scores = db.relationship(
        "AssessmentScore", backref="assessment", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Assessment {self.name} ({self.max_score} pts)>"


class AssessmentScore(db.Model):
    __tablename__ = "assessment_scores"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.Integer, db.ForeignKey("assessments.id"), nullable=False
    )
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    score = db.Column(db.Float, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    # Constraints
    __table_args__ = (
        db.UniqueConstraint(
            "assessment_id", "student_id", name="unique_assessment_student"
        ),
    )

    def __repr__(self):
        return f"<AssessmentScore student:{self.student_id} assessment:{self.assessment_id} = {self.score}>"


class CriteriaScore(db.Model):
    """Percentage a student earned on an externally graded criteria (recitation, reporting)."""

    __tablename__ = "criteria_scores"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    criteria_id = db.Column(db.String(50), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    value = db.Column(db.Float, nullable=True)  # 0-100

    __table_args__ = (
        db.UniqueConstraint("criteria_id", "student_id", name="unique_criteria_student"),
    )

    def __repr__(self):
        return f"<CriteriaScore {self.criteria_id} student:{self.student_id} = {self.value}>"
